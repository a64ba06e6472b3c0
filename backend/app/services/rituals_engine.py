"""
Rituals Engine.

Evaluates declarative rules against canonical smart home events. Rules come
from a YAML file whose conditions are safe expressions over the event fields
(evaluated with simpleeval) and whose reactions are named entries in a
registry. Each successful reaction publishes one RitualCompletion.
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

import yaml
from simpleeval import simple_eval

from backend.app.events.bus import EventBus, Subscription
from backend.app.events.schemas import Event, RitualCompletion
from backend.app.events.topics import Topics

logger = logging.getLogger(__name__)

Predicate = Callable[[Event], bool]
Reaction = Callable[[Event], Any]

MATCH_ALL = "all"
MATCH_FIRST = "first"


def event_names(event: Event) -> Dict[str, Any]:
    """Names visible to rule conditions."""
    return {
        "id": event.id,
        "kind": event.kind,
        "type": event.kind,
        "state": event.state,
        "attributes": dict(event.attributes),
    }


@dataclass(frozen=True)
class Rule:
    """A predicate/reaction pair. Rules are data: adding one never touches dispatch."""
    name: str
    predicate: Predicate
    reaction: Reaction
    description: str = ""

    @classmethod
    def from_condition(cls, name: str, condition: str, reaction: Reaction, description: str = "") -> "Rule":
        """Build a rule whose predicate is a safe expression over the event fields."""
        def predicate(event: Event) -> bool:
            return bool(simple_eval(condition, names=event_names(event)))

        return cls(name=name, predicate=predicate, reaction=reaction, description=description or condition)


def log_ritual(event: Event) -> None:
    logger.info(f"Ritual triggered by smart home event: {event.id} ({event.kind}={event.state})")


# Named reactions that declarative rule files may reference
REACTIONS: Dict[str, Reaction] = {
    "log_ritual": log_ritual,
}

DEFAULT_RULES_PATH = Path(__file__).parent.parent / "policies" / "rituals.yaml"


def load_rules(path: Optional[str] = None, reactions: Optional[Dict[str, Reaction]] = None) -> List[Rule]:
    """
    Loads rules from a YAML file, in file order.

    Raises ValueError for a rule referencing an unknown reaction, so a typo in
    the rule file fails startup instead of silently never firing.
    """
    rules_path = Path(path) if path else DEFAULT_RULES_PATH
    registry = reactions if reactions is not None else REACTIONS

    with open(rules_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    rules = []
    for entry in data.get("rituals", []):
        reaction_name = entry.get("reaction", "log_ritual")
        reaction = registry.get(reaction_name)
        if reaction is None:
            raise ValueError(f"Ritual {entry.get('name')!r} references unknown reaction {reaction_name!r}")
        rules.append(Rule.from_condition(
            name=entry["name"],
            condition=entry["condition"],
            reaction=reaction,
            description=entry.get("description", ""),
        ))

    logger.info(f"Loaded {len(rules)} rituals (version {data.get('version', '1.0.0')}) from {rules_path}")
    return rules


class RuleEngine:
    """
    Rituals Engine - reacts to canonical smart home events.

    Rules are evaluated in registration order. Policy "all" fires every
    matching rule, "first" stops at the first match. Each successful
    reaction publishes exactly one RitualCompletion; a failing reaction is
    logged and publishes nothing, and the remaining rules are still evaluated.
    """

    def __init__(
        self,
        bus: EventBus,
        rules: Iterable[Rule] = (),
        policy: str = MATCH_ALL,
        completion_topic: str = Topics.RITUAL_COMPLETED,
    ):
        if policy not in (MATCH_ALL, MATCH_FIRST):
            raise ValueError(f"Unknown match policy: {policy}")
        self.bus = bus
        self.rules: List[Rule] = list(rules)
        self.policy = policy
        self.completion_topic = completion_topic
        self._subscriptions: List[Subscription] = []
        self._pending: set = set()

    def add_rule(self, rule: Rule) -> None:
        self.rules.append(rule)

    def attach(self, topic: str) -> Subscription:
        """Subscribe the engine to a canonical-event topic."""
        subscription = self.bus.subscribe(topic, self.handle_event)
        self._subscriptions.append(subscription)
        return subscription

    def detach(self) -> None:
        for subscription in self._subscriptions:
            self.bus.unsubscribe(subscription)
        self._subscriptions = []

    def handle_event(self, event: Event) -> List[RitualCompletion]:
        """Evaluate all rules against one event. Returns completions published synchronously."""
        completions = []
        for rule in list(self.rules):
            try:
                matched = rule.predicate(event)
            except Exception as e:
                logger.warning(f"Error evaluating ritual {rule.name}: {e}")
                continue
            if not matched:
                continue

            logger.info(f"Ritual matched: {rule.name} (event={event.id})")
            completion = self._fire(rule, event)
            if completion is not None:
                completions.append(completion)

            if self.policy == MATCH_FIRST:
                break

        return completions

    def _fire(self, rule: Rule, event: Event) -> Optional[RitualCompletion]:
        try:
            result = rule.reaction(event)
        except Exception as e:
            logger.error(f"Ritual {rule.name} reaction failed for {event.id}: {e}", exc_info=True)
            return None

        if inspect.isawaitable(result):
            self._complete_later(rule, event, result)
            return None

        return self._complete(rule, event)

    def _complete(self, rule: Rule, event: Event) -> RitualCompletion:
        completion = RitualCompletion.for_event(event, rule.name)
        self.bus.publish(self.completion_topic, completion)
        return completion

    def _complete_later(self, rule: Rule, event: Event, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.error(f"Ritual {rule.name} returned an awaitable outside of an event loop; dropped")
            return

        async def _run() -> None:
            try:
                await awaitable
            except Exception as e:
                logger.error(f"Ritual {rule.name} reaction failed for {event.id}: {e}", exc_info=True)
                return
            self._complete(rule, event)

        task = loop.create_task(_run())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for asynchronous reactions started so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
