"""
Partner Capability Interfaces.

The relay consumes two external collaborators and does not reimplement them:
- a ledger/chain service (identity, activity log, token balances)
- a spatial-data service (regional data, strategy zones, resource optimisation)

Each is an abstract capability interface with a connect() probe. Every call
is asynchronous and may fail; callers must not assume success. Calls made
before a successful connect() return the empty value of their type.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel

from backend.app.core.logging import get_logger

logger = get_logger(__name__)


class IdentityRecord(BaseModel):
    address: str
    role: str
    active: bool
    is_cooperative_member: bool = False


class TokenBalances(BaseModel):
    mine: str = "0"
    well: str = "0"
    staked: str = "0"
    voting_power: str = "0"


class LedgerClient(ABC):
    """Ledger/chain capability interface."""

    def __init__(self):
        self.connected = False

    @abstractmethod
    async def connect(self) -> bool:
        ...

    @abstractmethod
    async def verify_identity(self, address: str) -> Optional[IdentityRecord]:
        ...

    @abstractmethod
    async def log_activity(self, user_id: str, activity_type: str, value_points: int) -> bool:
        ...

    @abstractmethod
    async def get_token_balances(self, address: str) -> TokenBalances:
        ...

    async def get_voting_power(self, address: str) -> str:
        balances = await self.get_token_balances(address)
        return balances.voting_power


class SimulatedLedgerClient(LedgerClient):
    """
    Mock-mode ledger: answers with fixed records, no chain access.
    Stands in until an RPC-backed client is wired to the ledger contracts.
    """

    def __init__(self, rpc_url: str, chain_id: int):
        super().__init__()
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.activity_log: List[Dict[str, Any]] = []

    async def connect(self) -> bool:
        logger.info(f"Mock ledger connect to {self.rpc_url} (chain_id={self.chain_id})")
        self.connected = True
        return True

    async def verify_identity(self, address: str) -> Optional[IdentityRecord]:
        if not self.connected:
            return None
        return IdentityRecord(address=address, role="Member", active=True, is_cooperative_member=False)

    async def log_activity(self, user_id: str, activity_type: str, value_points: int) -> bool:
        if not self.connected:
            return False
        logger.info(f"Ledger activity: {activity_type} (+{value_points}) for {user_id}")
        self.activity_log.append(
            {"user_id": user_id, "activity_type": activity_type, "value_points": value_points}
        )
        return True

    async def get_token_balances(self, address: str) -> TokenBalances:
        if not self.connected:
            return TokenBalances()
        return TokenBalances(mine="1000", well="10", staked="500", voting_power="500")


class SpatialDataClient(ABC):
    """Spatial-data capability interface."""

    def __init__(self):
        self.connected = False

    @abstractmethod
    async def connect(self) -> bool:
        ...

    @abstractmethod
    async def get_continents(self) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get_regional_metrics(self, region_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get_governance_zones(self) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def optimize_resources(self, region_id: str, priority: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get_connections(self) -> List[Dict[str, Any]]:
        ...


def _list_field(data: Any, key: str) -> List[Dict[str, Any]]:
    """``data[key]`` from an object response; any other shape yields an empty list."""
    if not isinstance(data, dict):
        logger.warning(f"Spatial layer returned {type(data).__name__} where an object with {key!r} was expected")
        return []
    return data.get(key) or []


class SofieMapClient(SpatialDataClient):
    """HTTP client for the sofie-map-system spatial layer."""

    def __init__(self, base_url: str, timeout: float = 5.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
            resp = await client.request(method, path, **kwargs)
            resp.raise_for_status()
            return resp.json()

    async def connect(self) -> bool:
        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
                resp = await client.get("/health")
            self.connected = resp.is_success
        except httpx.HTTPError as e:
            logger.error(f"Spatial layer connection failed: {e}")
            self.connected = False
        return self.connected

    async def get_continents(self) -> List[Dict[str, Any]]:
        if not self.connected:
            return []
        data = await self._request("GET", "/p3/geo/continents")
        return _list_field(data, "data")

    async def get_regional_metrics(self, region_id: str) -> Optional[Dict[str, Any]]:
        if not self.connected:
            return None
        return await self._request("GET", f"/p3/metrics/{region_id}")

    async def get_governance_zones(self) -> List[Dict[str, Any]]:
        if not self.connected:
            return []
        data = await self._request("GET", "/p4/strategy/zones")
        return _list_field(data, "zones")

    async def optimize_resources(self, region_id: str, priority: str) -> Optional[Dict[str, Any]]:
        if not self.connected:
            return None
        return await self._request(
            "POST", "/p4/strategy/optimize", json={"regionId": region_id, "priority": priority}
        )

    async def get_connections(self) -> List[Dict[str, Any]]:
        if not self.connected:
            return []
        data = await self._request("GET", "/p8/connections")
        return _list_field(data, "connections")


def get_ledger_client(settings=None) -> LedgerClient:
    """Factory function. Builds the ledger client from settings (cached settings by default)."""
    if settings is None:
        from backend.app.core.config import get_settings
        settings = get_settings()
    return SimulatedLedgerClient(rpc_url=settings.terracare_rpc_url, chain_id=settings.terracare_chain_id)


def get_spatial_client(settings=None) -> SpatialDataClient:
    """Factory function. Builds the spatial-data client from settings (cached settings by default)."""
    if settings is None:
        from backend.app.core.config import get_settings
        settings = get_settings()
    return SofieMapClient(base_url=settings.sofie_map_url, timeout=settings.forward_timeout_seconds)
