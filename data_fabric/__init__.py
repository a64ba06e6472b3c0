"""Data Fabric package - smart home ingestion and normalization."""

from data_fabric.device_normalizer import DeviceNormalizer, MalformedRecordError
from data_fabric.smart_home import SmartHomeConfig, SmartHomeIntegration

__all__ = [
    "DeviceNormalizer",
    "MalformedRecordError",
    "SmartHomeConfig",
    "SmartHomeIntegration",
]
