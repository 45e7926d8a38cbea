"""
Devices Module

Device catalog enumeration, the JSON selection store and the port resolver.
"""

from .catalog import CatalogEntry, DeviceCatalog, DeviceRole, match_key
from .resolver import Selection, resolve
from .store import DeviceStore

__all__ = [
    'CatalogEntry',
    'DeviceCatalog',
    'DeviceRole',
    'DeviceStore',
    'Selection',
    'match_key',
    'resolve',
]
