"""
Port Resolver

Binds a persisted selection to the index of a live catalog entry.
"""

from dataclasses import dataclass
from typing import Sequence

from .catalog import CatalogEntry, match_key
from ..errors import NoDevicesAvailable, SelectionNotFound


@dataclass(frozen=True)
class Selection:
    """The chosen match key; empty means nothing has been selected"""
    chosen_match_key: str = ""

    @classmethod
    def from_path(cls, path) -> "Selection":
        """Build a selection from a stored device path or match key"""
        return cls(chosen_match_key=match_key(path or ""))

    @property
    def is_empty(self) -> bool:
        return not self.chosen_match_key


def resolve(catalog: Sequence[CatalogEntry], selection: Selection, role: str = "device") -> int:
    """
    Index of the first catalog entry whose match key equals the selection

    Catalog order is authoritative: the first match wins.

    Args:
        catalog: Entries in OS enumeration order
        selection: The persisted selection
        role: Used only in the NoDevicesAvailable message

    Returns:
        Index into catalog

    Raises:
        NoDevicesAvailable: if catalog is empty
        SelectionNotFound: if no entry matches
    """
    if not catalog:
        raise NoDevicesAvailable(role)

    for index, entry in enumerate(catalog):
        if entry.match_key == selection.chosen_match_key:
            return index

    raise SelectionNotFound(selection.chosen_match_key)
