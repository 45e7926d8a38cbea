"""
Device Store

JSON files shared with the command line: the last enumerated device catalog
and the user's selection, one file per role.

usb_ports.json:
    {"available_usb_devices": [{"name": ..., "device_path": ...}],
     "selected_usb_device": "<match key>"}

midi_ports.json:
    {"available_midi_ports": [{"name": ..., "port_path": ...}],
     "selected_midi_port": {"name": ..., "port_path": ...}}
"""

import os
import json
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional

from .catalog import CatalogEntry, DeviceRole
from .resolver import Selection
from ..errors import StoreError
from ..production.retry_manager import ProductionRetryManager

log = logging.getLogger(__name__)


# role -> (file name, catalog key, selection key, entry path key)
STORE_LAYOUT = {
    DeviceRole.SERIAL: ("usb_ports.json", "available_usb_devices", "selected_usb_device", "device_path"),
    DeviceRole.MIDI: ("midi_ports.json", "available_midi_ports", "selected_midi_port", "port_path"),
}


class DeviceStore:
    """Catalog and selection file for one device role"""

    def __init__(self, role: DeviceRole, store_dir: Path,
                 retry_manager: Optional[ProductionRetryManager] = None):
        self.role = role
        self.store_dir = Path(store_dir)
        file_name, self.catalog_key, self.selection_key, self.path_key = STORE_LAYOUT[role]
        self.file_path = self.store_dir / file_name
        self.retry_manager = retry_manager or ProductionRetryManager()

    def load(self) -> Dict[str, Any]:
        """
        Read the whole file

        Returns:
            The decoded JSON object, or {} if the file does not exist

        Raises:
            StoreError: if the file is unreadable or not a JSON object
        """
        if not self.file_path.exists():
            return {}

        try:
            content = self.retry_manager.retry_sync(self.file_path.read_text, 'file_operations',
                                                    encoding='utf-8')
        except OSError as e:
            raise StoreError(f"Failed to read {self.file_path}: {e}") from e

        if not content.strip():
            return {}

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise StoreError(f"Failed to parse {self.file_path}: {e}") from e

        if not isinstance(data, dict):
            raise StoreError(f"{self.file_path} must contain a JSON object")
        return data

    def load_catalog(self) -> List[CatalogEntry]:
        """Entries from the last catalog refresh, in stored order"""
        entries = []
        for item in self.load().get(self.catalog_key) or []:
            if not isinstance(item, dict):
                continue
            path = item.get(self.path_key)
            if not path:
                continue
            entries.append(CatalogEntry(display_name=item.get('name') or path, path=path))
        return entries

    def load_selection(self) -> Selection:
        """The stored selection; missing or empty means no selection"""
        selected = self.load().get(self.selection_key)

        if isinstance(selected, dict):
            selected = selected.get(self.path_key)

        if not selected or not isinstance(selected, str):
            return Selection()
        return Selection.from_path(selected)

    def write_catalog(self, entries: List[CatalogEntry]):
        """Replace the stored catalog, keeping every other key in the file"""
        data = self._load_for_update()
        data[self.catalog_key] = [
            {'name': entry.display_name, self.path_key: entry.path}
            for entry in entries
        ]
        self._save(data)
        log.debug(f"Wrote {len(entries)} {self.role.value} catalog entries to {self.file_path}")

    def write_selection(self, entry: Optional[CatalogEntry]):
        """Persist entry as the selection (None clears it)"""
        data = self._load_for_update()

        if entry is None:
            data[self.selection_key] = "" if self.role is DeviceRole.SERIAL else None
        elif self.role is DeviceRole.SERIAL:
            data[self.selection_key] = entry.match_key
        else:
            data[self.selection_key] = {'name': entry.display_name, self.path_key: entry.path}

        self._save(data)
        log.info(f"Selected {self.role.value} device: {entry.display_name if entry else 'none'}")

    def _load_for_update(self) -> Dict[str, Any]:
        try:
            return self.load()
        except StoreError as e:
            log.warning(f"Overwriting unreadable store file: {e}")
            return {}

    def _save(self, data: Dict[str, Any]):
        self.store_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = self.file_path.with_suffix(self.file_path.suffix + ".tmp")

        def write():
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.file_path)

        try:
            self.retry_manager.retry_sync(write, 'file_operations')
        except OSError as e:
            raise StoreError(f"Failed to write {self.file_path}: {e}") from e
