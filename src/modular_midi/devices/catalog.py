"""
Device Catalog

Live enumeration of the hardware endpoints the pipeline can bind to: MIDI
output ports (python-rtmidi) and serial ports (pyserial). Each endpoint
becomes a CatalogEntry whose match key is the only thing the resolver looks
at.
"""

import os
import re
import logging
from typing import Callable, Dict, List, Any
from dataclasses import dataclass, field
from enum import Enum

import rtmidi
from serial.tools import list_ports

log = logging.getLogger(__name__)

MATCH_KEY_LENGTH = 5

_WHITESPACE = re.compile(r"\s+")


class DeviceRole(Enum):
    """Which side of the pipeline a device is bound to"""
    SERIAL = "serial"
    MIDI = "midi"


def match_key(path: str) -> str:
    """
    Short key used to correlate a stored selection with a live device

    The last five characters of the device string with whitespace removed,
    or the whole string without whitespace if it is shorter than five.
    """
    if path is None:
        return ""
    if len(path) >= MATCH_KEY_LENGTH:
        path = path[-MATCH_KEY_LENGTH:]
    return _WHITESPACE.sub("", path)


@dataclass(frozen=True)
class CatalogEntry:
    """A visible hardware endpoint"""
    display_name: str
    path: str
    match_key: str = field(default="")

    def __post_init__(self):
        if not self.match_key:
            object.__setattr__(self, 'match_key', match_key(self.path))


def split_midi_port_name(port: str):
    """
    Split an rtmidi port string into (display name, client:port suffix)

    "Midi Through:Midi Through Port-0 14:0" -> ("Midi Through:Midi Through Port-0", "14:0")
    """
    port = port.strip()
    last_space = port.rfind(" ")
    if last_space == -1:
        return port, port
    return port[:last_space], port[last_space + 1:]


class DeviceCatalog:
    """Enumerates MIDI outputs and serial ports in OS order"""

    def __init__(self, midi_out_factory: Callable = rtmidi.MidiOut,
                 serial_lister: Callable = list_ports.comports):
        self._midi_out_factory = midi_out_factory
        self._serial_lister = serial_lister
        self.metrics = {
            'midi_enumerations': 0,
            'serial_enumerations': 0,
            'enumeration_failures': 0,
        }

    def enumerate(self, role: DeviceRole) -> List[CatalogEntry]:
        if role is DeviceRole.MIDI:
            return self.enumerate_midi_outputs()
        return self.enumerate_serial_ports()

    def enumerate_midi_outputs(self) -> List[CatalogEntry]:
        """
        List MIDI output ports

        Entry order is the rtmidi port order, so an entry's position in
        the returned list is the index MidiWriter.open() expects.
        """
        try:
            midi_out = self._midi_out_factory()
            ports = midi_out.get_ports()
        except Exception as e:
            self.metrics['enumeration_failures'] += 1
            log.error(f"MIDI output enumeration failed: {e}")
            return []

        self.metrics['midi_enumerations'] += 1
        entries = []
        for port in ports:
            name, _ = split_midi_port_name(port)
            entries.append(CatalogEntry(display_name=name, path=port))
            log.debug(f"MIDI output: {port}")

        log.debug(f"Found {len(entries)} MIDI output ports")
        return entries

    def enumerate_serial_ports(self) -> List[CatalogEntry]:
        """List serial ports, falling back to the device basename for a name"""
        try:
            ports = list(self._serial_lister())
        except Exception as e:
            self.metrics['enumeration_failures'] += 1
            log.error(f"Serial port enumeration failed: {e}")
            return []

        self.metrics['serial_enumerations'] += 1
        entries = []
        for info in ports:
            device = info.device
            name = getattr(info, 'product', None) or getattr(info, 'description', None)
            if not name or name == "n/a":
                name = os.path.basename(device)
            entries.append(CatalogEntry(display_name=name, path=device))
            log.debug(f"Serial port: {device} ({name})")

        log.debug(f"Found {len(entries)} serial ports")
        return entries

    def get_metrics(self) -> Dict[str, Any]:
        return dict(self.metrics)
