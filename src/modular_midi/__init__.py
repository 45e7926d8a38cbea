"""
Modular MIDI - serial controller to MIDI control-change bridge

Turns a USB serial controller (pots, faders, sensors) into MIDI control-change
messages on a hardware or software MIDI output, with waveform generators for
testing the receiving synth.
"""

__version__ = "1.0.0"

from .errors import (
    BridgeError,
    InvalidEventError,
    NoDevicesAvailable,
    OutputOpenError,
    PipelineStartError,
    ProtocolError,
    QueueClosedError,
    QueueFullError,
    ResolutionError,
    SelectionNotFound,
    StoreError,
)
from .midi import ControlChangeEvent, MessageQueue, MidiWriter
from .devices import CatalogEntry, DeviceCatalog, DeviceRole, DeviceStore, Selection, match_key, resolve
from .ingest import IngestorState, SerialConfig, SerialIngestor, parse_frame
from .pipeline import PipelineState

__all__ = [
    '__version__',
    'BridgeError',
    'InvalidEventError',
    'NoDevicesAvailable',
    'OutputOpenError',
    'PipelineStartError',
    'ProtocolError',
    'QueueClosedError',
    'QueueFullError',
    'ResolutionError',
    'SelectionNotFound',
    'StoreError',
    'ControlChangeEvent',
    'MessageQueue',
    'MidiWriter',
    'CatalogEntry',
    'DeviceCatalog',
    'DeviceRole',
    'DeviceStore',
    'Selection',
    'match_key',
    'resolve',
    'IngestorState',
    'SerialConfig',
    'SerialIngestor',
    'parse_frame',
    'PipelineState',
]
