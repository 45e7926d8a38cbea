"""
MIDI Module

Control-Change messages, the bounded message queue and the MIDI output writer.
"""

from .messages import ControlChangeEvent
from .message_queue import MessageQueue
from .writer import MidiWriter

__all__ = [
    'ControlChangeEvent',
    'MessageQueue',
    'MidiWriter',
]
