"""
MIDI Messages

Control-Change event type and its 3-byte wire encoding.
"""

from dataclasses import dataclass

from ..errors import InvalidEventError

CONTROL_CHANGE = 0xB0
STATUS_MASK = 0xF0
CHANNEL_MASK = 0x0F

MAX_CHANNEL = 15
MAX_DATA = 127


def _check_range(name: str, value, upper: int):
    # bool is an int subclass but never a valid MIDI field
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidEventError(f"{name} must be an integer, got {value!r}")
    if not 0 <= value <= upper:
        raise InvalidEventError(f"{name} {value} out of range (0-{upper})")


@dataclass(frozen=True)
class ControlChangeEvent:
    """
    A single MIDI Control-Change.

    All three fields are validated on construction, so an instance that
    exists is always safe to put on the wire.
    """
    channel: int
    controller: int
    value: int

    def __post_init__(self):
        _check_range("channel", self.channel, MAX_CHANNEL)
        _check_range("controller", self.controller, MAX_DATA)
        _check_range("value", self.value, MAX_DATA)

    @property
    def status_byte(self) -> int:
        return CONTROL_CHANGE | self.channel

    def to_message(self) -> list:
        """Message in the list form python-rtmidi expects"""
        return [self.status_byte, self.controller, self.value]

    def to_bytes(self) -> bytes:
        return bytes(self.to_message())

    @classmethod
    def from_bytes(cls, data) -> "ControlChangeEvent":
        """
        Decode a 3-byte Control-Change message

        Args:
            data: bytes, bytearray or list of ints

        Returns:
            The decoded event

        Raises:
            InvalidEventError: if data is not a Control-Change message
        """
        data = bytes(data)
        if len(data) != 3:
            raise InvalidEventError(f"Control-Change message must be 3 bytes, got {len(data)}")

        status = data[0]
        if status & STATUS_MASK != CONTROL_CHANGE:
            raise InvalidEventError(f"Not a Control-Change status byte: 0x{status:02X}")

        return cls(channel=status & CHANNEL_MASK, controller=data[1], value=data[2])

    def __str__(self) -> str:
        return f"CC CH{self.channel} {self.controller}={self.value}"
