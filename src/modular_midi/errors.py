"""
Error Types

Exception hierarchy shared by the pipeline components. Fatal errors abort
pipeline start; everything else is handled inside the component that
raised it and only shows up in the logs.
"""


class BridgeError(Exception):
    """Base class for all modular-midi errors"""
    pass


class InvalidEventError(BridgeError, ValueError):
    """A control-change event with a field outside its MIDI range"""
    pass


class ResolutionError(BridgeError):
    """A persisted selection could not be bound to a live device"""
    pass


class NoDevicesAvailable(ResolutionError):
    """The device catalog is empty"""

    def __init__(self, role: str = "device"):
        self.role = role
        super().__init__(f"No {role} devices available")


class SelectionNotFound(ResolutionError):
    """No catalog entry matches the selected match key"""

    def __init__(self, match_key: str):
        self.match_key = match_key
        super().__init__(f"Selected device not found: {match_key!r}")


class OutputOpenError(BridgeError):
    """The MIDI output device could not be opened"""
    pass


class PipelineStartError(BridgeError):
    """Fatal startup failure; no pipeline thread has been started"""

    def __init__(self, message: str, cause: Exception = None):
        self.cause = cause
        super().__init__(message)


class ProtocolError(BridgeError):
    """A malformed serial frame"""

    def __init__(self, message: str, frame: bytes = b""):
        self.frame = frame
        super().__init__(message)


class QueueClosedError(BridgeError):
    """The message queue was closed"""
    pass


class QueueFullError(BridgeError):
    """A timed blocking send found no free slot"""
    pass


class StoreError(BridgeError):
    """A catalog/selection file could not be read or written"""
    pass
