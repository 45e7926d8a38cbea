"""
Serial Ingestor

Reads control-change frames from a microcontroller on a serial link and
forwards them to the message queue. The link is expected to drop; the
ingestor reconnects on a fixed interval for as long as it runs.

States:
    DISCONNECTED -> CONNECTING -> CONNECTED -> (read error) DISCONNECTED
    any state -> STOPPED once the stop signal is raised

Wire format: one frame per line. After the trailing CR/LF bytes are
stripped a frame must hold an even number of bytes, at least two, read as
consecutive (controller, value) pairs.
"""

import threading
import logging
from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Callable, Dict, Any, List, Optional

import serial

from ..errors import ProtocolError
from ..midi.messages import ControlChangeEvent, MAX_DATA
from ..midi.message_queue import MessageQueue
from ..production.retry_manager import ProductionRetryManager

log = logging.getLogger(__name__)

FRAME_TERMINATOR = b"\n"

# unterminated input beyond this is discarded as a protocol error
MAX_FRAME_BYTES = 256


class IngestorState(Enum):
    """Serial connection states"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    STOPPED = "stopped"


@dataclass(frozen=True)
class SerialConfig:
    """Fixed link parameters (115200-8-N-1)"""
    baud_rate: int = 115200
    data_bits: int = serial.EIGHTBITS
    parity: str = serial.PARITY_NONE
    stop_bits: float = serial.STOPBITS_ONE
    read_timeout: float = 1.0
    reconnect_interval: float = 5.0
    channel: int = 0

    @classmethod
    def from_dict(cls, values: Optional[Dict[str, Any]]) -> "SerialConfig":
        """Build from a config section, ignoring unknown keys"""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (values or {}).items() if k in known})


def parse_frame(frame: bytes, channel: int) -> List[ControlChangeEvent]:
    """
    Decode one stripped frame into events

    The whole frame is validated before any event is built, so a bad pair
    anywhere rejects the frame.

    Raises:
        ProtocolError: on odd length, fewer than 2 bytes, or a byte above 127
    """
    if len(frame) < 2:
        raise ProtocolError(f"Frame too short ({len(frame)} bytes)", frame)
    if len(frame) % 2:
        raise ProtocolError(f"Odd frame length ({len(frame)} bytes)", frame)

    for offset, byte in enumerate(frame):
        if byte > MAX_DATA:
            raise ProtocolError(f"Byte 0x{byte:02X} at offset {offset} out of range (0-127)", frame)

    return [
        ControlChangeEvent(channel=channel, controller=frame[i], value=frame[i + 1])
        for i in range(0, len(frame), 2)
    ]


class SerialIngestor:
    """
    Serial-to-queue producer.

    Owns the serial connection exclusively. Parsed events are offered to
    the queue without blocking; when the queue is full the event is dropped
    and a warning logged, so live hardware input never stalls.
    """

    def __init__(self, queue: MessageQueue, port_locator: Callable[[], str],
                 config: Optional[SerialConfig] = None,
                 connection_factory: Callable = serial.Serial,
                 stop_event: Optional[threading.Event] = None,
                 retry_manager: Optional[ProductionRetryManager] = None,
                 on_state_change: Optional[Callable[[IngestorState], None]] = None):
        self.queue = queue
        self.config = config or SerialConfig()
        self._port_locator = port_locator
        self._connection_factory = connection_factory
        self._stop_event = stop_event or threading.Event()
        self._retry_manager = retry_manager or ProductionRetryManager()
        self._on_state_change = on_state_change

        self._reconnect_policy = replace(
            self._retry_manager.get_config('serial_reconnect'),
            base_delay=self.config.reconnect_interval,
            max_delay=self.config.reconnect_interval,
        )

        self._state = IngestorState.DISCONNECTED
        self._port_path: str = ""
        self._thread: Optional[threading.Thread] = None

        self.metrics = {
            'connect_attempts': 0,
            'connect_failures': 0,
            'read_errors': 0,
            'frames_parsed': 0,
            'protocol_errors': 0,
            'events_forwarded': 0,
            'events_dropped': 0,
        }

    @property
    def state(self) -> IngestorState:
        return self._state

    @property
    def port_path(self) -> str:
        return self._port_path

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    def start(self) -> threading.Thread:
        """Run the state machine on its own thread"""
        if self._thread and self._thread.is_alive():
            log.warning("Serial ingestor already running")
            return self._thread

        self._thread = threading.Thread(
            target=self.run,
            daemon=True,
            name="SerialIngestor"
        )
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None) -> bool:
        """
        Raise the stop signal and wait for the thread

        Returns:
            True if the ingestor thread has stopped
        """
        self._stop_event.set()

        if self._thread is None:
            return True
        self._thread.join(timeout)
        if self._thread.is_alive():
            log.warning("Serial ingestor thread did not stop cleanly")
            return False
        return True

    def run(self):
        """State machine main loop; returns once stopped"""
        log.info("Serial ingestor started")
        failures = 0

        try:
            while not self._stop_event.is_set():
                connection = self._connect()

                if connection is None:
                    self._set_state(IngestorState.DISCONNECTED)
                    delay = self._retry_manager.calculate_delay(self._reconnect_policy, failures)
                    failures += 1
                    log.info(f"Retrying serial connection in {delay:.1f}s")
                    if self._stop_event.wait(delay):
                        break
                    continue

                failures = 0
                try:
                    self._read_loop(connection)
                finally:
                    self._close(connection)
        finally:
            self._set_state(IngestorState.STOPPED)
            log.info("Serial ingestor stopped")

    def handle_frame(self, frame: bytes) -> int:
        """
        Parse a stripped frame and offer its events to the queue

        Returns:
            Number of events enqueued
        """
        try:
            events = parse_frame(frame, self.config.channel)
        except ProtocolError as e:
            self.metrics['protocol_errors'] += 1
            log.warning(f"Protocol error, frame skipped: {e}")
            return 0

        self.metrics['frames_parsed'] += 1
        forwarded = 0

        for event in events:
            if self.queue.try_send(event):
                forwarded += 1
            else:
                self.metrics['events_dropped'] += 1
                reason = "closed" if self.queue.closed else "full"
                log.warning(f"Message queue {reason}, dropped {event}")

        self.metrics['events_forwarded'] += forwarded
        return forwarded

    def get_metrics(self) -> Dict[str, Any]:
        return {
            **self.metrics,
            'state': self._state.value,
            'port_path': self._port_path,
        }

    def _connect(self):
        """One connect attempt; returns the open connection or None"""
        self._set_state(IngestorState.CONNECTING)
        self.metrics['connect_attempts'] += 1

        try:
            path = self._port_locator()
            connection = self._connection_factory(
                port=path,
                baudrate=self.config.baud_rate,
                bytesize=self.config.data_bits,
                parity=self.config.parity,
                stopbits=self.config.stop_bits,
                timeout=self.config.read_timeout,
            )
        except Exception as e:
            self.metrics['connect_failures'] += 1
            self._retry_manager.record_exception(e)
            log.error(f"Serial connection failed: {e}")
            return None

        self._port_path = path
        self._set_state(IngestorState.CONNECTED)
        log.info(f"✓ Serial connected: {path} @ {self.config.baud_rate} baud")
        return connection

    def _read_loop(self, connection):
        """Read frames until the stop signal or a read error"""
        buffer = bytearray()

        while not self._stop_event.is_set():
            try:
                chunk = connection.readline()
            except Exception as e:
                self.metrics['read_errors'] += 1
                log.error(f"Serial read error on {self._port_path}: {e}")
                self._set_state(IngestorState.DISCONNECTED)
                return

            if not chunk:
                # read timeout
                continue

            buffer.extend(chunk)
            if not buffer.endswith(FRAME_TERMINATOR):
                if len(buffer) > MAX_FRAME_BYTES:
                    self.metrics['protocol_errors'] += 1
                    log.warning(f"Protocol error, {len(buffer)} bytes without a line terminator discarded")
                    buffer.clear()
                # partial line returned at the timeout, wait for the rest
                continue

            frame = bytes(buffer).rstrip(b"\r\n")
            buffer.clear()
            self.handle_frame(frame)

    def _close(self, connection):
        try:
            connection.close()
            log.debug(f"Serial connection closed: {self._port_path}")
        except (serial.SerialException, OSError) as e:
            log.error(f"Serial close error: {e}")

    def _set_state(self, state: IngestorState):
        if state is self._state:
            return
        log.debug(f"Serial ingestor: {self._state.value} -> {state.value}")
        self._state = state
        if self._on_state_change:
            try:
                self._on_state_change(state)
            except Exception as e:
                log.error(f"State change callback error: {e}")
