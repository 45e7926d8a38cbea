"""
MIDI Writer

Single consumer of the message queue. Exclusively owns the open MIDI output
handle for its lifetime and writes every received event to the hardware.
"""

import time
import threading
import logging
from typing import Optional, Callable, Dict, Any

import rtmidi

from .messages import ControlChangeEvent
from .message_queue import MessageQueue
from ..errors import OutputOpenError, QueueClosedError

log = logging.getLogger(__name__)


class MidiWriter:
    """
    MIDI output consumer.

    The output handle is opened once by open() and closed when the queue
    closes. A failed write is logged and skipped; the handle is never
    reopened automatically, that takes a restart.
    """

    def __init__(self, output_factory: Callable = rtmidi.MidiOut):
        self._output_factory = output_factory
        self._midi_out = None
        self._device_index: Optional[int] = None
        self._port_name: str = ""
        self._thread: Optional[threading.Thread] = None
        self._last_activity: float = 0.0

        self.metrics = {
            'messages_sent': 0,
            'write_errors': 0,
        }

    @property
    def is_open(self) -> bool:
        return self._midi_out is not None

    @property
    def port_name(self) -> str:
        return self._port_name

    @property
    def device_index(self) -> Optional[int]:
        return self._device_index

    def open(self, device_index: int):
        """
        Open the output handle for a resolved device index

        Raises:
            OutputOpenError: if the port cannot be opened
        """
        if self._midi_out is not None:
            raise OutputOpenError(f"MIDI output already open: {self._port_name}")

        try:
            midi_out = self._output_factory()
            ports = midi_out.get_ports()
            if not 0 <= device_index < len(ports):
                raise OutputOpenError(
                    f"MIDI output index {device_index} out of range ({len(ports)} ports)"
                )
            midi_out.open_port(device_index)
        except OutputOpenError:
            raise
        except Exception as e:
            raise OutputOpenError(f"Failed to open MIDI output {device_index}: {e}") from e

        self._midi_out = midi_out
        self._device_index = device_index
        self._port_name = ports[device_index]
        log.info(f"✓ MIDI output opened: [{device_index}] {self._port_name}")

    def write(self, event: ControlChangeEvent) -> bool:
        """
        Write one event to the device

        Returns:
            True if written, False if the write failed
        """
        try:
            self._midi_out.send_message(event.to_message())
        except Exception as e:
            self.metrics['write_errors'] += 1
            log.error(f"Error sending {event}: {e}")
            return False

        self.metrics['messages_sent'] += 1
        self._last_activity = time.time()
        log.debug(f"MIDI {event}")
        return True

    def run(self, queue: MessageQueue):
        """Drain the queue until it is closed, then close the device"""
        if self._midi_out is None:
            raise OutputOpenError("MIDI output not open")

        log.debug("MIDI writer loop started")
        try:
            while True:
                try:
                    event = queue.receive()
                except QueueClosedError:
                    break
                self.write(event)
        finally:
            self.close()

        log.debug("MIDI writer loop ended")

    def start(self, queue: MessageQueue, device_index: int) -> threading.Thread:
        """
        Open the device, then run the writer loop on its own thread

        The open happens on the calling thread so a fatal error is raised
        before any thread exists.
        """
        self.open(device_index)

        self._thread = threading.Thread(
            target=self.run,
            args=(queue,),
            daemon=True,
            name="MidiWriter"
        )
        self._thread.start()
        return self._thread

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the writer thread to finish

        Returns:
            True if the thread has stopped
        """
        if self._thread is None:
            return True
        self._thread.join(timeout)
        if self._thread.is_alive():
            log.warning("MIDI writer thread did not stop cleanly")
            return False
        return True

    def close(self):
        """Close the output handle"""
        if self._midi_out is None:
            return
        try:
            self._midi_out.close_port()
            log.info(f"MIDI output closed: {self._port_name}")
        except Exception as e:
            log.error(f"MIDI output close error: {e}")
        finally:
            self._midi_out = None

    def get_metrics(self) -> Dict[str, Any]:
        return {
            **self.metrics,
            'open': self.is_open,
            'port_name': self._port_name,
            'last_activity': self._last_activity,
        }
