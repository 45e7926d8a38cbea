"""
Pipeline Lifecycle

PipelineState is created once per process and owns every moving part of the
bridge: the message queue, the MIDI writer (and its output handle), the
serial ingestor (and its connection), the shared stop signal and any running
waveform generator threads.
"""

import time
import threading
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import serial

from .devices import DeviceCatalog, DeviceRole, DeviceStore, resolve
from .errors import OutputOpenError, PipelineStartError, QueueClosedError, ResolutionError, StoreError
from .ingest import SerialConfig, SerialIngestor
from .midi import MessageQueue, MidiWriter
from .midi.message_queue import DEFAULT_CAPACITY
from .production import (
    PipelineHealthMonitor,
    ProductionConfigManager,
    ProductionErrorHandler,
    ProductionRetryManager,
)

log = logging.getLogger(__name__)


class PipelineState:
    """Explicit lifecycle object for one bridge process"""

    def __init__(self, store_dir: Path,
                 queue_capacity: int = DEFAULT_CAPACITY,
                 serial_config: Optional[SerialConfig] = None,
                 catalog: Optional[DeviceCatalog] = None,
                 writer: Optional[MidiWriter] = None,
                 connection_factory: Callable = serial.Serial,
                 retry_manager: Optional[ProductionRetryManager] = None,
                 error_handler: Optional[ProductionErrorHandler] = None,
                 monitoring_interval: Optional[float] = None):
        self.retry_manager = retry_manager or ProductionRetryManager()
        self.error_handler = error_handler or ProductionErrorHandler()
        self.serial_config = serial_config or SerialConfig()

        self.queue = MessageQueue(queue_capacity)
        self.stop_event = threading.Event()
        self.catalog = catalog or DeviceCatalog()
        self.writer = writer or MidiWriter()
        self.midi_store = DeviceStore(DeviceRole.MIDI, store_dir, self.retry_manager)
        self.serial_store = DeviceStore(DeviceRole.SERIAL, store_dir, self.retry_manager)

        self.ingestor: Optional[SerialIngestor] = None
        self._connection_factory = connection_factory
        self._generator_threads: List[threading.Thread] = []

        self.health_monitor: Optional[PipelineHealthMonitor] = None
        if monitoring_interval:
            self.health_monitor = PipelineHealthMonitor(self.get_metrics, check_interval=monitoring_interval)

        self._started = False
        self._stopped = False
        self._start_time = 0.0

    @classmethod
    def from_config(cls, config: ProductionConfigManager, **kwargs) -> "PipelineState":
        """Build a pipeline from a loaded configuration"""
        monitoring = config.get_section('monitoring')
        kwargs.setdefault(
            'monitoring_interval',
            monitoring.get('check_interval') if monitoring.get('enabled') else None
        )
        return cls(
            store_dir=Path(config.get('devices.store_dir')).expanduser(),
            queue_capacity=config.get('midi.queue_capacity', DEFAULT_CAPACITY),
            serial_config=SerialConfig.from_dict(config.get_section('serial')),
            **kwargs
        )

    @property
    def running(self) -> bool:
        return self._started and not self._stopped

    def resolve_output(self) -> int:
        """
        Bind the stored MIDI selection to a live output index

        Raises:
            NoDevicesAvailable: no MIDI outputs present
            SelectionNotFound: the selected output is not connected
            StoreError: the selection file is unreadable
        """
        outputs = self.catalog.enumerate_midi_outputs()
        selection = self.midi_store.load_selection()
        index = resolve(outputs, selection, role="MIDI output")
        log.info(f"Resolved MIDI output: [{index}] {outputs[index].display_name}")
        return index

    def locate_serial_port(self) -> str:
        """Device path of the selected serial port, resolved on every reconnect"""
        ports = self.catalog.enumerate_serial_ports()
        selection = self.serial_store.load_selection()
        index = resolve(ports, selection, role="serial")
        return ports[index].path

    def start(self, enable_serial: bool = True):
        """
        Resolve and open the output, then start the writer and ingestor threads

        Raises:
            PipelineStartError: on any fatal startup failure, before a thread starts
        """
        if self._started:
            raise PipelineStartError("Pipeline already started")

        log.info("Starting MIDI pipeline...")
        try:
            device_index = self.resolve_output()
            self.writer.start(self.queue, device_index)
        except (ResolutionError, OutputOpenError, StoreError) as e:
            self.error_handler.handle_error(e, 'pipeline_start')
            raise PipelineStartError(f"Pipeline failed to start: {e}", cause=e) from e

        self._started = True
        self._start_time = time.time()

        if enable_serial:
            self.ingestor = SerialIngestor(
                self.queue,
                self.locate_serial_port,
                config=self.serial_config,
                connection_factory=self._connection_factory,
                stop_event=self.stop_event,
                retry_manager=self.retry_manager,
            )
            self.ingestor.start()

        if self.health_monitor:
            self.health_monitor.start_monitoring()

        log.info("✓ MIDI pipeline started")

    def run_generator(self, generator: Callable, *args, **kwargs) -> threading.Thread:
        """
        Run a waveform generator on its own thread

        The generator is called as generator(queue, *args, **kwargs).
        """
        if not self.running:
            raise PipelineStartError("Pipeline is not running")

        def target():
            try:
                generator(self.queue, *args, **kwargs)
            except QueueClosedError:
                log.debug(f"{generator.__name__} stopped: message queue closed")

        thread = threading.Thread(
            target=target,
            daemon=True,
            name=f"Generator-{generator.__name__}"
        )
        self._generator_threads = [t for t in self._generator_threads if t.is_alive()]
        self._generator_threads.append(thread)
        thread.start()
        return thread

    def wait_for_generators(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for running generators to finish their fixed run

        Returns:
            True if no generator is still running
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        for thread in list(self._generator_threads):
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(remaining)
        return not any(t.is_alive() for t in self._generator_threads)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until stop is requested; True if it was"""
        return self.stop_event.wait(timeout)

    def request_stop(self):
        """Raise the shared stop signal (safe from a signal handler)"""
        self.stop_event.set()

    def stop(self, timeout: float = 5.0):
        """Stop producers, close the queue and wait for the writer to drain it"""
        if self._stopped:
            return
        self._stopped = True

        log.info("Stopping MIDI pipeline...")
        self.stop_event.set()

        if self.health_monitor:
            self.health_monitor.stop_monitoring()

        if self.ingestor:
            self.ingestor.stop(timeout)

        if not self.wait_for_generators(timeout):
            log.warning("Generators still running, closing the queue under them")

        self.queue.close()

        if self._started and not self.writer.join(timeout):
            log.warning("MIDI writer did not stop cleanly")

        self._log_final_metrics()
        log.info("✓ MIDI pipeline stopped")

    def get_metrics(self) -> Dict[str, Any]:
        """Aggregated metrics of every component"""
        return {
            'uptime': time.time() - self._start_time if self._started else 0.0,
            'queue': self.queue.get_metrics(),
            'writer': self.writer.get_metrics(),
            'ingestor': self.ingestor.get_metrics() if self.ingestor else {},
            'generators': sum(1 for t in self._generator_threads if t.is_alive()),
            'errors': self.error_handler.get_error_statistics(),
            'retry': self.retry_manager.get_metrics(),
        }

    def _log_final_metrics(self):
        metrics = self.get_metrics()
        queue = metrics['queue']
        writer = metrics['writer']
        log.info(f"Final metrics: {writer['messages_sent']} sent, {writer['write_errors']} write errors, "
                 f"{queue['dropped']} dropped")
        if metrics['ingestor']:
            ingestor = metrics['ingestor']
            log.info(f"Serial: {ingestor['events_forwarded']} forwarded, "
                     f"{ingestor['protocol_errors']} bad frames, {ingestor['read_errors']} read errors")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
