"""
Production Health Monitor

Periodic health assessment of a running pipeline: queue drops, MIDI write
errors, serial link state and process resource usage.
"""

import time
import psutil
import threading
import statistics
import logging
from typing import Dict, List, Deque, Callable, Any, Optional
from dataclasses import dataclass, field
from enum import Enum
from collections import deque

log = logging.getLogger(__name__)


class HealthStatus(Enum):
    """Health status levels"""
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    UNKNOWN = "unknown"


@dataclass
class HealthMetrics:
    """Rolling samples taken by the monitor"""
    drop_rate: Deque[float] = field(default_factory=lambda: deque(maxlen=60))
    write_error_rate: Deque[float] = field(default_factory=lambda: deque(maxlen=60))
    cpu_usage: Deque[float] = field(default_factory=lambda: deque(maxlen=60))
    memory_usage: Deque[float] = field(default_factory=lambda: deque(maxlen=60))
    queue_fill: Deque[float] = field(default_factory=lambda: deque(maxlen=60))
    start_time: float = field(default_factory=time.time)
    lock: threading.Lock = field(default_factory=threading.Lock)


@dataclass
class HealthThresholds:
    """Thresholds for health assessment"""
    max_drop_rate: float = 10.0         # dropped events per second
    max_write_error_rate: float = 1.0   # failed writes per second
    max_cpu_usage: float = 80.0         # percent of one core
    max_memory_usage: float = 25.0      # percent of system memory
    min_uptime: float = 10.0            # seconds before status is reported


class PipelineHealthMonitor:
    """Background health checks over a pipeline's metrics"""

    def __init__(self, stats_provider: Callable[[], Dict[str, Any]],
                 thresholds: Optional[HealthThresholds] = None,
                 check_interval: float = 5.0,
                 process: Optional[psutil.Process] = None):
        self.stats_provider = stats_provider
        self.thresholds = thresholds or HealthThresholds()
        self.check_interval = check_interval
        self.metrics = HealthMetrics()
        self.process = process or psutil.Process()

        self.monitoring_active = False
        self.shutdown_event = threading.Event()
        self.health_thread: Optional[threading.Thread] = None

        self.health_callbacks: List[Callable] = []
        self.alerts_sent: Dict[str, float] = {}
        self.alert_cooldown = 300.0  # seconds

        self._last_counts: Optional[Dict[str, float]] = None
        self._last_stats: Dict[str, Any] = {}

    def start_monitoring(self) -> bool:
        """
        Start health monitoring

        Returns:
            True if monitoring started successfully
        """
        if self.monitoring_active:
            log.warning("Health monitoring already active")
            return True

        self.shutdown_event.clear()
        self.health_thread = threading.Thread(
            target=self._health_monitoring_loop,
            daemon=True,
            name="HealthMonitor"
        )
        self.health_thread.start()

        self.monitoring_active = True
        log.info("✓ Health monitoring started")
        return True

    def stop_monitoring(self):
        """Stop health monitoring"""
        if not self.monitoring_active:
            return

        self.shutdown_event.set()
        if self.health_thread and self.health_thread.is_alive():
            self.health_thread.join(timeout=2.0)

        self.monitoring_active = False
        log.info("✓ Health monitoring stopped")

    def register_health_callback(self, callback: Callable):
        """Register a callback for health events"""
        self.health_callbacks.append(callback)

    def sample(self, now: Optional[float] = None):
        """Take one sample of pipeline counters and process usage"""
        now = time.time() if now is None else now
        stats = self.stats_provider()

        queue = stats.get('queue', {})
        writer = stats.get('writer', {})
        counts = {
            'time': now,
            'dropped': queue.get('dropped', 0),
            'write_errors': writer.get('write_errors', 0),
        }

        with self.metrics.lock:
            if self._last_counts is not None:
                elapsed = max(now - self._last_counts['time'], 1e-6)
                self.metrics.drop_rate.append(
                    (counts['dropped'] - self._last_counts['dropped']) / elapsed)
                self.metrics.write_error_rate.append(
                    (counts['write_errors'] - self._last_counts['write_errors']) / elapsed)

            capacity = queue.get('capacity') or 1
            self.metrics.queue_fill.append(100.0 * queue.get('depth', 0) / capacity)

            try:
                self.metrics.cpu_usage.append(self.process.cpu_percent(interval=None))
                self.metrics.memory_usage.append(self.process.memory_percent())
            except psutil.Error as e:
                log.debug(f"Process metrics unavailable: {e}")

            self._last_counts = counts
            self._last_stats = stats

    def get_health_status(self) -> Dict[str, Any]:
        """Get comprehensive health status"""
        uptime = time.time() - self.metrics.start_time

        with self.metrics.lock:
            drop_rate = self._calculate_average(self.metrics.drop_rate)
            write_error_rate = self._calculate_average(self.metrics.write_error_rate)
            avg_cpu = self._calculate_average(self.metrics.cpu_usage)
            avg_memory = self._calculate_average(self.metrics.memory_usage)
            queue_fill = self._calculate_average(self.metrics.queue_fill)
            stats = dict(self._last_stats)

        status = self._calculate_health_status(drop_rate, write_error_rate, avg_cpu, avg_memory, uptime)

        return {
            'status': status.value,
            'uptime': uptime,
            'metrics': {
                'queue': {
                    'drop_rate': drop_rate,
                    'average_fill': queue_fill,
                    'dropped': stats.get('queue', {}).get('dropped', 0),
                },
                'writer': {
                    'write_error_rate': write_error_rate,
                    'messages_sent': stats.get('writer', {}).get('messages_sent', 0),
                },
                'serial': {
                    'state': stats.get('ingestor', {}).get('state', 'disabled'),
                    'events_forwarded': stats.get('ingestor', {}).get('events_forwarded', 0),
                    'protocol_errors': stats.get('ingestor', {}).get('protocol_errors', 0),
                },
                'system': {
                    'cpu_usage': avg_cpu,
                    'memory_usage': avg_memory,
                },
            }
        }

    def get_detailed_report(self) -> str:
        """Get formatted health report"""
        health = self.get_health_status()
        metrics = health['metrics']
        width = 74

        def row(text: str):
            return f"║  {text[:width - 3]:<{width - 2}}║"

        lines = [
            "╔" + "═" * width + "╗",
            row(f"Pipeline Health - Status: {health['status'].upper()}  Uptime: {health['uptime']:.0f}s"),
            "╠" + "═" * width + "╣",
            row(f"Queue:   Drops:{metrics['queue']['dropped']:6d}  Rate:{metrics['queue']['drop_rate']:.2f}/s  "
                f"Fill:{metrics['queue']['average_fill']:.0f}%"),
            row(f"Writer:  Sent:{metrics['writer']['messages_sent']:7d}  "
                f"Errors:{metrics['writer']['write_error_rate']:.2f}/s"),
            row(f"Serial:  {metrics['serial']['state']:<12}  Forwarded:{metrics['serial']['events_forwarded']:6d}  "
                f"Bad frames:{metrics['serial']['protocol_errors']:4d}"),
            row(f"System:  CPU:{metrics['system']['cpu_usage']:.1f}%  Memory:{metrics['system']['memory_usage']:.1f}%"),
            "╚" + "═" * width + "╝",
        ]
        return "\n".join(lines)

    def _health_monitoring_loop(self):
        """Main health monitoring loop"""
        log.debug("Starting health monitoring loop")

        while not self.shutdown_event.is_set():
            try:
                self.sample()
                health = self.get_health_status()
                self._check_alerts(health)

                for callback in self.health_callbacks:
                    try:
                        callback(health)
                    except Exception as e:
                        log.error(f"Health callback error: {e}")

            except Exception as e:
                log.error(f"Health monitoring error: {e}")

            self.shutdown_event.wait(self.check_interval)

        log.debug("Health monitoring loop ended")

    def _calculate_health_status(self, drop_rate: float, write_error_rate: float,
                                 avg_cpu: float, avg_memory: float, uptime: float) -> HealthStatus:
        """Calculate overall health status"""
        t = self.thresholds

        if (drop_rate > t.max_drop_rate or
                write_error_rate > t.max_write_error_rate or
                avg_cpu > t.max_cpu_usage or
                avg_memory > t.max_memory_usage):
            return HealthStatus.CRITICAL

        if (drop_rate > t.max_drop_rate * 0.7 or
                write_error_rate > t.max_write_error_rate * 0.7 or
                avg_cpu > t.max_cpu_usage * 0.7 or
                avg_memory > t.max_memory_usage * 0.7):
            return HealthStatus.WARNING

        if uptime < t.min_uptime:
            return HealthStatus.UNKNOWN

        return HealthStatus.HEALTHY

    def _check_alerts(self, health: Dict[str, Any]):
        """Log an alert on WARNING/CRITICAL, at most once per cooldown"""
        status = health['status']
        if status not in (HealthStatus.CRITICAL.value, HealthStatus.WARNING.value):
            return

        current_time = time.time()
        if current_time - self.alerts_sent.get(status, 0) <= self.alert_cooldown:
            return

        metrics = health['metrics']
        log.warning(f"HEALTH ALERT [{status.upper()}]: "
                    f"drops {metrics['queue']['drop_rate']:.2f}/s, "
                    f"write errors {metrics['writer']['write_error_rate']:.2f}/s, "
                    f"CPU {metrics['system']['cpu_usage']:.1f}%, "
                    f"memory {metrics['system']['memory_usage']:.1f}%")
        self.alerts_sent[status] = current_time

    def _calculate_average(self, values: Deque[float]) -> float:
        return statistics.mean(values) if values else 0.0
