"""
Production Module Tests
=======================
Tests for the operational components: configuration, error handling,
retry policies, health monitoring and logging.
"""

import logging
import sys
from os.path import dirname, join
from pathlib import Path
from unittest.mock import Mock

import pytest

sys.path.insert(0, join(dirname(dirname(__file__)), 'src'))

from modular_midi.errors import (
    NoDevicesAvailable, PipelineStartError, ProtocolError, SelectionNotFound
)
from modular_midi.production import (
    ConfigValidationError,
    ErrorSeverity,
    HealthStatus,
    HealthThresholds,
    PipelineHealthMonitor,
    ProductionConfigManager,
    ProductionErrorHandler,
    ProductionRetryManager,
    RetryConfig,
    RetryStrategy,
    setup_logging,
)
from modular_midi.production.config_manager import ConfigSource


# Configuration

def test_config_defaults(tmp_path):
    """Test default configuration values"""
    config = ProductionConfigManager(config_dir=tmp_path)
    result = config.load_config()

    assert result.is_valid
    assert config.get('serial.baud_rate') == 115200
    assert config.get('serial.reconnect_interval') == 5.0
    assert config.get('midi.queue_capacity') == 128
    assert config.get('devices.store_dir') == str(tmp_path)
    assert config.get('missing.key', 'fallback') == 'fallback'


def test_config_file_and_environment(tmp_path, monkeypatch):
    """Environment overrides the file, the file overrides defaults"""
    (tmp_path / "config.yaml").write_text(
        "serial:\n  channel: 4\n  read_timeout: 0.5\nmidi:\n  queue_capacity: 64\n"
    )
    monkeypatch.setenv('MODULAR_MIDI_QUEUE_CAPACITY', '256')

    config = ProductionConfigManager(config_dir=tmp_path)
    assert config.load_config().is_valid

    assert config.get('serial.channel') == 4
    assert config.get('serial.read_timeout') == 0.5
    assert config.get('midi.queue_capacity') == 256
    assert config.get_source('midi.queue_capacity') == ConfigSource.ENVIRONMENT
    assert config.get_source('serial.channel') == ConfigSource.FILE
    assert config.get_source('serial.baud_rate') == ConfigSource.DEFAULT


def test_config_validation(tmp_path):
    """Invalid values are rejected, odd-but-legal values only warn"""
    (tmp_path / "config.yaml").write_text("serial:\n  baud_rate: 9600\n  parity: X\n")
    config = ProductionConfigManager(config_dir=tmp_path)

    result = config.load_config()

    assert not result.is_valid
    assert any("parity" in error for error in result.errors)

    (tmp_path / "config.yaml").write_text("serial:\n  baud_rate: 9600\n")
    result = config.load_config()
    assert result.is_valid
    assert any("115200" in warning for warning in result.warnings)


def test_config_yaml_error(tmp_path):
    (tmp_path / "config.yaml").write_text("serial: [unclosed\n")
    config = ProductionConfigManager(config_dir=tmp_path)

    result = config.load_config()

    assert not result.is_valid
    assert "YAML" in result.errors[0]


def test_config_set_and_callbacks(tmp_path):
    config = ProductionConfigManager(config_dir=tmp_path)
    config.load_config()
    changes = []
    config.add_change_callback(changes.append)

    config.set('logging.level', 'DEBUG')

    assert config.get('logging.level') == 'DEBUG'
    assert [c.key for c in changes] == ['logging.level']
    assert changes[0].old_value == 'INFO'
    assert not (tmp_path / "config.yaml").exists()

    with pytest.raises(ConfigValidationError):
        config.set('serial.channel', 16)
    assert config.get('serial.channel') == 0


def test_config_write_default(tmp_path):
    config = ProductionConfigManager(config_dir=tmp_path)
    path = config.write_default_config()

    assert path.exists()
    reloaded = ProductionConfigManager(config_dir=tmp_path)
    assert reloaded.load_config().is_valid
    assert reloaded.get_section('serial')['baud_rate'] == 115200


def test_config_hot_reload_disabled_by_default(tmp_path):
    config = ProductionConfigManager(config_dir=tmp_path)
    assert config.start_hot_reload() is False
    config.shutdown()


def test_config_reload_notifies(tmp_path):
    """A changed file is merged and diffed on reload"""
    config = ProductionConfigManager(config_dir=tmp_path, enable_hot_reload=True)
    config.load_config()
    changes = []
    config.add_change_callback(changes.append)

    (tmp_path / "config.yaml").write_text("logging:\n  level: WARNING\n")
    config._handle_config_change()

    assert config.get('logging.level') == 'WARNING'
    assert [c.key for c in changes] == ['logging.level']
    assert changes[0].source == ConfigSource.FILE


# Error handling

def test_error_handler_statistics():
    """Test error counting by context and severity"""
    handler = ProductionErrorHandler()

    handler.handle_error(ProtocolError("odd frame"), 'serial_frame')
    handler.handle_error(ValueError("boom"), 'generator', ErrorSeverity.HIGH)
    handler.handle_error(ProtocolError("short frame"), 'serial_frame')

    stats = handler.get_error_statistics()
    assert stats['total_errors'] == 3
    assert stats['error_counts'] == {'serial_frame': 2, 'generator': 1}
    assert stats['severity_counts']['low'] == 2
    assert stats['severity_counts']['high'] == 1
    assert stats['recent_errors'] == 3

    handler.reset_statistics()
    assert handler.get_error_statistics()['total_errors'] == 0


def test_error_handler_startup_report():
    """Fatal startup errors are reported through their cause"""
    handler = ProductionErrorHandler()
    cause = SelectionNotFound("20:0")
    error = PipelineStartError(f"Pipeline failed to start: {cause}", cause=cause)

    ctx = handler.create_error_context(error, 'pipeline_start', details={'store': '/tmp/x'})
    report = handler.format_error(ctx)

    assert ctx.severity == ErrorSeverity.CRITICAL
    assert not ctx.recoverable
    assert ctx.user_message == "Selected Device Not Connected"
    assert "select-midi" in report
    assert "store: /tmp/x" in report
    lines = report.splitlines()
    assert len({len(line) for line in lines}) == 1


def test_error_handler_logs_by_severity(caplog):
    handler = ProductionErrorHandler()
    with caplog.at_level(logging.INFO, logger='modular_midi.production.error_handler'):
        handler.handle_error(NoDevicesAvailable("MIDI output"), 'pipeline_start')

    assert caplog.records[-1].levelno == logging.CRITICAL
    assert "No MIDI Output Devices Found" in caplog.records[-1].getMessage()


# Retry

def test_retry_recovers_from_transient_failure():
    manager = ProductionRetryManager()
    operation = Mock(side_effect=[OSError("busy"), "ok"])
    sleeps = []

    assert manager.retry_sync(operation, 'file_operations', sleep=sleeps.append) == "ok"
    assert operation.call_count == 2
    assert len(sleeps) == 1
    assert manager.get_metrics()['successful_retries'] == 1
    assert manager.get_metrics()['exceptions_by_type'] == {'OSError': 1}


def test_retry_gives_up():
    manager = ProductionRetryManager()
    operation = Mock(side_effect=OSError("gone"))

    with pytest.raises(OSError):
        manager.retry_sync(operation, 'file_operations', sleep=lambda s: None)

    assert operation.call_count == 3
    assert manager.get_metrics()['failed_retries'] == 1


def test_retry_skips_non_retryable():
    manager = ProductionRetryManager()
    operation = Mock(side_effect=ValueError("bad data"))

    with pytest.raises(ValueError):
        manager.retry_sync(operation, 'file_operations', sleep=lambda s: None)
    assert operation.call_count == 1


def test_retry_delays():
    manager = ProductionRetryManager()
    reconnect = manager.get_config('serial_reconnect')

    assert reconnect.max_attempts is None
    assert [manager.calculate_delay(reconnect, n) for n in range(3)] == [5.0, 5.0, 5.0]
    assert reconnect.should_retry(OSError(), 10_000)

    backoff = RetryConfig(base_delay=1.0, max_delay=3.0, jitter=False,
                          strategy=RetryStrategy.EXPONENTIAL_BACKOFF)
    assert [manager.calculate_delay(backoff, n) for n in range(4)] == [1.0, 2.0, 3.0, 3.0]

    linear = RetryConfig(base_delay=0.5, jitter=False, strategy=RetryStrategy.LINEAR_BACKOFF)
    assert manager.calculate_delay(linear, 2) == 1.5


def test_retry_register_config():
    manager = ProductionRetryManager()
    manager.register_config('custom', RetryConfig(max_attempts=1))
    assert manager.get_config('custom').max_attempts == 1
    assert manager.get_config('unknown').max_attempts == 3


# Health monitoring

def make_stats(dropped=0, write_errors=0, depth=0):
    return {
        'queue': {'dropped': dropped, 'depth': depth, 'capacity': 128},
        'writer': {'write_errors': write_errors, 'messages_sent': 10},
        'ingestor': {'state': 'connected', 'events_forwarded': 5, 'protocol_errors': 0},
    }


def make_process(cpu=5.0, memory=1.0):
    process = Mock()
    process.cpu_percent.return_value = cpu
    process.memory_percent.return_value = memory
    return process


def test_health_monitor_healthy():
    stats = make_stats()
    monitor = PipelineHealthMonitor(lambda: stats, HealthThresholds(min_uptime=0.0),
                                    process=make_process())
    monitor.sample(now=100.0)
    monitor.sample(now=105.0)

    health = monitor.get_health_status()
    assert health['status'] == HealthStatus.HEALTHY.value
    assert health['metrics']['serial']['state'] == 'connected'
    assert health['metrics']['queue']['drop_rate'] == 0.0


def test_health_monitor_drop_rate_critical():
    counters = {'dropped': 0}
    monitor = PipelineHealthMonitor(lambda: make_stats(dropped=counters['dropped']),
                                    HealthThresholds(max_drop_rate=10.0),
                                    process=make_process())
    monitor.sample(now=0.0)
    counters['dropped'] = 100
    monitor.sample(now=1.0)

    health = monitor.get_health_status()
    assert health['status'] == HealthStatus.CRITICAL.value
    assert health['metrics']['queue']['drop_rate'] == 100.0


def test_health_monitor_write_errors_warning():
    counters = {'errors': 0}
    monitor = PipelineHealthMonitor(lambda: make_stats(write_errors=counters['errors']),
                                    HealthThresholds(max_write_error_rate=1.0, min_uptime=0.0),
                                    process=make_process())
    monitor.sample(now=0.0)
    counters['errors'] = 8
    monitor.sample(now=10.0)

    assert monitor.get_health_status()['status'] == HealthStatus.WARNING.value


def test_health_monitor_unknown_during_startup():
    monitor = PipelineHealthMonitor(make_stats, process=make_process())
    monitor.sample()
    assert monitor.get_health_status()['status'] == HealthStatus.UNKNOWN.value


def test_health_monitor_alert_cooldown(caplog):
    monitor = PipelineHealthMonitor(make_stats, HealthThresholds(max_cpu_usage=10.0),
                                    process=make_process(cpu=50.0))
    monitor.sample()

    with caplog.at_level(logging.WARNING, logger='modular_midi.production.health_monitor'):
        monitor._check_alerts(monitor.get_health_status())
        monitor._check_alerts(monitor.get_health_status())

    alerts = [r for r in caplog.records if "HEALTH ALERT" in r.getMessage()]
    assert len(alerts) == 1


def test_health_monitor_report():
    monitor = PipelineHealthMonitor(make_stats, process=make_process())
    monitor.sample()
    report = monitor.get_detailed_report()

    assert "Pipeline Health" in report
    assert "connected" in report
    assert len({len(line) for line in report.splitlines()}) == 1


def test_health_monitor_thread_lifecycle():
    monitor = PipelineHealthMonitor(make_stats, check_interval=0.01, process=make_process())
    callback = Mock()
    monitor.register_health_callback(callback)

    assert monitor.start_monitoring()
    monitor.health_thread.join(timeout=0.2)
    monitor.stop_monitoring()

    assert not monitor.monitoring_active
    assert callback.called


# Logging

def test_setup_logging(tmp_path):
    log_file = tmp_path / "logs" / "bridge.log"
    logger = setup_logging(verbose=True, log_file=log_file)

    logger.getChild('test').debug("written to file")
    for handler in logger.handlers:
        handler.flush()

    assert logger.level == logging.DEBUG
    assert "written to file" in log_file.read_text()

    logger = setup_logging(verbose=False)
    assert logger.level == logging.INFO
    assert len(logger.handlers) == 1
