"""
Production Configuration Manager

Layered configuration (defaults, YAML file, environment) with validation,
change notifications and optional hot-reloading of the config file.
"""

import os
import copy
import yaml
import logging
import time
from pathlib import Path
from typing import Dict, Any, Optional, List, Callable
from dataclasses import dataclass, field
from enum import Enum
from threading import Lock
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "modular-midi"


class ConfigSource(Enum):
    """Configuration source types"""
    ENVIRONMENT = "environment"
    FILE = "file"
    DEFAULT = "default"
    RUNTIME = "runtime"


@dataclass
class ConfigValidationResult:
    """Result of configuration validation"""
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    source: Optional[ConfigSource] = None


@dataclass
class ConfigChange:
    """Configuration change notification"""
    key: str
    old_value: Any
    new_value: Any
    source: ConfigSource
    timestamp: float


class ConfigValidationError(Exception):
    """Configuration validation error"""
    pass


class ProductionConfigManager:
    """
    Configuration manager with:
    - Multi-source configuration (defaults < file < environment)
    - Validation with separate errors and warnings
    - Hot-reloading with change notifications
    """

    ENV_MAPPINGS = {
        'MODULAR_MIDI_SERIAL_BAUD_RATE': ('serial', 'baud_rate'),
        'MODULAR_MIDI_SERIAL_READ_TIMEOUT': ('serial', 'read_timeout'),
        'MODULAR_MIDI_RECONNECT_INTERVAL': ('serial', 'reconnect_interval'),
        'MODULAR_MIDI_CHANNEL': ('serial', 'channel'),
        'MODULAR_MIDI_QUEUE_CAPACITY': ('midi', 'queue_capacity'),
        'MODULAR_MIDI_STORE_DIR': ('devices', 'store_dir'),
        'MODULAR_MIDI_LOG_LEVEL': ('logging', 'level'),
        'MODULAR_MIDI_LOG_FILE': ('logging', 'file'),
        'MODULAR_MIDI_MONITORING_ENABLED': ('monitoring', 'enabled'),
        'MODULAR_MIDI_HEALTH_CHECK_INTERVAL': ('monitoring', 'check_interval'),
    }

    def __init__(self, config_dir: Optional[Path] = None, config_file: Optional[Path] = None,
                 enable_hot_reload: bool = False):
        self.config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
        self.config_file = Path(config_file) if config_file else self.config_dir / "config.yaml"

        self._config: Dict[str, Any] = {}
        self._defaults: Dict[str, Any] = self._get_default_config()
        self._source_map: Dict[str, ConfigSource] = {}
        self._callbacks: List[Callable[[ConfigChange], None]] = []

        self._lock = Lock()
        self._hot_reload_enabled = enable_hot_reload
        self._observer: Optional[Observer] = None

        self.logger = logging.getLogger('modular_midi.production.config')

        self._config = copy.deepcopy(self._defaults)

    def start_hot_reload(self) -> bool:
        """
        Watch the config file and reload it when it changes

        Returns:
            True if the watcher is running
        """
        if not self._hot_reload_enabled:
            return False
        if self._observer is not None:
            return True

        manager = self

        class ConfigFileHandler(FileSystemEventHandler):
            def on_modified(self, event):
                if Path(event.src_path) == manager.config_file:
                    manager._handle_config_change()

        watch_dir = self.config_file.parent
        if not watch_dir.exists():
            self.logger.warning(f"Config directory {watch_dir} does not exist, hot reload disabled")
            return False

        self._observer = Observer()
        self._observer.schedule(ConfigFileHandler(), str(watch_dir), recursive=False)
        self._observer.daemon = True
        self._observer.start()
        self.logger.info(f"✓ Watching {self.config_file} for changes")
        return True

    def load_config(self) -> ConfigValidationResult:
        """Load configuration from all sources with validation"""
        start_time = time.perf_counter()

        try:
            file_config = self._load_config_file()
            env_config = self._load_config_environment()
        except ConfigValidationError as e:
            self.logger.error(f"Configuration loading failed: {e}")
            return ConfigValidationResult(is_valid=False, errors=[str(e)], source=ConfigSource.FILE)

        merged = self._merge_configs(self._defaults, file_config, env_config)
        validation = self._validate_config(merged)

        if not validation.is_valid:
            self.logger.error(f"Configuration validation failed: {validation.errors}")
            return validation

        with self._lock:
            self._config = merged
            self._update_source_map(file_config, env_config)

        for warning in validation.warnings:
            self.logger.warning(f"Configuration: {warning}")

        load_time = (time.perf_counter() - start_time) * 1000
        self.logger.debug(f"Configuration loaded in {load_time:.2f}ms")
        return validation

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by dotted key"""
        with self._lock:
            return self._get_nested_value(self._config, key.split('.'), default)

    def set(self, key: str, value: Any, source: ConfigSource = ConfigSource.RUNTIME):
        """
        Set configuration value by dotted key

        Raises:
            ConfigValidationError: if the new configuration is invalid
        """
        with self._lock:
            keys = key.split('.')
            old_config = self._config
            candidate = self._set_nested_value(copy.deepcopy(old_config), keys, value)

            validation = self._validate_config(candidate)
            if not validation.is_valid:
                raise ConfigValidationError(f"Invalid value for {key}: {validation.errors}")

            self._config = candidate
            self._source_map[key] = source

        self._notify_changes(old_config, candidate, source)

        if source != ConfigSource.RUNTIME:
            self._save_config_file()

    def get_section(self, section: str) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._config.get(section, {}))

    def get_source(self, key: str) -> ConfigSource:
        return self._source_map.get(key, ConfigSource.DEFAULT)

    def add_change_callback(self, callback: Callable[[ConfigChange], None]):
        """Add callback for configuration changes"""
        self._callbacks.append(callback)

    def remove_change_callback(self, callback: Callable[[ConfigChange], None]):
        """Remove configuration change callback"""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def write_default_config(self) -> Path:
        """Write the defaults to the config file if it does not exist yet"""
        if not self.config_file.exists():
            self.config_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, 'w') as f:
                yaml.safe_dump(self._defaults, f, default_flow_style=False, sort_keys=False)
            self.logger.info(f"Created default configuration: {self.config_file}")
        return self.config_file

    def shutdown(self):
        """Stop the file watcher"""
        if self._observer:
            self._observer.stop()
            self._observer.join(timeout=2.0)
            self._observer = None

    def _handle_config_change(self):
        """Reload after the config file changed on disk"""
        # Debounce rapid changes
        time.sleep(0.1)

        if not self.config_file.exists():
            return

        try:
            new_config = self._merge_configs(
                self._defaults, self._load_config_file(), self._load_config_environment()
            )
        except ConfigValidationError as e:
            self.logger.error(f"Configuration reload failed: {e}")
            return

        validation = self._validate_config(new_config)
        if not validation.is_valid:
            self.logger.error(f"Configuration reload failed: {validation.errors}")
            return

        with self._lock:
            old_config = self._config
            self._config = new_config

        self._notify_changes(old_config, new_config, ConfigSource.FILE)
        self.logger.info("Configuration reloaded from file")

    def _notify_changes(self, old_config: Dict, new_config: Dict, source: ConfigSource):
        """Notify callbacks of configuration changes"""
        for change in self._diff_configs(old_config, new_config, source):
            for callback in self._callbacks:
                try:
                    callback(change)
                except Exception as e:
                    self.logger.error(f"Error in config change callback: {e}")

    def _diff_configs(self, old: Dict, new: Dict, source: ConfigSource) -> List[ConfigChange]:
        """Calculate differences between old and new configs"""
        changes = []

        def _diff_recursive(old_dict, new_dict, prefix=""):
            for key in sorted(set(old_dict.keys()) | set(new_dict.keys())):
                old_val = old_dict.get(key)
                new_val = new_dict.get(key)
                full_key = f"{prefix}.{key}" if prefix else key

                if old_val != new_val:
                    if isinstance(old_val, dict) and isinstance(new_val, dict):
                        _diff_recursive(old_val, new_val, full_key)
                    else:
                        changes.append(ConfigChange(
                            key=full_key,
                            old_value=old_val,
                            new_value=new_val,
                            source=source,
                            timestamp=time.time()
                        ))

        _diff_recursive(old, new)
        return changes

    def _load_config_file(self) -> Dict[str, Any]:
        """Load configuration from file"""
        if not self.config_file.exists():
            return {}

        try:
            with open(self.config_file) as f:
                config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"YAML parsing error in {self.config_file}: {e}") from e
        except OSError as e:
            raise ConfigValidationError(f"Error reading {self.config_file}: {e}") from e

        if not isinstance(config, dict):
            raise ConfigValidationError(f"{self.config_file} must contain a mapping")
        return config

    def _load_config_environment(self) -> Dict[str, Any]:
        """Load configuration from environment variables"""
        env_config = {}

        for env_var, config_path in self.ENV_MAPPINGS.items():
            value = os.environ.get(env_var)
            if value is not None:
                env_config = self._set_nested_value(env_config, list(config_path), self._parse_env_value(value))

        return env_config

    def _parse_env_value(self, value: str) -> Any:
        """Parse environment variable value"""
        if value.lower() in ('true', 'false'):
            return value.lower() == 'true'

        try:
            if '.' in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        return value

    def _merge_configs(self, *configs: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge multiple configuration dictionaries"""
        result = {}
        for config in configs:
            result = self._deep_merge(result, config)
        return result

    def _deep_merge(self, base: Dict, update: Dict) -> Dict:
        """Deep merge two dictionaries"""
        result = copy.deepcopy(base)

        for key, value in update.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = copy.deepcopy(value)

        return result

    def _update_source_map(self, file_config: Dict, env_config: Dict):
        """Record where each leaf value came from"""
        self._source_map = {}
        for section, values in self._defaults.items():
            if not isinstance(values, dict):
                continue
            for key in values:
                dotted = f"{section}.{key}"
                if key in (env_config.get(section) or {}):
                    self._source_map[dotted] = ConfigSource.ENVIRONMENT
                elif key in (file_config.get(section) or {}):
                    self._source_map[dotted] = ConfigSource.FILE
                else:
                    self._source_map[dotted] = ConfigSource.DEFAULT

    def _validate_config(self, config: Dict[str, Any]) -> ConfigValidationResult:
        """Validate configuration values"""
        errors = []
        warnings = []

        for section in ('serial', 'midi', 'devices', 'logging', 'monitoring'):
            if not isinstance(config.get(section), dict):
                errors.append(f"Missing required section: {section}")

        if errors:
            return ConfigValidationResult(is_valid=False, errors=errors)

        serial = config['serial']
        if not isinstance(serial.get('baud_rate'), int) or serial['baud_rate'] <= 0:
            errors.append("Serial baud rate must be a positive integer")
        elif serial['baud_rate'] != 115200:
            warnings.append("The controller firmware talks at 115200 baud")

        if serial.get('data_bits') not in (5, 6, 7, 8):
            errors.append("Serial data bits must be 5, 6, 7 or 8")
        if serial.get('parity') not in ('N', 'E', 'O', 'M', 'S'):
            errors.append("Serial parity must be one of N, E, O, M, S")
        if serial.get('stop_bits') not in (1, 1.5, 2):
            errors.append("Serial stop bits must be 1, 1.5 or 2")

        read_timeout = serial.get('read_timeout')
        if not isinstance(read_timeout, (int, float)) or read_timeout <= 0:
            errors.append("Serial read timeout must be a positive number")

        interval = serial.get('reconnect_interval')
        if not isinstance(interval, (int, float)) or interval < 0:
            errors.append("Reconnect interval must be a non-negative number")

        channel = serial.get('channel')
        if not isinstance(channel, int) or not 0 <= channel <= 15:
            errors.append("MIDI channel must be between 0 and 15")

        capacity = config['midi'].get('queue_capacity')
        if not isinstance(capacity, int) or capacity < 1:
            errors.append("Queue capacity must be a positive integer")
        elif capacity > 4096:
            warnings.append("Large queue capacity adds output latency under load")

        level = config['logging'].get('level')
        if level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR'):
            errors.append("Log level must be DEBUG, INFO, WARNING or ERROR")

        check_interval = config['monitoring'].get('check_interval')
        if not isinstance(check_interval, (int, float)) or check_interval <= 0:
            errors.append("Health check interval must be a positive number")
        elif not 1 <= check_interval <= 300:
            warnings.append("Health check interval should be between 1 and 300 seconds")

        return ConfigValidationResult(
            is_valid=len(errors) == 0,
            errors=errors,
            warnings=warnings
        )

    def _get_nested_value(self, config: Dict, keys: List[str], default: Any) -> Any:
        """Get nested configuration value"""
        current = config
        for key in keys:
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default
        return current

    def _set_nested_value(self, config: Dict, keys: List[str], value: Any) -> Dict:
        """Set nested configuration value"""
        if not keys:
            return value

        result = dict(config)
        current = result

        for key in keys[:-1]:
            current[key] = dict(current.get(key) or {})
            current = current[key]

        current[keys[-1]] = value
        return result

    def _save_config_file(self):
        """Save configuration to file"""
        try:
            self.config_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, 'w') as f:
                yaml.safe_dump(self._config, f, default_flow_style=False, sort_keys=False)
            self.logger.debug("Configuration saved to file")
        except OSError as e:
            self.logger.error(f"Failed to save configuration: {e}")

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration"""
        return {
            'version': '1.0',
            'serial': {
                'baud_rate': 115200,
                'data_bits': 8,
                'parity': 'N',
                'stop_bits': 1,
                'read_timeout': 1.0,
                'reconnect_interval': 5.0,
                'channel': 0,
            },
            'midi': {
                'queue_capacity': 128,
            },
            'devices': {
                'store_dir': str(self.config_dir),
            },
            'logging': {
                'level': 'INFO',
                'file': None,
            },
            'monitoring': {
                'enabled': True,
                'check_interval': 5.0,
            },
        }
