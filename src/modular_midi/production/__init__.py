"""
Production Module

Operational support for the bridge:
- Logging with colored console output and rotating files
- Layered configuration with validation and hot-reloading
- Error statistics and user-facing error reports
- Retry policies for reconnects and file access
- Pipeline health monitoring
"""

from .config_manager import ProductionConfigManager, ConfigValidationResult, ConfigValidationError
from .error_handler import ProductionErrorHandler, ErrorSeverity, ErrorContext
from .health_monitor import PipelineHealthMonitor, HealthStatus, HealthThresholds
from .logging import setup_logging
from .retry_manager import ProductionRetryManager, RetryConfig, RetryStrategy

__all__ = [
    'ProductionConfigManager',
    'ConfigValidationResult',
    'ConfigValidationError',
    'ProductionErrorHandler',
    'ErrorSeverity',
    'ErrorContext',
    'PipelineHealthMonitor',
    'HealthStatus',
    'HealthThresholds',
    'setup_logging',
    'ProductionRetryManager',
    'RetryConfig',
    'RetryStrategy',
]
