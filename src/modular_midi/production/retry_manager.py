"""
Production Retry Manager

Named retry policies for transient failures. The serial link reconnects on
a fixed interval forever; file access is retried a few times quickly.
"""

import time
import random
import logging
from typing import Callable, Any, Dict, Optional
from dataclasses import dataclass
from enum import Enum

log = logging.getLogger(__name__)


class RetryStrategy(Enum):
    """Retry strategies"""
    EXPONENTIAL_BACKOFF = "exponential_backoff"
    LINEAR_BACKOFF = "linear_backoff"
    FIXED_DELAY = "fixed_delay"
    IMMEDIATE = "immediate"


@dataclass
class RetryConfig:
    """Configuration for retry behavior"""
    max_attempts: Optional[int] = 3  # None retries forever
    base_delay: float = 0.1
    max_delay: float = 60.0
    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL_BACKOFF
    jitter: bool = True
    multiplier: float = 2.0
    retryable_exceptions: tuple = (Exception,)

    def should_retry(self, exception: Exception, attempt: int) -> bool:
        """Check if exception should be retried after the given 0-based attempt"""
        if not isinstance(exception, self.retryable_exceptions):
            return False
        return self.max_attempts is None or attempt + 1 < self.max_attempts


class ProductionRetryManager:
    """Retry manager with named policies and retry metrics"""

    def __init__(self, default_configs: Optional[Dict[str, RetryConfig]] = None):
        self.default_configs: Dict[str, RetryConfig] = {}
        self.metrics = {
            'total_retries': 0,
            'successful_retries': 0,
            'failed_retries': 0,
            'total_retry_time': 0.0,
            'exceptions_by_type': {},
        }

        self._setup_default_configs()
        if default_configs:
            self.default_configs.update(default_configs)

    def retry_sync(self, operation: Callable, config_name: str,
                   *args, sleep: Callable[[float], Any] = time.sleep, **kwargs) -> Any:
        """
        Execute operation with retry logic

        Args:
            operation: Function to retry
            config_name: Name of retry configuration to use
            sleep: Function used to wait between attempts
            *args: Arguments to pass to operation
            **kwargs: Keyword arguments to pass to operation

        Returns:
            Result of operation if successful

        Raises:
            Last exception if all retries exhausted or it is not retryable
        """
        config = self.get_config(config_name)
        start_time = time.time()
        attempt = 0

        while True:
            try:
                result = operation(*args, **kwargs)
            except Exception as e:
                self.record_exception(e)

                if not config.should_retry(e, attempt):
                    self.metrics['failed_retries'] += 1
                    self.metrics['total_retries'] += attempt
                    self.metrics['total_retry_time'] += time.time() - start_time
                    log.warning(f"Retry failed for {config_name} after {attempt + 1} attempts: {e}")
                    raise

                delay = self.calculate_delay(config, attempt)
                log.debug(f"Retry attempt {attempt + 1} failed for {config_name}: {e}")
                log.debug(f"Waiting {delay:.2f}s before retry...")
                sleep(delay)
                attempt += 1
                continue

            if attempt > 0:
                self.metrics['successful_retries'] += 1
                self.metrics['total_retries'] += attempt
                self.metrics['total_retry_time'] += time.time() - start_time
                log.info(f"✓ Retry successful for {config_name} (attempt {attempt + 1})")

            return result

    def record_exception(self, exception: Exception):
        """Count an exception by type"""
        exc_type = type(exception).__name__
        self.metrics['exceptions_by_type'][exc_type] = (
            self.metrics['exceptions_by_type'].get(exc_type, 0) + 1
        )

    def register_config(self, name: str, config: RetryConfig):
        """
        Register a custom retry configuration

        Args:
            name: Configuration name
            config: Retry configuration
        """
        self.default_configs[name] = config
        log.debug(f"Registered retry config: {name}")

    def get_config(self, name: str) -> RetryConfig:
        """Get retry configuration by name"""
        if name in self.default_configs:
            return self.default_configs[name]

        log.warning(f"Retry config '{name}' not found, using default")
        return RetryConfig()

    def calculate_delay(self, config: RetryConfig, attempt: int) -> float:
        """Delay before the retry that follows the given 0-based attempt"""
        if config.strategy == RetryStrategy.EXPONENTIAL_BACKOFF:
            delay = config.base_delay * (config.multiplier ** attempt)
        elif config.strategy == RetryStrategy.LINEAR_BACKOFF:
            delay = config.base_delay * (attempt + 1)
        elif config.strategy == RetryStrategy.FIXED_DELAY:
            delay = config.base_delay
        else:  # IMMEDIATE
            delay = 0.0

        delay = min(delay, config.max_delay)

        if config.jitter and delay > 0:
            jitter_range = delay * 0.1
            delay += random.uniform(-jitter_range, jitter_range)

        return max(0.0, delay)

    def get_metrics(self) -> Dict[str, Any]:
        """Get retry metrics"""
        total_attempts = (self.metrics['successful_retries'] +
                          self.metrics['failed_retries'])

        return {
            **self.metrics,
            'total_attempts': total_attempts,
            'success_rate': (
                (self.metrics['successful_retries'] / max(1, total_attempts)) * 100
            ),
        }

    def _setup_default_configs(self):
        """Setup default retry configurations"""
        self.default_configs.update({
            'serial_reconnect': RetryConfig(
                max_attempts=None,
                base_delay=5.0,
                max_delay=5.0,
                strategy=RetryStrategy.FIXED_DELAY,
                jitter=False,
                retryable_exceptions=(Exception,)
            ),

            'file_operations': RetryConfig(
                max_attempts=3,
                base_delay=0.1,
                max_delay=1.0,
                strategy=RetryStrategy.FIXED_DELAY,
                retryable_exceptions=(IOError, OSError)
            ),
        })
