"""
Production Error Handler

Error statistics and user-facing error reports. Maps each bridge error to a
severity, a short message and the steps that usually fix it.
"""

import time
import logging
from collections import deque
from typing import Dict, Optional, Any, List, Deque, Tuple
from dataclasses import dataclass
from enum import Enum

from ..errors import (
    InvalidEventError,
    NoDevicesAvailable,
    OutputOpenError,
    PipelineStartError,
    ProtocolError,
    QueueClosedError,
    QueueFullError,
    SelectionNotFound,
    StoreError,
)

log = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """Error severity levels"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ErrorContext:
    """Context information for error handling"""
    error: Exception
    context: str
    severity: ErrorSeverity
    user_message: str
    solutions: List[str]
    details: Dict[str, Any]
    timestamp: float
    recoverable: bool = True


class ProductionErrorHandler:
    """Error statistics, history and formatted reports"""

    BOX_WIDTH = 74

    def __init__(self, max_history: int = 100):
        self.error_counts: Dict[str, int] = {}
        self.severity_counts: Dict[ErrorSeverity, int] = {s: 0 for s in ErrorSeverity}
        self.error_history: Deque[ErrorContext] = deque(maxlen=max_history)

    def handle_error(self, error: Exception, context: str,
                     severity: Optional[ErrorSeverity] = None,
                     details: Optional[Dict[str, Any]] = None) -> ErrorContext:
        """
        Record and log an error

        Args:
            error: The exception that occurred
            context: Where the error occurred (e.g. 'pipeline_start')
            severity: Overrides the severity derived from the error type
            details: Additional context details

        Returns:
            The recorded error context
        """
        error_ctx = self.create_error_context(error, context, severity, details or {})

        self.error_counts[context] = self.error_counts.get(context, 0) + 1
        self.severity_counts[error_ctx.severity] += 1
        self.error_history.append(error_ctx)

        self._log_error(error_ctx)
        return error_ctx

    def create_error_context(self, error: Exception, context: str,
                             severity: Optional[ErrorSeverity] = None,
                             details: Optional[Dict[str, Any]] = None) -> ErrorContext:
        """Create error context with user-friendly message and solutions"""
        default_severity, user_message, solutions, recoverable = self._analyze_error(error)

        return ErrorContext(
            error=error,
            context=context,
            severity=severity or default_severity,
            user_message=user_message,
            solutions=solutions,
            details=details or {},
            timestamp=time.time(),
            recoverable=recoverable
        )

    def format_error(self, error_ctx: ErrorContext) -> str:
        """Format error for user display with solutions"""
        width = self.BOX_WIDTH
        lines = []

        def row(text: str = ""):
            lines.append(f"║  {text[:width - 3]:<{width - 2}}║")

        lines.append("╔" + "═" * width + "╗")
        row(f"Error: {error_ctx.user_message}")
        lines.append("╠" + "═" * width + "╣")
        row(str(error_ctx.error))

        if error_ctx.solutions:
            lines.append("╠" + "═" * width + "╣")
            row("Solution(s):")
            for i, solution in enumerate(error_ctx.solutions[:3], 1):
                row(f"  {i}. {solution}")

        if error_ctx.details:
            lines.append("╠" + "═" * width + "╣")
            row("Details:")
            for key, value in list(error_ctx.details.items())[:5]:
                row(f"  {key}: {value}")

        lines.append("╚" + "═" * width + "╝")
        return "\n".join(lines)

    def get_error_statistics(self) -> Dict[str, Any]:
        """Get error statistics for monitoring"""
        return {
            'total_errors': sum(self.error_counts.values()),
            'error_counts': dict(self.error_counts),
            'severity_counts': {s.value: n for s, n in self.severity_counts.items()},
            'recent_errors': len([e for e in self.error_history
                                  if e.timestamp > (time.time() - 3600)]),
        }

    def reset_statistics(self):
        """Reset error statistics"""
        self.error_counts.clear()
        self.severity_counts = {s: 0 for s in ErrorSeverity}
        self.error_history.clear()

    def _analyze_error(self, error: Exception) -> Tuple[ErrorSeverity, str, List[str], bool]:
        """Severity, user message, solutions and recoverability for an error"""
        if isinstance(error, PipelineStartError) and error.cause is not None:
            severity, message, solutions, _ = self._analyze_error(error.cause)
            return ErrorSeverity.CRITICAL, message, solutions, False

        if isinstance(error, NoDevicesAvailable):
            return (
                ErrorSeverity.CRITICAL,
                "No MIDI Output Devices Found",
                [
                    "Connect a USB MIDI interface or start a software synth",
                    "Check the device with: modular-midi list-midi",
                    "On Linux, make sure the ALSA sequencer module is loaded",
                ],
                False
            )

        if isinstance(error, SelectionNotFound):
            return (
                ErrorSeverity.CRITICAL,
                "Selected Device Not Connected",
                [
                    "Reconnect the selected device",
                    "List devices again: modular-midi list-midi",
                    "Pick another device: modular-midi select-midi <index>",
                ],
                False
            )

        if isinstance(error, OutputOpenError):
            return (
                ErrorSeverity.CRITICAL,
                "Cannot Open MIDI Output",
                [
                    "Close other applications holding the port exclusively",
                    "Unplug and reconnect the MIDI device",
                    "Restart modular-midi",
                ],
                False
            )

        if isinstance(error, StoreError):
            return (
                ErrorSeverity.HIGH,
                "Device Selection File Unreadable",
                [
                    "Refresh the device list: modular-midi list-midi",
                    "Select the device again",
                ],
                False
            )

        if isinstance(error, ProtocolError):
            return (
                ErrorSeverity.LOW,
                "Malformed Serial Frame",
                ["Check the controller firmware frame format (controller/value byte pairs)"],
                True
            )

        if isinstance(error, (QueueFullError, QueueClosedError)):
            return ErrorSeverity.MEDIUM, "Message Queue Unavailable", [], True

        if isinstance(error, InvalidEventError):
            return ErrorSeverity.LOW, "Invalid Control-Change Event", [], True

        if isinstance(error, PermissionError):
            return (
                ErrorSeverity.HIGH,
                "Device Access Permission Denied",
                [
                    "Add yourself to the 'dialout' group: sudo usermod -aG dialout $USER",
                    "Log out and log back in",
                ],
                True
            )

        if isinstance(error, OSError):
            return ErrorSeverity.MEDIUM, "Device I/O Error", ["Check the device connection"], True

        return ErrorSeverity.MEDIUM, "Unexpected Error", [], True

    def _log_error(self, error_ctx: ErrorContext):
        message = f"[{error_ctx.context}] {error_ctx.user_message}: {error_ctx.error}"

        if error_ctx.severity == ErrorSeverity.CRITICAL:
            log.critical(message)
        elif error_ctx.severity == ErrorSeverity.HIGH:
            log.error(message)
        elif error_ctx.severity == ErrorSeverity.MEDIUM:
            log.warning(message)
        else:
            log.info(message)
