"""
Error handling for the frame pipeline.

Every failure inside the pipeline degrades to "no overlay" for the affected
frame or update; nothing here re-raises. Errors are classified, logged and
counted per component so the status endpoint can report them.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from functools import wraps
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """Error severity levels for classification and log level."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ComponentType(Enum):
    """Pipeline components errors are attributed to."""
    DETECTION = "detection"
    SIMILARITY = "similarity"
    OVERLAY = "overlay"
    CAPTURE = "capture"
    CONFIGURATION = "configuration"
    GENERIC = "generic"


@dataclass
class ErrorContext:
    """Context information for one handled error."""
    component: ComponentType
    operation: str
    error_type: str = ""
    message: str = ""
    timestamp: float = field(default_factory=time.time)
    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    metadata: Dict[str, Any] = field(default_factory=dict)


class PipelineErrorHandler:
    """Records pipeline errors and keeps per-component statistics. Thread-safe."""

    def __init__(self, history_size: int = 100):
        self.history_size = history_size
        self.error_history: List[ErrorContext] = []
        self._lock = threading.Lock()

        self.error_stats = {
            'total_errors': 0,
            'critical_errors': 0,
            'component_errors': {comp.value: 0 for comp in ComponentType}
        }

    def handle(
        self,
        component: ComponentType,
        operation: str,
        error: BaseException,
        severity: Optional[ErrorSeverity] = None,
        **metadata
    ) -> ErrorContext:
        """Classify, log and record an error. Never raises."""
        context = ErrorContext(
            component=component,
            operation=operation,
            error_type=type(error).__name__,
            message=str(error),
            severity=severity or self._classify_error_severity(error),
            metadata=metadata
        )

        log_message = f"{component.value} error in {operation}: {context.error_type} - {context.message}"
        if context.severity in (ErrorSeverity.HIGH, ErrorSeverity.CRITICAL):
            logger.error(log_message, exc_info=error)
        elif context.severity == ErrorSeverity.MEDIUM:
            logger.warning(log_message)
        else:
            logger.debug(log_message)

        with self._lock:
            self.error_stats['total_errors'] += 1
            self.error_stats['component_errors'][component.value] += 1
            if context.severity == ErrorSeverity.CRITICAL:
                self.error_stats['critical_errors'] += 1
            self.error_history.append(context)
            if len(self.error_history) > self.history_size:
                self.error_history = self.error_history[-self.history_size:]

        return context

    def guard(self, component: ComponentType, operation: Optional[str] = None, fallback: Any = None) -> Callable:
        """
        Decorator: run the wrapped callable and return `fallback` if it raises.

        Args:
            component: Component the failure is attributed to
            operation: Name recorded for the failure, defaults to the function name
            fallback: Value returned instead of raising
        """
        def decorator(func: Callable) -> Callable:
            @wraps(func)
            def wrapper(*args, **kwargs) -> Any:
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    self.handle(component, operation or func.__name__, e)
                    return fallback
            return wrapper
        return decorator

    def _classify_error_severity(self, error: BaseException) -> ErrorSeverity:
        """Classify error severity based on error type and message."""
        if isinstance(error, MemoryError):
            return ErrorSeverity.CRITICAL

        error_str = str(error).lower()
        if any(keyword in error_str for keyword in ['gpu', 'cuda', 'memory', 'model']):
            return ErrorSeverity.HIGH
        if isinstance(error, (ValueError, IndexError)):
            return ErrorSeverity.LOW
        return ErrorSeverity.MEDIUM

    def get_error_statistics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'error_statistics': {
                    'total_errors': self.error_stats['total_errors'],
                    'critical_errors': self.error_stats['critical_errors'],
                    'component_errors': dict(self.error_stats['component_errors'])
                },
                'recent_errors': [
                    {
                        'component': ctx.component.value,
                        'operation': ctx.operation,
                        'error_type': ctx.error_type,
                        'severity': ctx.severity.value,
                        'timestamp': ctx.timestamp
                    }
                    for ctx in self.error_history[-10:]
                ]
            }

    def reset(self) -> None:
        with self._lock:
            self.error_history.clear()
            self.error_stats['total_errors'] = 0
            self.error_stats['critical_errors'] = 0
            self.error_stats['component_errors'] = {comp.value: 0 for comp in ComponentType}


# Global error handler instance
pipeline_error_handler = PipelineErrorHandler()
