"""Observability utilities for the Sticky Note engine.

Provides persistent disk logging with rotation, timing metrics and
operation tracking for store and backup operations.
"""
import functools
import logging
import time
import uuid
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

# Root of the package logger hierarchy
ROOT_LOGGER_NAME = "stickynote"

# Logging format with ISO 8601 timestamps
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# Type variable for decorators
F = TypeVar('F', bound=Callable[..., Any])


def configure_logging(
    log_dir: Union[str, Path],
    level: int = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,  # 5 MB per file
    backup_count: int = 3,
    console: bool = True,
) -> Path:
    """Configure persistent file logging with rotation.

    Attaches a rotating file handler (and optionally a console handler)
    to the ``stickynote`` logger hierarchy. Calling it again does not
    stack duplicate handlers.

    Args:
        log_dir: Directory for log files
        level: Logging level (default: INFO)
        max_bytes: Maximum size per log file before rotation (default: 5 MB)
        backup_count: Number of rotated files to keep (default: 3)
        console: Also log to console (default: True)

    Returns:
        Path to the log file
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    log_file = log_path / "stickynote.log"
    if not any(
        isinstance(h, RotatingFileHandler)
        and Path(h.baseFilename).resolve() == log_file.resolve()
        for h in root_logger.handlers
    ):
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    if console and not any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler)
        for h in root_logger.handlers
    ):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    root_logger.debug(f"Logging configured: {log_file} (max {max_bytes} bytes, {backup_count} backups)")

    return log_file


@dataclass
class OperationStats:
    """Running totals for one operation name."""

    calls: int = 0
    failures: int = 0
    total_ms: float = 0.0
    slowest_ms: float = 0.0
    last_error: Optional[str] = None

    @property
    def average_ms(self) -> float:
        return self.total_ms / self.calls if self.calls else 0.0


class MetricsCollector:
    """Call counts and timings per store or backup operation.

    Kept in memory for the life of the process; nothing is persisted.
    """

    def __init__(self):
        self._stats: Dict[str, OperationStats] = defaultdict(OperationStats)

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None
    ) -> None:
        stats = self._stats[operation]
        stats.calls += 1
        stats.total_ms += duration_ms
        stats.slowest_ms = max(stats.slowest_ms, duration_ms)
        if not success:
            stats.failures += 1
            stats.last_error = error

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Per-operation stats keyed by operation name."""
        return {
            name: {
                "calls": s.calls,
                "failures": s.failures,
                "average_ms": round(s.average_ms, 2),
                "slowest_ms": round(s.slowest_ms, 2),
                "last_error": s.last_error,
            }
            for name, s in self._stats.items()
        }

    def get_summary(self) -> Dict[str, Any]:
        """Totals over every operation seen so far."""
        return {
            "operations": sorted(self._stats),
            "calls": sum(s.calls for s in self._stats.values()),
            "failures": sum(s.failures for s in self._stats.values()),
        }

    def reset(self) -> None:
        self._stats.clear()


# Process-wide collector; holds timings only, never note data
metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context):
    """Time an operation, log its START/END lines and record metrics.

    Yields a dict the caller may fill with result details (e.g.
    ``note_count``); they are appended to the END line.

    Example:
        with timed_operation('save_all', path=path.name) as op:
            write()
            op['note_count'] = len(notes)
    """
    op_id = uuid.uuid4().hex[:8]
    details = " ".join(f"{k}={v}" for k, v in context.items())
    logger.debug(f"[{op_id}] START {operation} {details}".rstrip())

    result: Dict[str, Any] = {}
    error: Optional[str] = None
    started = time.perf_counter()
    try:
        yield result
    except Exception as e:
        error = str(e)
        raise
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        metrics.record_operation(operation, elapsed_ms, error is None, error)
        outcome = "OK" if error is None else f"FAILED: {error}"
        extra = " ".join(f"{k}={v}" for k, v in result.items())
        logger.debug(
            f"[{op_id}] END {operation} {elapsed_ms:.1f}ms {outcome} {extra}".rstrip()
        )


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Decorator running a method inside ``timed_operation``.

    The first positional argument after ``self`` (a note ID or an archive
    path) is logged as the target; list and set results are logged by size.

    Example:
        @traced('move_to_trash')
        def move_to_trash(self, note_id: str) -> Note:
            ...
    """
    def decorator(func: F) -> F:
        name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            context = {}
            target = args[1] if len(args) > 1 else kwargs.get("note_id")
            if isinstance(target, (str, Path)):
                context["target"] = str(target)[:50]

            with timed_operation(name, **context) as op:
                result = func(*args, **kwargs)
                if isinstance(result, (list, set)):
                    op["count"] = len(result)
                return result

        return wrapper  # type: ignore
    return decorator
