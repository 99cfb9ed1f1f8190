"""Observability utilities for the note store.

Provides rotating file logging for the ``gitnotes`` logger hierarchy and
per-operation metrics. Every NoteStore operation runs inside
``timed_operation``, which logs a correlation-id tagged START/END pair and
records duration and outcome, including the ErrorKind of store failures.
"""
import logging
import re
import time
import uuid
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterator, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_LOG_DIR = Path.home() / ".gitnotes" / "logs"
LOG_FILE_NAME = "gitnotes.log"

# ISO 8601 timestamps
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


def _has_log_file(package_logger: logging.Logger, log_file: Path) -> bool:
    target = log_file.resolve()
    return any(
        isinstance(h, RotatingFileHandler) and Path(h.baseFilename).resolve() == target
        for h in package_logger.handlers
    )


def _has_console(package_logger: logging.Logger) -> bool:
    return any(
        type(h) is logging.StreamHandler for h in package_logger.handlers
    )


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Send the ``gitnotes`` loggers to a rotating log file.

    Safe to call more than once: a handler for the same file (or a second
    console handler) is never added twice, only the level is updated.

    Args:
        log_dir: Directory for log files. Defaults to ~/.gitnotes/logs/
        level: Logging level (default: INFO)
        max_bytes: Size at which the log file rotates (default: 10 MB)
        backup_count: Number of rotated files to keep (default: 5)
        console: Also log to stderr (default: True)

    Returns:
        Path to the log directory
    """
    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = log_path / LOG_FILE_NAME

    package_logger = logging.getLogger("gitnotes")
    package_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    if not _has_log_file(package_logger, log_file):
        file_handler = RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

    if console and not _has_console(package_logger):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        package_logger.addHandler(console_handler)

    for handler in package_logger.handlers:
        handler.setLevel(level)

    package_logger.info(
        f"Logging to {log_file} (rotating at {max_bytes} bytes, "
        f"{backup_count} backups)"
    )
    return log_path


def _sanitize_error_message(
    message: Optional[str], max_length: int = 200
) -> Optional[str]:
    """Make an error message safe to keep in metrics.

    Replaces the home directory with ``~`` (note paths embed owner names),
    flattens newlines, collapses runs of spaces and truncates with an
    ellipsis.
    """
    if message is None:
        return None
    result = message.replace(str(Path.home()), "~")
    result = result.replace("\r", " ").replace("\n", " ")
    result = re.sub(r" {2,}", " ", result).strip()
    if len(result) > max_length:
        result = result[: max_length - 3] + "..."
    return result


@dataclass
class OperationStats:
    """Running totals for one operation name."""

    count: int = 0
    success_count: int = 0
    total_duration_ms: float = 0.0
    min_duration_ms: Optional[float] = None
    max_duration_ms: float = 0.0
    errors_by_kind: Counter = field(default_factory=Counter)
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None

    @property
    def error_count(self) -> int:
        return self.count - self.success_count

    def add(
        self,
        duration_ms: float,
        success: bool,
        error: Optional[str],
        error_kind: Optional[str],
    ) -> None:
        self.count += 1
        self.total_duration_ms += duration_ms
        if self.min_duration_ms is None or duration_ms < self.min_duration_ms:
            self.min_duration_ms = duration_ms
        self.max_duration_ms = max(self.max_duration_ms, duration_ms)
        if success:
            self.success_count += 1
            return
        self.errors_by_kind[error_kind or "unexpected"] += 1
        self.last_error = _sanitize_error_message(error)
        self.last_error_time = datetime.now(timezone.utc)

    def snapshot(self) -> Dict[str, Any]:
        avg = self.total_duration_ms / self.count if self.count else 0.0
        return {
            "count": self.count,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "success_rate": self.success_count / self.count if self.count else 0,
            "avg_duration_ms": round(avg, 2),
            "min_duration_ms": round(self.min_duration_ms or 0.0, 2),
            "max_duration_ms": round(self.max_duration_ms, 2),
            "errors_by_kind": dict(self.errors_by_kind),
            "last_error": self.last_error,
            "last_error_time": (
                self.last_error_time.isoformat() if self.last_error_time else None
            ),
        }


class MetricsCollector:
    """Thread-safe metrics for note store operations.

    Keyed by operation name (save_note, search, ...). Failures are also
    counted per ErrorKind value so that, for example, commit failures
    stand out from ordinary not-found lookups.
    """

    def __init__(self) -> None:
        self._stats: Dict[str, OperationStats] = {}
        self._lock = Lock()
        self._start_time = datetime.now(timezone.utc)

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None,
        error_kind: Optional[str] = None,
    ) -> None:
        """Record one finished operation.

        Args:
            operation: The operation name (e.g. 'save_note')
            duration_ms: Duration in milliseconds
            success: Whether the operation succeeded
            error: Error message if the operation failed
            error_kind: ErrorKind value of the failure, if it had one
        """
        with self._lock:
            stats = self._stats.setdefault(operation, OperationStats())
            stats.add(duration_ms, success, error, error_kind)

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Snapshot of every operation's stats."""
        with self._lock:
            return {name: stats.snapshot() for name, stats in self._stats.items()}

    def get_summary(self) -> Dict[str, Any]:
        with self._lock:
            total = sum(s.count for s in self._stats.values())
            succeeded = sum(s.success_count for s in self._stats.values())
            by_kind: Counter = Counter()
            for stats in self._stats.values():
                by_kind.update(stats.errors_by_kind)
            uptime = datetime.now(timezone.utc) - self._start_time
            return {
                "uptime_seconds": uptime.total_seconds(),
                "total_operations": total,
                "total_success": succeeded,
                "total_errors": total - succeeded,
                "overall_success_rate": succeeded / total if total else 1.0,
                "errors_by_kind": dict(by_kind),
                "operations_tracked": list(self._stats),
            }

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()
            self._start_time = datetime.now(timezone.utc)


# Process-wide collector used when a store is built without one
metrics = MetricsCollector()


@contextmanager
def timed_operation(
    operation: str,
    collector: Optional[MetricsCollector] = None,
    **context: Any,
) -> Iterator[Dict[str, Any]]:
    """Time, log and record one operation.

    Args:
        operation: Name of the operation being performed
        collector: Metrics sink. Defaults to the module-level collector.
        **context: Extra key=value pairs for the log lines (owner, title, ...)

    Yields:
        A dict for result info such as ``result_count``; it already holds
        the operation's ``correlation_id``.

    Example:
        with timed_operation("search", owner="alice") as op:
            hits = run_search()
            op["result_count"] = len(hits)
    """
    sink = collector if collector is not None else metrics
    correlation_id = uuid.uuid4().hex[:8]
    info: Dict[str, Any] = {"correlation_id": correlation_id}
    context_str = ", ".join(f"{k}={v}" for k, v in context.items())
    logger.debug(f"[{correlation_id}] START {operation} ({context_str})")

    error: Optional[BaseException] = None
    start = time.perf_counter()
    try:
        yield info
    except Exception as e:
        error = e
        raise
    finally:
        duration_ms = (time.perf_counter() - start) * 1000
        kind = getattr(error, "kind", None)
        sink.record_operation(
            operation,
            duration_ms,
            success=error is None,
            error=str(error) if error is not None else None,
            error_kind=getattr(kind, "value", None),
        )
        results = ", ".join(
            f"{k}={v}" for k, v in info.items() if k != "correlation_id"
        )
        status = "OK" if error is None else f"ERROR: {error}"
        logger.debug(
            f"[{correlation_id}] END {operation} ({duration_ms:.2f}ms) "
            f"[{status}] {results}"
        )
