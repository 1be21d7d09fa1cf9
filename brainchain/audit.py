"""
Audit trail for per-request decisions.

Writes one JSON object per line: plans, tool approvals and denials,
safety removals, refinement outcomes, request completion and caller
feedback. Every record carries the request's trace id.

Usage:
    from brainchain.audit import AuditLogger

    audit = AuditLogger(AuditConfig(log_path="~/.brainchain/audit.jsonl"))
    audit.emit(AuditRecord(event="plan", trace_id=ctx.trace_id, payload=plan.to_dict()))

Writes are fire-and-forget: a failing sink is logged and ignored.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from .config import AuditConfig

if TYPE_CHECKING:
    from .context import RequestContext

logger = logging.getLogger(__name__)


@dataclass
class AuditRecord:
    """One audited event."""

    event: str
    trace_id: str
    user_id: str = ""
    conversation_id: str = ""
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuditRecord:
        """Create from dictionary."""
        return cls(**data)

    @classmethod
    def for_request(cls, ctx: RequestContext, event: str, **payload: Any) -> AuditRecord:
        """Record tagged with the trace, user and conversation of ``ctx``."""
        return cls(
            event=event,
            trace_id=ctx.trace_id,
            user_id=ctx.user_id,
            conversation_id=ctx.conversation_id,
            payload=payload,
        )


@runtime_checkable
class AnalyticsSink(Protocol):
    """Receives audit records. Must not raise into the caller."""

    def emit(self, record: AuditRecord) -> None: ...


class NullAuditSink:
    """Sink that drops everything."""

    def emit(self, record: AuditRecord) -> None:
        pass


class AuditLogger:
    """JSONL audit sink with size-based rotation."""

    def __init__(self, config: AuditConfig | None = None):
        self.config = config or AuditConfig()
        self._log_path: Path | None = None
        self._record_count = 0
        self._lock = Lock()

        if self.config.enabled:
            self._ensure_log_path()

    @property
    def log_path(self) -> Path | None:
        return self._log_path

    def _ensure_log_path(self) -> None:
        """Ensure log directory exists."""
        path = Path(self.config.log_path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        self._log_path = path

    def _check_rotation(self) -> None:
        """Check if log file needs rotation."""
        if self._log_path is None or not self._log_path.exists():
            return

        size_mb = self._log_path.stat().st_size / (1024 * 1024)
        if size_mb >= self.config.max_size_mb:
            self._rotate_logs()

    def _rotate_logs(self) -> None:
        """Rotate log files."""
        if self._log_path is None:
            return

        # Shift existing rotated files
        for i in range(self.config.max_files - 1, 0, -1):
            old_path = self._log_path.with_suffix(f".jsonl.{i}")
            new_path = self._log_path.with_suffix(f".jsonl.{i + 1}")
            if old_path.exists():
                if i + 1 >= self.config.max_files:
                    old_path.unlink()  # Delete oldest
                else:
                    old_path.rename(new_path)

        if self._log_path.exists():
            self._log_path.rename(self._log_path.with_suffix(".jsonl.1"))

        logger.info(f"Rotated audit log: {self._log_path}")

    def emit(self, record: AuditRecord) -> None:
        """Append ``record`` to the audit log."""
        if not self.config.enabled or self._log_path is None:
            return

        try:
            line = json.dumps(record.to_dict(), default=str)
            with self._lock:
                self._check_rotation()
                with open(self._log_path, "a") as f:
                    f.write(line + "\n")
                self._record_count += 1
        except Exception as e:
            logger.warning(f"[{record.trace_id}] Failed to write audit record {record.event}: {e}")

    def load_records(self, trace_id: str | None = None) -> list[AuditRecord]:
        """Read back records, optionally only those of one request."""
        records: list[AuditRecord] = []
        if self._log_path is None or not self._log_path.exists():
            return records

        with open(self._log_path) as f:
            for line in f:
                try:
                    record = AuditRecord.from_dict(json.loads(line))
                except (json.JSONDecodeError, TypeError) as e:
                    logger.warning(f"Skipping malformed audit line: {e}")
                    continue
                if trace_id is None or record.trace_id == trace_id:
                    records.append(record)
        return records

    def get_statistics(self) -> dict[str, Any]:
        """Get audit statistics."""
        stats: dict[str, Any] = {
            "enabled": self.config.enabled,
            "log_path": str(self._log_path) if self._log_path else None,
            "records_written": self._record_count,
        }
        if self._log_path and self._log_path.exists():
            stats["log_size_mb"] = self._log_path.stat().st_size / (1024 * 1024)
        return stats


__all__ = ["AnalyticsSink", "AuditLogger", "AuditRecord", "NullAuditSink"]
