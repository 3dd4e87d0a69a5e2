# Core - Audit Logging
#
# Append-only audit trail for every structural change to the vault
# hierarchy: group create/update/move/trash/delete, item moves, clones,
# and reference chains cut short by the depth guard.
#
# Never pass secret values (passwords, OTP secrets, custom field values)
# in `details`; ids, names and counts only.

import json
import logging
import os
import socket
import sys
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Types of vault events that can be logged."""
    # Groups
    GROUP_CREATED = "group.created"
    GROUP_UPDATED = "group.updated"
    GROUP_MOVED = "group.moved"
    GROUP_TRASHED = "group.trashed"
    GROUP_DELETED = "group.deleted"
    GROUP_CLONED = "group.cloned"
    TRASH_CREATED = "trash.created"

    # Items
    ITEM_CREATED = "item.created"
    ITEM_MOVED = "item.moved"
    ITEM_CLONED = "item.cloned"
    ITEM_DELETED = "item.deleted"

    # References
    REFERENCE_LIMIT = "reference.limit"

    # Batches
    BATCH_FAILURE = "batch.failure"

    # System Events
    SYSTEM_START = "system.start"
    SYSTEM_STOP = "system.stop"
    VAULT_ERROR = "vault.error"


class EventSeverity(str, Enum):
    """Severity levels for audit events."""
    INFO = "info"
    INVESTIGATE = "investigate"
    ALERT = "alert"
    CRITICAL = "critical"


def _parse_timestamp(value: str) -> datetime:
    # structlog's TimeStamper writes UTC with a trailing "Z"; compare naive.
    stamp = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if stamp.tzinfo is not None:
        stamp = stamp.astimezone(timezone.utc).replace(tzinfo=None)
    return stamp


class AuditLogger:
    """
    Append-only structured audit logger.

    Features:
    - Structured JSON logging (structlog)
    - Automatic timestamp and event ID
    - Daily log file under ``log_dir``
    """

    def __init__(self, log_dir: Optional[Path] = None):
        """
        Initialize audit logger.

        Args:
            log_dir: Directory for audit logs (default: ./audit_logs)
        """
        self.log_dir = Path(log_dir) if log_dir else Path("./audit_logs")
        self.log_dir.mkdir(parents=True, exist_ok=True)

        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer()
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

        self._file_handler = self._setup_file_handler()
        self.logger = structlog.get_logger("vaultkeeper.audit")

    def _setup_file_handler(self) -> logging.Handler:
        """Attach a daily file handler to the audit logger."""
        today = datetime.now().strftime("%Y-%m-%d")
        log_file = self.log_dir / f"audit_{today}.log"

        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter('%(message)s'))  # structlog renders

        audit_logger = logging.getLogger("vaultkeeper.audit")
        audit_logger.addHandler(file_handler)
        audit_logger.setLevel(logging.INFO)
        return file_handler

    def close(self) -> None:
        """Detach and close the file handler."""
        logging.getLogger("vaultkeeper.audit").removeHandler(self._file_handler)
        self._file_handler.close()

    def log_event(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        user_context: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Log an audit event (append-only).

        Args:
            event_type: Type of event (from EventType enum)
            severity: Severity level (from EventSeverity enum)
            message: Human-readable event description
            details: Additional event details (ids and names, never secrets)
            user_context: User context (defaults to OS user / hostname)

        Returns:
            str: Event ID (UUID) for reference
        """
        event_id = str(uuid4())

        event_data = {
            "event_id": event_id,
            "event_type": event_type.value,
            "severity": severity.value,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "details": details or {},
            "user_context": user_context or self._get_default_user_context(),
        }

        self.logger.info("vault_event", **event_data)
        return event_id

    def log_vault_event(
        self,
        event_type: EventType,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ) -> str:
        """Log an INFO-level hierarchy event."""
        return self.log_event(
            event_type=event_type,
            severity=EventSeverity.INFO,
            message=f"Vault: {message}",
            details=details
        )

    def query_events(
        self,
        event_types: Optional[list] = None,
        severity: Optional[EventSeverity] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = 100
    ) -> list:
        """
        Read events back from the daily log files (forensic analysis).

        Args:
            event_types: Filter by event types
            severity: Filter by severity level
            start_time: Filter events at or after this time (naive UTC)
            end_time: Filter events at or before this time (naive UTC)
            limit: Maximum number of events to return (most recent kept)

        Returns:
            list: Matching events, oldest first
        """
        wanted = {EventType(t).value for t in event_types} if event_types else None
        self._file_handler.flush()

        events = []
        for log_file in sorted(self.log_dir.glob("audit_*.log")):
            with open(log_file, encoding="utf-8") as fh:
                for line in fh:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        record = json.loads(line)
                    except json.JSONDecodeError:
                        logger.debug("Skipping unreadable audit line in %s", log_file)
                        continue
                    if wanted and record.get("event_type") not in wanted:
                        continue
                    if severity and record.get("severity") != severity.value:
                        continue
                    if start_time or end_time:
                        stamp = _parse_timestamp(record["timestamp"])
                        if start_time and stamp < start_time:
                            continue
                        if end_time and stamp > end_time:
                            continue
                    events.append(record)

        return events[-limit:] if limit else events

    def _get_default_user_context(self) -> Dict[str, Any]:
        return {
            "os_user": os.getenv("USERNAME") or os.getenv("USER"),
            "hostname": socket.gethostname(),
            "platform": sys.platform,
        }


# Global logger instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get global audit logger (singleton pattern)."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def configure_audit_logger(log_dir: Path) -> AuditLogger:
    """Replace the global audit logger with one writing to ``log_dir``."""
    global _audit_logger
    if _audit_logger is not None:
        _audit_logger.close()
    _audit_logger = AuditLogger(log_dir=log_dir)
    return _audit_logger
