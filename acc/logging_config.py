"""
Logging configuration for acc.

Provides structured JSON logging and an audit logger for verification
decisions, so gate outcomes can be shipped to a log pipeline.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import List, Optional

# Context variable for per-verification tracking
verification_id_var: ContextVar[str] = ContextVar('verification_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    One JSON object per line, suitable for log aggregation systems.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        verification_id = verification_id_var.get()
        if verification_id:
            log_data["verification_id"] = verification_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class AuditLogger:
    """
    Specialized logger for audit events.

    Records verification starts, per-gate outcomes, final decisions and
    security-relevant events.
    """

    def __init__(self, name: str = "acc.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        """Internal logging method with extra fields."""
        if not self._logger.isEnabledFor(level):
            return

        extra = {
            "event_type": event_type,
            "verification_id": verification_id_var.get(),
            **kwargs
        }

        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "",
            0,
            f"{event_type}: {kwargs.get('message', '')}",
            (),
            None
        )
        record.extra_fields = extra
        self._logger.handle(record)

    def verification_started(
        self,
        image_ref: str,
        mode: str,
        for_promotion: bool,
        profile: Optional[str] = None
    ) -> None:
        """Log the start of a verification."""
        self._log(
            logging.INFO,
            "VERIFICATION_STARTED",
            image_ref=image_ref,
            mode=mode,
            for_promotion=for_promotion,
            profile=profile,
            message=f"Verifying {image_ref}"
        )

    def gate_result(
        self,
        gate: str,
        passed: bool,
        blocking_rules: Optional[List[str]] = None
    ) -> None:
        """Log the outcome of one gate."""
        self._log(
            logging.INFO if passed else logging.WARNING,
            "GATE_RESULT",
            gate=gate,
            passed=passed,
            blocking_rules=blocking_rules or [],
            message=f"Gate {gate}: {'pass' if passed else 'blocked'}"
        )

    def verification_decision(
        self,
        image_ref: str,
        status: str,
        violations: int,
        warnings: int
    ) -> None:
        """Log the final decision."""
        level = logging.WARNING if status == "fail" else logging.INFO
        self._log(
            level,
            "VERIFICATION_DECISION",
            image_ref=image_ref,
            status=status,
            violations=violations,
            warnings=warnings,
            message=f"Decision for {image_ref}: {status}"
        )

    def state_persist_failed(self, path: str, reason: str) -> None:
        self._log(
            logging.ERROR,
            "STATE_PERSIST_FAILED",
            path=path,
            reason=reason,
            message=f"Failed to persist decision to {path}"
        )

    def remote_fetch_retry(self, url: str, attempt: int, reason: str) -> None:
        self._log(
            logging.WARNING,
            "REMOTE_FETCH_RETRY",
            url=url,
            attempt=attempt,
            reason=reason,
            message=f"Retrying {url} (attempt {attempt})"
        )

    def security_event(
        self,
        event: str,
        severity: str = "medium",
        **details
    ) -> None:
        """Log a security-relevant event."""
        level = {
            "low": logging.INFO,
            "medium": logging.WARNING,
            "high": logging.ERROR,
            "critical": logging.CRITICAL
        }.get(severity, logging.WARNING)

        self._log(
            level,
            "SECURITY_EVENT",
            security_event=event,
            severity=severity,
            **details,
            message=f"Security event: {event}"
        )


def configure_logging(
    level: str = "WARNING",
    json_format: bool = False,
    log_file: Optional[str] = None
) -> None:
    """
    Configure logging for the CLI.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.WARNING))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    # stderr keeps stdout clean for command output
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def set_verification_id(verification_id: Optional[str] = None) -> str:
    """
    Set the verification ID for the current context.

    Args:
        verification_id: ID to set, or None to generate one

    Returns:
        The ID that was set
    """
    if verification_id is None:
        verification_id = str(uuid.uuid4())
    verification_id_var.set(verification_id)
    return verification_id


# Global audit logger instance
audit_log = AuditLogger()
