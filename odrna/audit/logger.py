"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Complete traceability from chat message to data change
2. Visibility into background failures (sync) the user never sees
3. Debugging capability for the completion service

The audit logger:
- Is async so it can be awaited from the pipeline without blocking it
- Gracefully handles failures (never crashes the app if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
import sys
from typing import Optional
from uuid import UUID, uuid4

import structlog

from odrna.models.audit import AuditEvent, AuditSeverity


def configure_logging(level: str = "INFO") -> None:
    """
    Configure structlog (and the stdlib logging it renders through).

    Safe to call more than once; handlers installed by the host
    application are left alone, only the level is updated.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=numeric_level,
    )
    logging.getLogger().setLevel(numeric_level)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Configure structlog for local logging
configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Writes every audit event as one structured JSON log line at the
    level matching its severity.
    """

    def __init__(self, logger_name: str = "odrna.audit"):
        self._logger = structlog.get_logger(logger_name)
        self._events_logged = 0

    @property
    def events_logged(self) -> int:
        return self._events_logged

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns False if the event could not be written. Never raises.
        """
        try:
            log_dict = event.to_log_dict()

            if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
                self._logger.error("audit_event", **log_dict)
            elif event.severity == AuditSeverity.WARNING:
                self._logger.warning("audit_event", **log_dict)
            elif event.severity == AuditSeverity.DEBUG:
                self._logger.debug("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
        except Exception as e:
            # Logging must not break the main flow
            print(f"WARNING: Failed to write audit event: {e}", file=sys.stderr)
            return False

        self._events_logged += 1
        return True


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., one chat message).
    Pass it through all subsequent operations.
    """
    return uuid4()
