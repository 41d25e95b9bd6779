"""
approval_services.audit_sinks -- Additional ``AuditSink`` implementations.

The durable sink is ``approval_kernel.services.auditor_service.AuditorService``
(hash-chained ``audit_events`` table).  The sinks here are for deployments
that forward audit records to a log pipeline, or need more than one sink.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from approval_kernel.domain.providers import AuditRecord, AuditSink
from approval_kernel.logging_config import get_logger


class LoggingAuditSink:
    """Writes each audit record as one structured log line."""

    def __init__(self, logger: logging.Logger | None = None, level: int = logging.INFO):
        self._logger = logger or get_logger("audit")
        self._level = level

    def record(self, event: AuditRecord) -> None:
        self._logger.log(
            self._level,
            "audit_record",
            extra={
                "audit_action": event.action,
                "audit_actor_id": event.actor_id,
                "entity_type": event.entity_type,
                "entity_id": str(event.entity_id),
                "audit_metadata": event.metadata,
            },
        )


class CompositeAuditSink:
    """Fans one record out to several sinks, in order.

    The first failing sink stops the fan-out and its error propagates to
    the caller, which treats audit as best-effort.
    """

    def __init__(self, sinks: Iterable[AuditSink]):
        self._sinks = tuple(sinks)

    def record(self, event: AuditRecord) -> None:
        for sink in self._sinks:
            sink.record(event)
