"""
InstanceSelector -- read access to workflow instances.

Responsibility:
    Lookups by id and by document, the listings behind the approver inbox
    and administrative views, and per-status statistics.

Architecture position:
    Kernel > Selectors.  Read-only.  InstanceRepositoryService delegates
    its read half here.

Concurrency:
    Queries run without locks.  A scan may observe an instance that a
    concurrent transaction is about to advance; callers accept that
    staleness.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy import Select, func, select

from approval_kernel.domain.instance import WorkflowInstance, WorkflowStatus
from approval_kernel.domain.workflow import DocumentType
from approval_kernel.models.workflow_instance import WorkflowInstanceModel
from approval_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class StatusStatistics:
    """Count and mean completion time for one status."""

    status: WorkflowStatus
    count: int
    average_duration_hours: Decimal | None = None


@dataclass(frozen=True)
class WorkflowStatistics:
    """Per-status breakdown over a filtered set of instances."""

    by_status: tuple[StatusStatistics, ...]

    @property
    def total(self) -> int:
        return sum(s.count for s in self.by_status)

    def for_status(self, status: WorkflowStatus) -> StatusStatistics | None:
        for entry in self.by_status:
            if entry.status == status:
                return entry
        return None


class InstanceSelector(BaseSelector[WorkflowInstanceModel]):
    """Read-only queries over workflow instances."""

    def find_by_id(self, instance_id: UUID) -> WorkflowInstance | None:
        model = self.session.get(WorkflowInstanceModel, instance_id)
        return model.to_dto() if model is not None else None

    def find_active_by_document(
        self, document_type: DocumentType, document_id: str,
    ) -> WorkflowInstance | None:
        stmt = select(WorkflowInstanceModel).where(
            WorkflowInstanceModel.document_type == DocumentType.parse(document_type).value,
            WorkflowInstanceModel.document_id == document_id,
            WorkflowInstanceModel.status == WorkflowStatus.PENDING.value,
        )
        model = self.session.execute(stmt).scalars().first()
        return model.to_dto() if model is not None else None

    def find_latest_by_document(
        self, document_type: DocumentType, document_id: str,
    ) -> WorkflowInstance | None:
        stmt = (
            select(WorkflowInstanceModel)
            .where(
                WorkflowInstanceModel.document_type == DocumentType.parse(document_type).value,
                WorkflowInstanceModel.document_id == document_id,
            )
            .order_by(
                WorkflowInstanceModel.submitted_at.desc(),
                WorkflowInstanceModel.id.desc(),
            )
            .limit(1)
        )
        model = self.session.execute(stmt).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def list_pending(
        self, document_type: DocumentType | None = None,
    ) -> list[WorkflowInstance]:
        """All pending instances, newest submission first."""
        stmt = self._listing(WorkflowStatus.PENDING, document_type)
        return [model.to_dto() for model in self.session.execute(stmt).scalars()]

    def list_by_status(
        self,
        status: WorkflowStatus,
        document_type: DocumentType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[WorkflowInstance]:
        return self.list_instances(
            status=status, document_type=document_type, limit=limit, offset=offset,
        )

    def list_by_document_type(
        self,
        document_type: DocumentType,
        status: WorkflowStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[WorkflowInstance]:
        return self.list_instances(
            status=status, document_type=document_type, limit=limit, offset=offset,
        )

    def list_instances(
        self,
        status: WorkflowStatus | None = None,
        document_type: DocumentType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[WorkflowInstance]:
        stmt = self._listing(status, document_type).limit(limit).offset(offset)
        return [model.to_dto() for model in self.session.execute(stmt).scalars()]

    def list_completed_since(
        self, since: datetime, limit: int = 50,
    ) -> list[WorkflowInstance]:
        """Approved or rejected instances completed at or after ``since``."""
        stmt = (
            select(WorkflowInstanceModel)
            .where(
                WorkflowInstanceModel.status.in_(
                    (WorkflowStatus.APPROVED.value, WorkflowStatus.REJECTED.value),
                ),
                WorkflowInstanceModel.completed_at >= since,
            )
            .order_by(
                WorkflowInstanceModel.completed_at.desc(),
                WorkflowInstanceModel.id,
            )
            .limit(limit)
        )
        return [model.to_dto() for model in self.session.execute(stmt).scalars()]

    def statistics(
        self,
        document_type: DocumentType | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> WorkflowStatistics:
        """Per-status instance counts and average duration in hours.

        ``start``/``end`` bound ``submitted_at`` (inclusive).  The average
        covers only instances that have a ``completed_at``.
        """
        filters = []
        if document_type is not None:
            filters.append(
                WorkflowInstanceModel.document_type == DocumentType.parse(document_type).value,
            )
        if start is not None:
            filters.append(WorkflowInstanceModel.submitted_at >= start)
        if end is not None:
            filters.append(WorkflowInstanceModel.submitted_at <= end)

        counts = dict(
            self.session.execute(
                select(WorkflowInstanceModel.status, func.count())
                .where(*filters)
                .group_by(WorkflowInstanceModel.status)
            ).all()
        )

        durations: dict[str, list[Decimal]] = {}
        rows = self.session.execute(
            select(
                WorkflowInstanceModel.status,
                WorkflowInstanceModel.submitted_at,
                WorkflowInstanceModel.completed_at,
            ).where(WorkflowInstanceModel.completed_at.is_not(None), *filters)
        ).all()
        for status, submitted_at, completed_at in rows:
            seconds = Decimal(str((completed_at - submitted_at).total_seconds()))
            durations.setdefault(status, []).append(seconds / Decimal(3600))

        by_status = []
        for status in WorkflowStatus:
            count = counts.get(status.value, 0)
            if not count:
                continue
            samples = durations.get(status.value)
            average = None
            if samples:
                average = (sum(samples) / len(samples)).quantize(
                    Decimal("0.01"), rounding=ROUND_HALF_UP,
                )
            by_status.append(StatusStatistics(status, count, average))

        return WorkflowStatistics(by_status=tuple(by_status))

    def _listing(
        self,
        status: WorkflowStatus | None,
        document_type: DocumentType | None,
    ) -> Select:
        stmt = select(WorkflowInstanceModel)
        if status is not None:
            stmt = stmt.where(WorkflowInstanceModel.status == WorkflowStatus(status).value)
        if document_type is not None:
            stmt = stmt.where(
                WorkflowInstanceModel.document_type == DocumentType.parse(document_type).value,
            )
        return stmt.order_by(
            WorkflowInstanceModel.submitted_at.desc(),
            WorkflowInstanceModel.id,
        )
