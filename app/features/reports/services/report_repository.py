"""
Report Repository

Status records for exports, one row per (subject, format). Every status
change is a compare-and-set UPDATE guarded by the expected current status,
so two workers or two requests can never both win the same transition.
"""
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.reports.models.report import ACTIVE_STATUSES, Report, ReportFormat, ReportStatus
from app.platform.exceptions import TransientInfrastructureError
from app.platform.logger import get_logger

logger = get_logger(__name__)


class ReportRepositoryError(TransientInfrastructureError):
    code = "REPORT_STORE_UNAVAILABLE"


class ReportRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, report_id: str) -> Optional[Report]:
        try:
            result = await self.db.execute(
                select(Report).where(Report.id == report_id).execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise ReportRepositoryError(f"Failed to load report {report_id}", cause=e) from e

    async def get_by_subject_and_format(self, subject_id: str, fmt: ReportFormat) -> Optional[Report]:
        try:
            result = await self.db.execute(
                select(Report)
                .where(Report.subject_id == subject_id, Report.format == fmt)
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise ReportRepositoryError(
                f"Failed to load {fmt.value} report for {subject_id}", cause=e
            ) from e

    async def create_pending(self, subject_id: str, fmt: ReportFormat) -> Tuple[Report, bool]:
        """
        Insert a PENDING record for the pair.

        Returns ``(report, True)`` when this call inserted the row. When a
        concurrent request inserted first the unique constraint rejects this
        insert and the winner's row is returned with ``False``.
        """
        report = Report(subject_id=subject_id, format=fmt, status=ReportStatus.PENDING)
        self.db.add(report)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            winner = await self.get_by_subject_and_format(subject_id, fmt)
            if winner is None:
                raise ReportRepositoryError(
                    f"Insert for {subject_id}/{fmt.value} conflicted but no record is visible"
                )
            logger.info(f"Lost insert race for {subject_id}/{fmt.value}, using report {winner.id}")
            return winner, False
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise ReportRepositoryError(f"Failed to create report for {subject_id}", cause=e) from e

        await self.db.refresh(report)
        return report, True

    async def transition(
        self,
        report_id: str,
        expected: Iterable[ReportStatus],
        new_status: ReportStatus,
        **values,
    ) -> bool:
        """Compare-and-set the status. Returns True only if this call changed the row."""
        expected = tuple(expected)
        try:
            result = await self.db.execute(
                update(Report)
                .where(Report.id == report_id, Report.status.in_(expected))
                .values(status=new_status, **values)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise ReportRepositoryError(
                f"Failed to move report {report_id} to {new_status.value}", cause=e
            ) from e

        changed = result.rowcount == 1
        if not changed:
            logger.info(
                f"Report {report_id} not moved to {new_status.value}: "
                f"status was not one of {[s.value for s in expected]}"
            )
        return changed

    async def reset_failed_to_pending(self, report_id: str) -> bool:
        return await self.transition(
            report_id,
            [ReportStatus.FAILED],
            ReportStatus.PENDING,
            storage_key=None,
            file_size_bytes=None,
            expires_at=None,
            error_message=None,
            generation_attempts=0,
        )

    async def mark_generating(self, report_id: str, attempt: int, task_id: Optional[str] = None) -> bool:
        # GENERATING is accepted again so a redelivered job can pick the record back up
        return await self.transition(
            report_id,
            ACTIVE_STATUSES,
            ReportStatus.GENERATING,
            generation_attempts=attempt,
            celery_task_id=task_id,
        )

    async def mark_completed(
        self, report_id: str, storage_key: str, file_size_bytes: int, expires_at: datetime
    ) -> bool:
        return await self.transition(
            report_id,
            [ReportStatus.GENERATING],
            ReportStatus.COMPLETED,
            storage_key=storage_key,
            file_size_bytes=file_size_bytes,
            expires_at=expires_at,
            error_message=None,
        )

    async def mark_failed(self, report_id: str, error_message: str) -> bool:
        return await self.transition(
            report_id,
            ACTIVE_STATUSES,
            ReportStatus.FAILED,
            error_message=error_message[:2000],
        )

    async def find_stale(self, older_than: datetime) -> List[Report]:
        """Active records not touched since ``older_than``."""
        if older_than.tzinfo is None:
            older_than = older_than.replace(tzinfo=timezone.utc)
        try:
            result = await self.db.execute(
                select(Report)
                .where(Report.status.in_(ACTIVE_STATUSES), Report.updated_at < older_than)
                .order_by(Report.updated_at)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise ReportRepositoryError("Failed to query stale reports", cause=e) from e
