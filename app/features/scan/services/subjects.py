"""
Subject lookup shared by reports and notifications.

A subject is either a single scan or a batch scan. Ids are unique across
both tables, so a lookup tries scans first and then batches.
"""
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from app.features.scan.models.batch_scan import BatchScan
from app.features.scan.models.scan import Scan

Subject = Union[Scan, BatchScan]


async def find_subject(db: AsyncSession, subject_id: str) -> Optional[Subject]:
    scan = (await db.execute(select(Scan).where(Scan.id == subject_id))).scalar_one_or_none()
    if scan is not None:
        return scan
    return (await db.execute(select(BatchScan).where(BatchScan.id == subject_id))).scalar_one_or_none()


def find_subject_sync(db: Session, subject_id: str) -> Optional[Subject]:
    scan = db.query(Scan).filter(Scan.id == subject_id).first()
    if scan is not None:
        return scan
    return db.query(BatchScan).filter(BatchScan.id == subject_id).first()
