from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, Text

from app.platform.db.base import BaseModel


class NotificationDeadLetter(BaseModel):
    """
    A notification job that exhausted its retries.

    Kept indefinitely for inspection. The recipient address is deliberately
    absent, it has already been cleared from the subject.
    """
    __tablename__ = "notification_dead_letters"

    subject_id = Column(String, nullable=False, index=True)
    kind = Column(String(32), nullable=False)
    provider = Column(String(32), nullable=True)
    attempts = Column(Integer, nullable=False)
    error_code = Column(String(64), nullable=True)
    error_message = Column(Text, nullable=True)
    failed_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
