# backend/medipublish/models/attempt.py

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, TIMESTAMP, UniqueConstraint

from medipublish.database import Base, BigIntId


class CMEAttempt(Base):
    """
    One graded submission. `number` runs 1..attempts_allowed per
    (user, activity); the unique constraint stops two concurrent
    submissions from claiming the same slot.
    """

    __tablename__ = "cme_attempt"

    id = Column(BigIntId, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False)
    activity_id = Column(BigIntId, ForeignKey("cme_activity.id"), nullable=False)
    number = Column(Integer, nullable=False)
    score = Column(Integer, nullable=False)
    passed = Column(Boolean, nullable=False, default=False)
    submitted_at = Column(TIMESTAMP(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "user_id", "activity_id", "number", name="uq_cme_attempt_user_activity_number"
        ),
    )
