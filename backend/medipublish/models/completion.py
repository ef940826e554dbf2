# backend/medipublish/models/completion.py

from sqlalchemy import Column, ForeignKey, Integer, String, Numeric, TIMESTAMP, UniqueConstraint
from sqlalchemy.orm import relationship

from medipublish.database import Base, BigIntId


class CMECompletion(Base):
    """
    One credited pass of a CME activity by a user.

    Rows are append-only. `sequence` is 1 for the first credited completion
    and increments per retake when retake credit is allowed; the unique
    constraint on (user_id, activity_id, sequence) is what keeps two
    concurrent submissions from both being credited.
    """

    __tablename__ = "cme_completion"

    id = Column(BigIntId, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    activity_id = Column(BigIntId, ForeignKey("cme_activity.id"), nullable=False)
    sequence = Column(Integer, nullable=False, default=1)
    completed_at = Column(TIMESTAMP(timezone=True), nullable=False)
    score = Column(Integer, nullable=False)
    credits_earned = Column(Numeric(6, 2), nullable=False)
    time_spent = Column(Integer, nullable=False, default=0)  # seconds
    certificate_id = Column(String(64), nullable=False, unique=True)

    activity = relationship("CMEActivity", lazy="joined")

    __table_args__ = (
        UniqueConstraint(
            "user_id", "activity_id", "sequence", name="uq_cme_completion_user_activity_seq"
        ),
    )
