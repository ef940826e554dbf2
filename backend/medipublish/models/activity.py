# backend/medipublish/models/activity.py

from typing import List

from sqlalchemy import JSON, Column, Integer, String, Text, Numeric, TIMESTAMP, Index

from medipublish.database import Base, BigIntId
from medipublish.schemas.cme import CMEQuestion

STATUS_REVIEW = "REVIEW"
STATUS_PUBLISHED = "PUBLISHED"

CREDIT_TYPES = ("AMA_PRA_1", "AMA_PRA_2", "AAFP", "ACEP", "AOA", "AANP")


class CMEActivity(Base):
    __tablename__ = "cme_activity"

    id = Column(BigIntId, primary_key=True, index=True)
    creator_id = Column(String(64), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    description = Column(Text)
    specialty = Column(String(255), nullable=False)
    tags = Column(JSON, nullable=False, default=list)
    credit_type = Column(String(32), nullable=False, default="AMA_PRA_1")
    credit_hours = Column(Numeric(6, 2), nullable=False)
    learning_objectives = Column(JSON, nullable=False, default=list)
    accreditation_statement = Column(Text)
    faculty_disclosures = Column(JSON, nullable=False, default=list)

    # Test configuration: ordered question bank + grading policy
    question_bank = Column(JSON, nullable=False, default=list)
    passing_score = Column(Integer)
    attempts_allowed = Column(Integer, nullable=False, default=3)
    time_limit = Column(Integer)  # minutes

    status = Column(String(16), nullable=False, default=STATUS_REVIEW)
    release_date = Column(TIMESTAMP(timezone=True))
    expiration_date = Column(TIMESTAMP(timezone=True))
    published_at = Column(TIMESTAMP(timezone=True))
    created_at = Column(TIMESTAMP(timezone=True))

    __table_args__ = (
        Index("ix_cme_activity_status_published", "status", "published_at"),
    )

    @property
    def questions(self) -> List[CMEQuestion]:
        return [CMEQuestion.model_validate(raw) for raw in (self.question_bank or [])]

    @property
    def is_published(self) -> bool:
        return self.status == STATUS_PUBLISHED

    def matches_specialty(self, specialty: str) -> bool:
        """Exact, case-insensitive match on the primary specialty or any tag."""
        wanted = specialty.strip().lower()
        if (self.specialty or "").strip().lower() == wanted:
            return True
        return any(str(tag).strip().lower() == wanted for tag in (self.tags or []))
