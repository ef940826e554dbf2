# backend/medipublish/models/requirement.py

from sqlalchemy import JSON, Column, ForeignKey, Integer, String, Numeric, UniqueConstraint
from sqlalchemy.orm import relationship

from medipublish.database import Base, BigIntId


class SpecialtyRequirement(Base):
    """Continuing-education minimums a specialty mandates per renewal cycle."""

    __tablename__ = "specialty_requirement"

    id = Column(BigIntId, primary_key=True, index=True)
    specialty = Column(String(255), nullable=False, unique=True)
    required_credits = Column(Numeric(6, 2), nullable=False)
    cycle_years = Column(Integer, nullable=False, default=1)
    # Empty list = any credit type counts
    accepted_credit_types = Column(JSON, nullable=False, default=list)

    categories = relationship(
        "SpecialtyRequirementCategory",
        back_populates="requirement",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="SpecialtyRequirementCategory.id",
    )


class SpecialtyRequirementCategory(Base):
    """Sub-category minimum, e.g. AMA_PRA_1: 25 hours or ethics: 2 hours."""

    __tablename__ = "specialty_requirement_category"

    id = Column(BigIntId, primary_key=True, index=True)
    requirement_id = Column(
        BigIntId, ForeignKey("specialty_requirement.id", ondelete="CASCADE"), nullable=False
    )
    category = Column(String(64), nullable=False)
    minimum_credits = Column(Numeric(6, 2), nullable=False)

    requirement = relationship("SpecialtyRequirement", back_populates="categories")

    __table_args__ = (
        UniqueConstraint("requirement_id", "category", name="uq_requirement_category"),
    )
