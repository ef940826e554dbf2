# backend/medipublish/services/requirements.py

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional

import logging

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medipublish.errors import StorageError, UnknownSpecialty, ValidationError
from medipublish.models.activity import CMEActivity
from medipublish.models.completion import CMECompletion
from medipublish.models.requirement import SpecialtyRequirement
from medipublish.schemas.cme import CategoryStatus, RequirementCheck
from medipublish.services.transcript import as_utc, load_completions

logger = logging.getLogger(__name__)


def get_requirement(db: Session, specialty: str) -> SpecialtyRequirement:
    try:
        requirement = (
            db.query(SpecialtyRequirement)
            .filter(func.lower(SpecialtyRequirement.specialty) == specialty.strip().lower())
            .first()
        )
    except SQLAlchemyError as exc:
        raise StorageError("Could not load specialty requirements") from exc

    if requirement is None:
        raise UnknownSpecialty(specialty)
    return requirement


def cycle_start(as_of: date, cycle_years: int) -> date:
    """First day of the renewal cycle containing as_of (cycles run on calendar years)."""
    return date(as_of.year - max(cycle_years, 1) + 1, 1, 1)


def _in_category(activity: CMEActivity, category: str) -> bool:
    wanted = category.strip().lower()
    if (activity.credit_type or "").lower() == wanted:
        return True
    return any(str(tag).strip().lower() == wanted for tag in (activity.tags or []))


def _sum_credits(records: List[CMECompletion]) -> Decimal:
    return sum((Decimal(r.credits_earned) for r in records), Decimal("0"))


def check_requirements(
    db: Session,
    user_id: str,
    specialty: str,
    *,
    as_of: Optional[date] = None,
) -> RequirementCheck:
    """
    Compare a user's credits for a specialty against its renewal requirement.

    Only completions inside the current renewal cycle, for activities of the
    specialty, and (when the requirement restricts them) of an accepted credit
    type are counted. satisfied also requires every sub-category minimum.
    """
    if not specialty or not specialty.strip():
        raise ValidationError("Specialty parameter is required")

    requirement = get_requirement(db, specialty)
    as_of = as_of or datetime.now(timezone.utc).date()
    start = cycle_start(as_of, requirement.cycle_years)
    accepted = [str(t).upper() for t in (requirement.accepted_credit_types or [])]

    counted: List[CMECompletion] = []
    for record in load_completions(db, user_id):
        completed_on = as_utc(record.completed_at).date()
        if not start <= completed_on <= as_of:
            continue
        activity = record.activity
        if not activity.matches_specialty(requirement.specialty):
            continue
        if accepted and (activity.credit_type or "").upper() not in accepted:
            continue
        counted.append(record)

    required = Decimal(requirement.required_credits)
    earned = _sum_credits(counted)

    categories: List[CategoryStatus] = []
    for minimum in requirement.categories:
        category_earned = _sum_credits(
            [r for r in counted if _in_category(r.activity, minimum.category)]
        )
        category_required = Decimal(minimum.minimum_credits)
        categories.append(
            CategoryStatus(
                category=minimum.category,
                required=float(category_required),
                earned=float(category_earned),
                satisfied=category_earned >= category_required,
            )
        )

    satisfied = earned >= required and all(c.satisfied for c in categories)
    deficit = max(Decimal("0"), required - earned)

    logger.info(
        "[CME_REQUIREMENTS] user=%s specialty=%s earned=%s required=%s satisfied=%s",
        user_id,
        requirement.specialty,
        earned,
        required,
        satisfied,
    )

    return RequirementCheck(
        specialty=requirement.specialty,
        required=float(required),
        earned=float(earned),
        satisfied=satisfied,
        deficit=float(deficit),
        cycle_years=requirement.cycle_years,
        cycle_start=start,
        accepted_credit_types=accepted,
        categories=categories,
    )
