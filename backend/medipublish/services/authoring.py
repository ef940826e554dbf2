# backend/medipublish/services/authoring.py

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medipublish.config import settings
from medipublish.errors import PermissionDeniedError, StorageError, ValidationError
from medipublish.models.activity import CMEActivity, CREDIT_TYPES, STATUS_PUBLISHED, STATUS_REVIEW
from medipublish.schemas.cme import ActivityDraft
from medipublish.services.audit import AuditTrail, CME_ACTIVITY_CREATED, CME_ACTIVITY_PUBLISHED
from medipublish.services.catalog import get_activity

logger = logging.getLogger(__name__)

MIN_CREDIT_HOURS = Decimal("0.25")
MAX_CREDIT_HOURS = Decimal("50")


@dataclass(frozen=True)
class Actor:
    """Already-authenticated caller, as handed over by the route layer."""
    user_id: str
    role: str = "USER"
    verified: bool = False

    @property
    def is_admin(self) -> bool:
        return self.role.upper() == "ADMIN"

    @property
    def is_verified_creator(self) -> bool:
        return self.role.upper() == "CREATOR" and self.verified


def validate_activity(draft: ActivityDraft) -> List[str]:
    """Return every problem with a draft; an empty list means it can be created."""
    errors: List[str] = []

    if not draft.title or len(draft.title.strip()) < 10:
        errors.append("Title must be at least 10 characters long")

    objectives = [o for o in draft.learning_objectives if o and o.strip()]
    if len(objectives) < 3:
        errors.append("At least 3 learning objectives are required")

    if not draft.target_audience or not draft.target_audience.strip():
        errors.append("Target audience must be specified")

    if not draft.accreditation_statement or not draft.accreditation_statement.strip():
        errors.append("Accreditation statement is required")

    if not draft.faculty_disclosures:
        errors.append("Faculty disclosures are required")

    if draft.credit_hours is None:
        errors.append("Credit hours are required")
    else:
        hours = Decimal(str(draft.credit_hours))
        if hours < MIN_CREDIT_HOURS or hours > MAX_CREDIT_HOURS:
            errors.append("Credit hours must be between 0.25 and 50")

    if draft.credit_type.upper() not in CREDIT_TYPES:
        errors.append(f"Credit type must be one of {', '.join(CREDIT_TYPES)}")

    if len(draft.questions) < settings.MIN_QUESTIONS:
        errors.append(f"At least {settings.MIN_QUESTIONS} test questions are required")

    for number, question in enumerate(draft.questions, start=1):
        if not question.question.strip():
            errors.append(f"Question {number} has no text")
        if len(question.options) < 2:
            errors.append(f"Question {number} needs at least 2 options")
        elif not 0 <= question.correct_answer < len(question.options):
            errors.append(f"Question {number} has a correct answer outside its options")

    return errors


def create_activity(
    db: Session,
    actor: Actor,
    draft: ActivityDraft,
    *,
    audit: Optional[AuditTrail] = None,
    now: Optional[datetime] = None,
) -> CMEActivity:
    """
    Store a new CME activity in REVIEW.

    Passing score, attempts and expiry come from settings; the time limit is
    one hour per credit hour.
    """
    if not actor.is_verified_creator:
        raise PermissionDeniedError("Only verified creators can create CME activities")

    errors = validate_activity(draft)
    if errors:
        raise ValidationError("Validation failed", details=errors)

    now = now or datetime.now(timezone.utc)
    credit_hours = Decimal(str(draft.credit_hours))

    activity = CMEActivity(
        creator_id=actor.user_id,
        title=draft.title.strip(),
        description=draft.description,
        specialty=draft.target_audience.strip(),
        tags=list(dict.fromkeys([draft.target_audience.strip()] + [t.strip() for t in draft.tags if t and t.strip()])),
        credit_type=draft.credit_type.upper(),
        credit_hours=credit_hours,
        learning_objectives=[o.strip() for o in draft.learning_objectives if o and o.strip()],
        accreditation_statement=draft.accreditation_statement,
        faculty_disclosures=[d.model_dump() for d in draft.faculty_disclosures],
        question_bank=[q.model_dump() for q in draft.questions],
        passing_score=settings.DEFAULT_PASSING_SCORE,
        attempts_allowed=settings.DEFAULT_ATTEMPTS_ALLOWED,
        time_limit=int(credit_hours * 60),
        status=STATUS_REVIEW,
        release_date=now,
        expiration_date=now + timedelta(days=settings.ACTIVITY_VALIDITY_DAYS),
        created_at=now,
    )
    db.add(activity)

    try:
        # flush assigns the id the audit event refers to
        db.flush()
        if audit is not None:
            audit.record(
                db,
                actor.user_id,
                CME_ACTIVITY_CREATED,
                {
                    "activityId": activity.id,
                    "creditHours": float(credit_hours),
                    "questionCount": len(draft.questions),
                },
            )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError("Could not create CME activity") from exc

    db.refresh(activity)
    logger.info(
        "[CME_AUTHORING] creator=%s created activity %s (%s credits, %d questions)",
        actor.user_id,
        activity.id,
        credit_hours,
        len(draft.questions),
    )
    return activity


def publish_activity(
    db: Session,
    activity_id: int,
    actor: Actor,
    *,
    audit: Optional[AuditTrail] = None,
    now: Optional[datetime] = None,
) -> CMEActivity:
    """REVIEW -> PUBLISHED. Publishing an already published activity is a no-op."""
    if not actor.is_admin:
        raise PermissionDeniedError("Only administrators can publish CME activities")

    activity = get_activity(db, activity_id)
    if activity.status == STATUS_PUBLISHED:
        return activity
    if activity.status != STATUS_REVIEW:
        raise ValidationError(f"Activity {activity_id} cannot be published from {activity.status}")

    activity.status = STATUS_PUBLISHED
    activity.published_at = now or datetime.now(timezone.utc)

    if audit is not None:
        audit.record(db, actor.user_id, CME_ACTIVITY_PUBLISHED, {"activityId": activity.id})

    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError(f"Could not publish CME activity {activity_id}") from exc

    db.refresh(activity)
    logger.info("[CME_AUTHORING] admin=%s published activity %s", actor.user_id, activity.id)
    return activity
