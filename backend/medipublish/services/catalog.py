# backend/medipublish/services/catalog.py

from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

import logging

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medipublish.config import settings
from medipublish.errors import NotFoundError, StorageError
from medipublish.models.activity import CMEActivity, STATUS_PUBLISHED
from medipublish.schemas.cme import ActivitySummary

logger = logging.getLogger(__name__)


def calculate_cme_price(credits: Decimal) -> Decimal:
    return Decimal(credits) * settings.CME_CREDIT_PRICE


def get_activity(db: Session, activity_id: int, *, published_only: bool = False) -> CMEActivity:
    try:
        activity = db.get(CMEActivity, activity_id)
    except SQLAlchemyError as exc:
        raise StorageError(f"Could not load CME activity {activity_id}") from exc

    if activity is None or (published_only and not activity.is_published):
        raise NotFoundError(f"Invalid CME activity: {activity_id}")
    return activity


def _specialty_matches(activity: CMEActivity, specialty: str) -> bool:
    wanted = specialty.strip().lower()
    if wanted in (activity.specialty or "").lower():
        return True
    return any(str(tag).strip().lower() == wanted for tag in (activity.tags or []))


def list_activities(
    db: Session,
    specialty: Optional[str] = None,
    credit_type: Optional[str] = None,
    *,
    limit: Optional[int] = None,
    offset: int = 0,
    now: Optional[datetime] = None,
) -> List[CMEActivity]:
    """
    Published, unexpired CME activities, newest first.

    specialty matches a substring of the primary specialty or an exact tag,
    credit_type matches the credit classification; both case-insensitive.
    """
    now = now or datetime.now(timezone.utc)

    query = (
        db.query(CMEActivity)
        .filter(CMEActivity.status == STATUS_PUBLISHED)
        .filter(
            or_(
                CMEActivity.expiration_date.is_(None),
                CMEActivity.expiration_date > now,
            )
        )
        .order_by(CMEActivity.published_at.desc(), CMEActivity.id.desc())
    )

    try:
        activities = query.all()
    except SQLAlchemyError as exc:
        logger.error("[CME_CATALOG] Activity query failed: %s", exc)
        raise StorageError("Could not retrieve CME activities") from exc

    # Tags live in a JSON column, so tag matching happens here rather than in SQL
    if specialty:
        activities = [a for a in activities if _specialty_matches(a, specialty)]
    if credit_type:
        wanted = credit_type.strip().lower()
        activities = [a for a in activities if (a.credit_type or "").lower() == wanted]

    logger.info(
        "[CME_CATALOG] %d activities for specialty=%r credit_type=%r",
        len(activities),
        specialty,
        credit_type,
    )

    activities = activities[offset:]
    if limit is not None:
        activities = activities[:limit]
    return activities


def activity_summary(activity: CMEActivity) -> ActivitySummary:
    credits = Decimal(activity.credit_hours or 0)
    return ActivitySummary(
        id=activity.id,
        title=activity.title,
        description=activity.description,
        specialty=activity.specialty,
        tags=list(activity.tags or []),
        credit_type=activity.credit_type,
        credits=float(credits),
        price=float(calculate_cme_price(credits)),
        passing_score=activity.passing_score,
        attempts_allowed=activity.attempts_allowed,
        time_limit=activity.time_limit,
        question_count=len(activity.question_bank or []),
        learning_objectives=list(activity.learning_objectives or []),
        creator_id=activity.creator_id,
        status=activity.status,
        release_date=activity.release_date,
        expiration_date=activity.expiration_date,
        published_at=activity.published_at,
    )
