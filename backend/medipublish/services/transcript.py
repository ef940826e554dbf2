# backend/medipublish/services/transcript.py

from collections import defaultdict
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medipublish.config import settings
from medipublish.errors import StorageError
from medipublish.models.completion import CMECompletion
from medipublish.schemas.cme import ExpiringCredit, Transcript
from medipublish.services.completion import completion_record_out

logger = logging.getLogger(__name__)

UNCLASSIFIED_SPECIALTY = "General"


def as_utc(value: datetime) -> datetime:
    """SQLite hands timestamps back naive; treat those as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def load_completions(db: Session, user_id: str) -> List[CMECompletion]:
    try:
        return (
            db.query(CMECompletion)
            .filter(CMECompletion.user_id == user_id)
            .order_by(CMECompletion.completed_at.desc(), CMECompletion.id.desc())
            .all()
        )
    except SQLAlchemyError as exc:
        logger.error("[CME_TRANSCRIPT] Completion query failed for user=%s: %s", user_id, exc)
        raise StorageError("Could not retrieve CME completions") from exc


def _as_floats(totals: Dict[str, Decimal]) -> Dict[str, float]:
    return {key: float(value) for key, value in sorted(totals.items())}


def get_transcript(db: Session, user_id: str, *, now: Optional[datetime] = None) -> Transcript:
    """
    Build the user's transcript from the completion log.

    Recomputed on every call. A user without completions gets an empty
    transcript with zero totals.
    """
    now = now or datetime.now(timezone.utc)
    completions = load_completions(db, user_id)

    validity = timedelta(days=365 * settings.CREDIT_VALIDITY_YEARS)
    total = Decimal("0")
    by_specialty: Dict[str, Decimal] = defaultdict(Decimal)
    by_type: Dict[str, Decimal] = defaultdict(Decimal)
    expiring: List[ExpiringCredit] = []

    for record in completions:
        credits = Decimal(record.credits_earned)
        total += credits

        activity = record.activity
        by_specialty[activity.specialty or UNCLASSIFIED_SPECIALTY] += credits
        by_type[activity.credit_type] += credits

        expiration = as_utc(record.completed_at) + validity
        if expiration > now:
            expiring.append(
                ExpiringCredit(
                    activity_id=record.activity_id,
                    credits=float(credits),
                    expiration_date=expiration,
                )
            )

    logger.info(
        "[CME_TRANSCRIPT] user=%s completions=%d total_credits=%s",
        user_id,
        len(completions),
        total,
    )

    return Transcript(
        user_id=user_id,
        total_credits=float(total),
        credits_by_specialty=_as_floats(by_specialty),
        credits_by_type=_as_floats(by_type),
        completions=[completion_record_out(record) for record in completions],
        expiring_credits=sorted(expiring, key=lambda item: item.expiration_date),
    )
