# backend/medipublish/services/completion.py

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional, Sequence

import logging
import uuid

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from medipublish.config import settings
from medipublish.errors import (
    AttemptsExhausted,
    GradingConfigurationError,
    StorageError,
    ValidationError,
)
from medipublish.models.activity import CMEActivity
from medipublish.models.attempt import CMEAttempt
from medipublish.models.completion import CMECompletion
from medipublish.schemas.cme import CompletionRecordOut, CompletionResponse, GradingResultOut
from medipublish.services.audit import AuditTrail, CME_CREDIT_EARNED
from medipublish.services.catalog import get_activity
from medipublish.services.grader import grade

logger = logging.getLogger(__name__)

LEGACY_FLAT_CREDITS = Decimal("1")


@dataclass
class RecordedCompletion:
    """
    Outcome of record_completion.

    created is False when the user already holds a credited completion for the
    activity and retake credit is off; record is then the existing row.
    """
    record: CMECompletion
    created: bool

    @property
    def already_completed(self) -> bool:
        return not self.created


def _generate_certificate_id(now: datetime) -> str:
    return f"MPB-{now:%Y%m%d}-{uuid.uuid4().hex[:8].upper()}"


def _latest_completion(db: Session, user_id: str, activity_id: int) -> Optional[CMECompletion]:
    return (
        db.query(CMECompletion)
        .filter(CMECompletion.user_id == user_id, CMECompletion.activity_id == activity_id)
        .order_by(CMECompletion.sequence.desc())
        .first()
    )


def record_completion(
    db: Session,
    user_id: str,
    activity_id: int,
    score: int,
    time_spent: int,
    *,
    allow_retake_credit: Optional[bool] = None,
    audit: Optional[AuditTrail] = None,
    now: Optional[datetime] = None,
) -> RecordedCompletion:
    """
    Append a completion for a passing attempt.

    The caller has already graded the attempt; this does not re-grade.
    Credits come from the activity's credit hours (a flat 1 credit when
    LEGACY_FLAT_CREDIT is set).
    """
    if time_spent is None or time_spent < 0:
        raise ValidationError("timeSpent must be a non-negative number of seconds")
    if score is None or not 0 <= score <= 100:
        raise ValidationError("score must be between 0 and 100")

    allow_retake = (
        settings.ALLOW_RETAKE_CREDIT if allow_retake_credit is None else allow_retake_credit
    )
    activity = get_activity(db, activity_id)

    try:
        existing = _latest_completion(db, user_id, activity_id)
    except SQLAlchemyError as exc:
        raise StorageError("Could not read existing completions") from exc

    if existing is not None and not allow_retake:
        logger.info(
            "[CME_COMPLETION] user=%s activity=%s already completed (record %s)",
            user_id,
            activity_id,
            existing.id,
        )
        return RecordedCompletion(record=existing, created=False)

    now = now or datetime.now(timezone.utc)
    credits = LEGACY_FLAT_CREDITS if settings.LEGACY_FLAT_CREDIT else Decimal(activity.credit_hours)

    record = CMECompletion(
        user_id=user_id,
        activity_id=activity_id,
        sequence=existing.sequence + 1 if existing is not None else 1,
        completed_at=now,
        score=score,
        credits_earned=credits,
        time_spent=time_spent,
        certificate_id=_generate_certificate_id(now),
    )
    db.add(record)

    if audit is not None:
        audit.record(
            db,
            user_id,
            CME_CREDIT_EARNED,
            {
                "activityId": activity_id,
                "creditsEarned": float(credits),
                "sequence": record.sequence,
            },
        )

    try:
        db.commit()
    except IntegrityError as exc:
        # Another submission for the same (user, activity, sequence) won the insert
        db.rollback()
        if allow_retake:
            raise StorageError(
                f"Concurrent completion for activity {activity_id} conflicted; resubmit"
            ) from exc

        winner = _latest_completion(db, user_id, activity_id)
        if winner is None:
            raise StorageError("Completion insert failed") from exc
        logger.info(
            "[CME_COMPLETION] user=%s activity=%s lost concurrent insert, returning record %s",
            user_id,
            activity_id,
            winner.id,
        )
        return RecordedCompletion(record=winner, created=False)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("[CME_COMPLETION] Write failed for user=%s activity=%s: %s", user_id, activity_id, exc)
        raise StorageError("Could not record CME completion") from exc

    db.refresh(record)
    logger.info(
        "[CME_COMPLETION] user=%s activity=%s credited %s (score %d, sequence %d)",
        user_id,
        activity_id,
        credits,
        score,
        record.sequence,
    )
    return RecordedCompletion(record=record, created=True)


def count_attempts(db: Session, user_id: str, activity_id: int) -> int:
    try:
        return (
            db.query(func.count(CMEAttempt.id))
            .filter(CMEAttempt.user_id == user_id, CMEAttempt.activity_id == activity_id)
            .scalar()
        ) or 0
    except SQLAlchemyError as exc:
        raise StorageError("Could not count attempts") from exc


def _log_attempt(db: Session, user_id: str, activity: CMEActivity, score: int, passed: bool) -> int:
    """
    Claim the next attempt slot and return its number.

    Slots are numbered 1..attempts_allowed and unique per (user, activity),
    so a submission that loses a concurrent race for the last slot gets
    AttemptsExhausted instead of exceeding the cap.
    """
    while True:
        number = count_attempts(db, user_id, activity.id) + 1
        if number > activity.attempts_allowed:
            raise AttemptsExhausted(activity.id, activity.attempts_allowed)

        db.add(
            CMEAttempt(
                user_id=user_id,
                activity_id=activity.id,
                number=number,
                score=score,
                passed=passed,
                submitted_at=datetime.now(timezone.utc),
            )
        )
        try:
            db.commit()
            return number
        except IntegrityError:
            # Slot taken by a concurrent submission; recount and try the next one
            db.rollback()
            logger.info(
                "[CME_COMPLETION] user=%s activity=%s lost attempt slot %d, retrying",
                user_id,
                activity.id,
                number,
            )
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageError("Could not log CME attempt") from exc


def _already_completed_response(
    db: Session, user_id: str, activity: CMEActivity, existing: CMECompletion
) -> CompletionResponse:
    attempts_used = count_attempts(db, user_id, activity.id)
    logger.info(
        "[CME_COMPLETION] user=%s activity=%s already holds credit (record %s); not grading",
        user_id,
        activity.id,
        existing.id,
    )
    return CompletionResponse(
        passed=True,
        score=existing.score,
        completion=completion_record_out(existing),
        already_completed=True,
        attempts_used=attempts_used,
        attempts_remaining=max(0, activity.attempts_allowed - attempts_used),
        message="CME activity already completed",
    )


def submit_completion(
    db: Session,
    user_id: str,
    activity_id: int,
    answers: Sequence[Any],
    time_spent: int = 0,
    *,
    allow_retake_credit: Optional[bool] = None,
    audit: Optional[AuditTrail] = None,
) -> CompletionResponse:
    """
    Grade a submission and, if it passes, record the completion.

    1. Load the published activity
    2. Return the held credit when the user already completed it (retake credit off)
    3. Enforce attempts_allowed
    4. Grade and log the attempt
    5. Record the completion on a pass
    """
    if not isinstance(answers, (list, tuple)):
        raise ValidationError("Activity ID and answers are required")
    if time_spent is None or time_spent < 0:
        raise ValidationError("timeSpent must be a non-negative number of seconds")

    activity = get_activity(db, activity_id, published_only=True)
    allow_retake = (
        settings.ALLOW_RETAKE_CREDIT if allow_retake_credit is None else allow_retake_credit
    )

    if not allow_retake:
        try:
            existing = _latest_completion(db, user_id, activity_id)
        except SQLAlchemyError as exc:
            raise StorageError("Could not read existing completions") from exc
        if existing is not None:
            return _already_completed_response(db, user_id, activity, existing)

    if count_attempts(db, user_id, activity_id) >= activity.attempts_allowed:
        raise AttemptsExhausted(activity_id, activity.attempts_allowed)

    try:
        result = grade(activity, answers)
    except GradingConfigurationError:
        logger.error(
            "[CME_COMPLETION] Activity %s is published but cannot be graded; check its test configuration",
            activity_id,
        )
        raise

    attempts_used = _log_attempt(db, user_id, activity, result.score, result.passed)

    grading = GradingResultOut(
        correct_answers=result.correct_answers,
        total_questions=result.total_questions,
        score=result.score,
        passing_score=result.passing_score,
        passed=result.passed,
    )
    attempts_remaining = max(0, activity.attempts_allowed - attempts_used)

    if not result.passed:
        logger.info(
            "[CME_COMPLETION] user=%s activity=%s failed with %d%% (attempt %d/%d)",
            user_id,
            activity_id,
            result.score,
            attempts_used,
            activity.attempts_allowed,
        )
        return CompletionResponse(
            passed=False,
            score=result.score,
            grading=grading,
            attempts_used=attempts_used,
            attempts_remaining=attempts_remaining,
            message=(
                f"Minimum passing score is {result.passing_score}%. "
                f"You scored {result.score}%."
            ),
        )

    recorded = record_completion(
        db,
        user_id,
        activity_id,
        result.score,
        time_spent,
        allow_retake_credit=allow_retake,
        audit=audit,
    )

    return CompletionResponse(
        passed=True,
        score=result.score,
        grading=grading,
        completion=completion_record_out(recorded.record),
        already_completed=recorded.already_completed,
        attempts_used=attempts_used,
        attempts_remaining=attempts_remaining,
        message=(
            "CME activity already completed"
            if recorded.already_completed
            else "CME activity completed successfully"
        ),
    )


def completion_record_out(record: CMECompletion) -> CompletionRecordOut:
    activity = record.activity
    return CompletionRecordOut(
        id=record.id,
        user_id=record.user_id,
        activity_id=record.activity_id,
        activity_title=activity.title,
        specialty=activity.specialty,
        credit_type=activity.credit_type,
        sequence=record.sequence,
        completed_at=record.completed_at,
        score=record.score,
        credits_earned=float(record.credits_earned),
        time_spent=record.time_spent,
        certificate_id=record.certificate_id,
    )
