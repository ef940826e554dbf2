import threading
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from conftest import correct_answers, make_questions
from medipublish.config import settings
from medipublish.database import init_db
from medipublish.errors import (
    AttemptsExhausted,
    GradingConfigurationError,
    NotFoundError,
    ValidationError,
)
from medipublish.models.activity import CMEActivity, STATUS_REVIEW
from medipublish.models.attempt import CMEAttempt
from medipublish.models.audit import AuditLog
from medipublish.models.completion import CMECompletion
from medipublish.services.audit import AuditTrail, CME_CREDIT_EARNED
from medipublish.services.completion import record_completion, submit_completion


def test_duplicate_completion_returns_existing_record(db, make_activity):
    activity = make_activity()

    first = record_completion(db, "user-1", activity.id, 90, 600, allow_retake_credit=False)
    second = record_completion(db, "user-1", activity.id, 100, 30, allow_retake_credit=False)

    assert first.created is True
    assert second.created is False
    assert second.already_completed is True
    assert second.record.id == first.record.id
    assert second.record.score == 90
    assert db.query(CMECompletion).count() == 1


def test_retake_credit_appends_records(db, make_activity):
    activity = make_activity()

    first = record_completion(db, "user-1", activity.id, 80, 600, allow_retake_credit=True)
    second = record_completion(db, "user-1", activity.id, 90, 600, allow_retake_credit=True)

    assert second.created is True
    assert [first.record.sequence, second.record.sequence] == [1, 2]
    assert db.query(CMECompletion).count() == 2


def test_default_policy_comes_from_settings(db, make_activity, monkeypatch):
    monkeypatch.setattr(settings, "ALLOW_RETAKE_CREDIT", False)
    activity = make_activity()

    record_completion(db, "user-1", activity.id, 80, 0)
    again = record_completion(db, "user-1", activity.id, 80, 0)

    assert again.created is False


def test_credits_follow_activity_credit_hours(db, make_activity):
    activity = make_activity(credit_hours=Decimal("2.50"))

    recorded = record_completion(db, "user-1", activity.id, 85, 100)

    assert Decimal(recorded.record.credits_earned) == Decimal("2.50")


def test_legacy_flat_credit(db, make_activity, monkeypatch):
    monkeypatch.setattr(settings, "LEGACY_FLAT_CREDIT", True)
    activity = make_activity(credit_hours=Decimal("4.00"))

    recorded = record_completion(db, "user-1", activity.id, 85, 100)

    assert Decimal(recorded.record.credits_earned) == Decimal("1")


def test_negative_time_spent_is_rejected(db, make_activity):
    activity = make_activity()

    with pytest.raises(ValidationError):
        record_completion(db, "user-1", activity.id, 85, -1)


def test_unknown_activity(db):
    with pytest.raises(NotFoundError):
        record_completion(db, "user-1", 999, 85, 10)


def test_credit_event_is_audited_once(db, make_activity):
    activity = make_activity()
    audit = AuditTrail()

    record_completion(db, "user-1", activity.id, 85, 10, audit=audit, allow_retake_credit=False)
    record_completion(db, "user-1", activity.id, 85, 10, audit=audit, allow_retake_credit=False)

    events = db.query(AuditLog).filter(AuditLog.activity == CME_CREDIT_EARNED).all()
    assert len(events) == 1
    assert events[0].event_metadata["activityId"] == activity.id


def test_submit_passing_attempt_records_completion(db, make_activity):
    activity = make_activity()

    response = submit_completion(db, "user-1", activity.id, correct_answers(10), 900)

    assert response.passed is True
    assert response.score == 100
    assert response.completion is not None
    assert response.completion.credits_earned == 2.0
    assert response.completion.time_spent == 900
    assert response.attempts_used == 1
    assert response.attempts_remaining == 2
    assert db.query(CMEAttempt).count() == 1


def test_submit_failing_attempt_persists_no_completion(db, make_activity):
    activity = make_activity()

    response = submit_completion(db, "user-1", activity.id, correct_answers(10)[:6], 60)

    assert response.passed is False
    assert response.score == 60
    assert response.completion is None
    assert "Minimum passing score is 70%" in response.message
    assert db.query(CMECompletion).count() == 0
    assert db.query(CMEAttempt).count() == 1


def test_attempts_are_capped(db, make_activity):
    activity = make_activity(attempts_allowed=2)

    submit_completion(db, "user-1", activity.id, [], 0)
    submit_completion(db, "user-1", activity.id, [], 0)

    with pytest.raises(AttemptsExhausted):
        submit_completion(db, "user-1", activity.id, correct_answers(10), 0)

    # other users keep their own allowance
    assert submit_completion(db, "user-2", activity.id, correct_answers(10), 0).passed is True


def test_submit_requires_published_activity(db, make_activity):
    activity = make_activity(status=STATUS_REVIEW, published_at=None)

    with pytest.raises(NotFoundError):
        submit_completion(db, "user-1", activity.id, correct_answers(10), 0)


def test_submit_rejects_non_list_answers(db, make_activity):
    activity = make_activity()

    with pytest.raises(ValidationError):
        submit_completion(db, "user-1", activity.id, "0,1,2", 0)


def test_activity_without_questions_is_a_configuration_error(db, make_activity):
    activity = make_activity(n_questions=0)

    with pytest.raises(GradingConfigurationError):
        submit_completion(db, "user-1", activity.id, [0], 0)

    assert db.query(CMEAttempt).count() == 0


def test_concurrent_duplicate_completions_record_once(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}", future=True)
    init_db(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    setup = Session()
    activity = CMEActivity(
        creator_id="creator-1",
        title="Concurrent activity",
        specialty="Surgery",
        tags=["Surgery"],
        credit_type="AMA_PRA_1",
        credit_hours=Decimal("1.00"),
        question_bank=make_questions(10),
        passing_score=70,
        attempts_allowed=3,
        status="PUBLISHED",
    )
    setup.add(activity)
    setup.commit()
    activity_id = activity.id
    setup.close()

    barrier = threading.Barrier(2)
    results = []
    errors = []

    def submit():
        session = Session()
        try:
            barrier.wait()
            recorded = record_completion(
                session, "user-1", activity_id, 90, 60, allow_retake_credit=False
            )
            results.append((recorded.record.id, recorded.created))
        except Exception as exc:
            errors.append(exc)
        finally:
            session.close()

    threads = [threading.Thread(target=submit) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    check = Session()
    try:
        assert check.query(CMECompletion).count() == 1
    finally:
        check.close()
        engine.dispose()

    assert len({record_id for record_id, _ in results}) == 1
    assert sorted(created for _, created in results) == [False, True]


def test_retry_after_passing_on_last_attempt_returns_existing_record(db, make_activity):
    activity = make_activity(attempts_allowed=3)

    submit_completion(db, "user-1", activity.id, [], 0)
    submit_completion(db, "user-1", activity.id, [], 0)
    passed = submit_completion(db, "user-1", activity.id, correct_answers(10), 300)
    retry = submit_completion(db, "user-1", activity.id, correct_answers(10), 300)

    assert passed.attempts_remaining == 0
    assert retry.passed is True
    assert retry.already_completed is True
    assert retry.grading is None
    assert retry.completion.id == passed.completion.id
    assert retry.message == "CME activity already completed"
    assert retry.attempts_used == 3
    assert db.query(CMEAttempt).count() == 3
    assert db.query(CMECompletion).count() == 1


def test_resubmitting_after_a_pass_does_not_use_an_attempt(db, make_activity):
    activity = make_activity()

    first = submit_completion(db, "user-1", activity.id, correct_answers(10), 300)
    # a worse answer sheet still reports the credit already held
    again = submit_completion(db, "user-1", activity.id, [], 0)

    assert again.passed is True
    assert again.already_completed is True
    assert again.score == first.score
    assert again.attempts_used == 1
    assert again.attempts_remaining == 2
    assert db.query(CMEAttempt).count() == 1


def test_retake_credit_keeps_grading_after_a_pass(db, make_activity):
    activity = make_activity()

    submit_completion(db, "user-1", activity.id, correct_answers(10), 0, allow_retake_credit=True)
    retake = submit_completion(
        db, "user-1", activity.id, correct_answers(10), 0, allow_retake_credit=True
    )

    assert retake.already_completed is False
    assert retake.grading is not None
    assert retake.completion.sequence == 2
    assert db.query(CMEAttempt).count() == 2


def test_attempt_numbers_are_sequential(db, make_activity):
    activity = make_activity()

    submit_completion(db, "user-1", activity.id, [], 0)
    submit_completion(db, "user-1", activity.id, [], 0)

    numbers = [a.number for a in db.query(CMEAttempt).order_by(CMEAttempt.id)]
    assert numbers == [1, 2]


def test_concurrent_submissions_cannot_exceed_attempt_cap(tmp_path, monkeypatch):
    from medipublish.services import completion as completion_service

    engine = create_engine(f"sqlite:///{tmp_path / 'attempts.db'}", future=True)
    init_db(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    setup = Session()
    activity = CMEActivity(
        creator_id="creator-1",
        title="Single attempt activity",
        specialty="Surgery",
        tags=["Surgery"],
        credit_type="AMA_PRA_1",
        credit_hours=Decimal("1.00"),
        question_bank=make_questions(10),
        passing_score=70,
        attempts_allowed=1,
        status="PUBLISHED",
    )
    setup.add(activity)
    setup.commit()
    activity_id = activity.id
    setup.close()

    # Hold both submissions right after they count the slot they are about to claim
    barrier = threading.Barrier(2, timeout=10)
    calls = threading.local()
    original_count = completion_service.count_attempts

    def count_then_wait(db, user_id, activity_id):
        used = original_count(db, user_id, activity_id)
        calls.n = getattr(calls, "n", 0) + 1
        if calls.n == 2:
            barrier.wait()
        return used

    monkeypatch.setattr(completion_service, "count_attempts", count_then_wait)

    results = []
    errors = []

    def submit():
        session = Session()
        try:
            results.append(submit_completion(session, "user-1", activity_id, [], 0))
        except Exception as exc:
            errors.append(exc)
        finally:
            session.close()

    threads = [threading.Thread(target=submit) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    check = Session()
    try:
        assert check.query(CMEAttempt).count() == 1
    finally:
        check.close()
        engine.dispose()

    assert len(results) == 1
    assert results[0].attempts_used == 1
    assert len(errors) == 1
    assert isinstance(errors[0], AttemptsExhausted)
