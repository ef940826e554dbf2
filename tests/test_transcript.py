from datetime import datetime, timedelta, timezone
from decimal import Decimal

from medipublish.services.completion import record_completion
from medipublish.services.transcript import get_transcript


def test_user_without_completions_gets_empty_transcript(db):
    transcript = get_transcript(db, "nobody")

    assert transcript.user_id == "nobody"
    assert transcript.total_credits == 0
    assert transcript.credits_by_specialty == {}
    assert transcript.credits_by_type == {}
    assert transcript.completions == []
    assert transcript.expiring_credits == []


def test_totals_and_groupings(db, make_activity):
    medicine = make_activity(credit_hours=Decimal("2.00"))
    surgery = make_activity(
        specialty="Surgery", tags=["Surgery"], credit_hours=Decimal("1.50"), credit_type="AMA_PRA_2"
    )
    review = make_activity(credit_hours=Decimal("0.50"))

    for activity in (medicine, surgery, review):
        record_completion(db, "user-1", activity.id, 90, 60)
    record_completion(db, "user-2", medicine.id, 90, 60)

    transcript = get_transcript(db, "user-1")

    assert transcript.total_credits == 4.0
    assert transcript.credits_by_specialty == {"Internal Medicine": 2.5, "Surgery": 1.5}
    assert transcript.credits_by_type == {"AMA_PRA_1": 2.5, "AMA_PRA_2": 1.5}
    assert len(transcript.completions) == 3
    assert {c.user_id for c in transcript.completions} == {"user-1"}


def test_completions_are_newest_first(db, make_activity):
    first = make_activity()
    second = make_activity()
    base = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    record_completion(db, "user-1", first.id, 80, 60, now=base)
    record_completion(db, "user-1", second.id, 95, 60, now=base + timedelta(days=10))

    transcript = get_transcript(db, "user-1", now=base + timedelta(days=20))

    assert [c.activity_id for c in transcript.completions] == [second.id, first.id]


def test_expiring_credits_skip_lapsed_completions(db, make_activity):
    old = make_activity()
    recent = make_activity()
    now = datetime(2026, 6, 1, tzinfo=timezone.utc)

    record_completion(db, "user-1", old.id, 80, 60, now=now - timedelta(days=4 * 365))
    record_completion(db, "user-1", recent.id, 80, 60, now=now - timedelta(days=30))

    transcript = get_transcript(db, "user-1", now=now)

    # lapsed credits still count toward the lifetime total
    assert transcript.total_credits == 4.0
    assert [e.activity_id for e in transcript.expiring_credits] == [recent.id]
    expiring = transcript.expiring_credits[0]
    assert expiring.credits == 2.0
    assert expiring.expiration_date.date() == (now - timedelta(days=30) + timedelta(days=3 * 365)).date()
