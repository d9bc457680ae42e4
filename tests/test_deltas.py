"""Tests for stat and student delta application."""
import random

from mentor_sim.deltas import (
    StudentDeltaLedger,
    apply_stat_delta,
    apply_student_delta,
    merge_stat_deltas,
)
from mentor_sim.models import GAUGE_FIELDS, StatDelta, StudentDelta


def test_gauges_clamp_to_their_maximum_and_zero(stats):
    raised = apply_stat_delta(stats, StatDelta(morale=500, academia=10))
    lowered = apply_stat_delta(stats, StatDelta(morale=-500))

    assert raised.morale.value == 100
    assert raised.academia.value == 60
    assert lowered.morale.value == 0
    # Untouched fields keep their value.
    assert raised.admin == stats.admin
    assert raised.funding == stats.funding


def test_funding_floors_at_zero_and_reputation_is_unbounded(stats):
    updated = apply_stat_delta(stats, StatDelta(funding=-10**9, reputation=-50))

    assert updated.funding == 0
    assert updated.reputation == -50


def test_empty_or_missing_delta_returns_stats_unchanged(stats):
    assert apply_stat_delta(stats, None) is stats
    assert apply_stat_delta(stats, StatDelta()) is stats


def test_random_deltas_never_escape_bounds(stats, make_student):
    """Outlier deltas in both directions always land inside each attribute's bound."""
    generator = random.Random(1234)
    student = make_student("s1")
    current = stats
    for _ in range(300):
        magnitude = generator.choice([5, 50, 5000, 10**6])
        current = apply_stat_delta(
            current,
            StatDelta(**{name: generator.randint(-magnitude, magnitude) for name in GAUGE_FIELDS},
                      funding=generator.randint(-magnitude, magnitude)),
        )
        student = apply_student_delta(
            student,
            StudentDelta(
                diligence=generator.randint(-magnitude, magnitude),
                stress=generator.randint(-magnitude, magnitude),
                mental_state=generator.randint(-magnitude, magnitude),
                contribution=generator.randint(-magnitude, magnitude),
                pending_papers=generator.randint(-magnitude, magnitude),
            ),
        )
        for name in GAUGE_FIELDS:
            gauge = getattr(current, name)
            assert 0 <= gauge.value <= gauge.max
        assert current.funding >= 0
        for name in ("diligence", "stress", "mental_state", "contribution"):
            assert 0 <= getattr(student, name) <= 100
        assert student.pending_papers >= 0


def test_student_paper_counters_apply_exactly(make_student):
    student = make_student("s1", pending_papers=2, total_papers=0)

    updated = apply_student_delta(student, StudentDelta(pending_papers=-1, total_papers=1))

    assert updated.pending_papers == 1
    assert updated.total_papers == 1
    assert student.pending_papers == 2


def test_sparse_deltas_add_field_by_field():
    combined = StatDelta(funding=5) + StatDelta(funding=-2, morale=1)

    assert combined.present() == {"funding": 3, "morale": 1}
    assert combined + None is combined
    assert StatDelta().is_empty()


def test_merge_stat_deltas_skips_missing_entries():
    merged = merge_stat_deltas([StatDelta(reputation=2), None, StatDelta(reputation=1, funding=100)])

    assert merged == StatDelta(reputation=3, funding=100)


def test_ledger_nets_deltas_before_clamping(make_student):
    student = make_student("s1", stress=95)
    ledger = StudentDeltaLedger()
    ledger.add("s1", StudentDelta(stress=10))
    ledger.add("s1", StudentDelta(stress=-10))
    ledger.add(None, StudentDelta(stress=50))

    (updated,) = ledger.apply([student])

    assert updated.stress == 95
    assert ledger.get("s1") == StudentDelta(stress=0)
    assert ledger
    assert not StudentDeltaLedger()
