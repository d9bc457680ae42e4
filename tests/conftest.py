"""Shared fixtures for the mentor simulation tests."""
import os

import pytest

os.environ.setdefault("LLM_MODE", "mock")

from mentor_sim.config import get_settings
from mentor_sim.models import Gauge, MentorStats, QuarterStamp, SimulationSession, StudentPersona
from mentor_sim.rng import DeterministicRNG
from mentor_sim.templates import get_decision_templates
from mentor_sim.traits import get_trait_catalog


class ScriptedRNG(DeterministicRNG):
    """Replays fixed ``random()`` values, then falls back to the seeded stream."""

    def __init__(self, values, seed=0):
        super().__init__(seed)
        self._values = list(values)

    def random(self):
        if self._values:
            return self._values.pop(0)
        return super().random()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def templates():
    return get_decision_templates()


@pytest.fixture
def catalog():
    return get_trait_catalog()


@pytest.fixture
def scripted_rng():
    return ScriptedRNG


@pytest.fixture
def make_student():
    def _make(student_id, **overrides):
        values = dict(
            id=student_id,
            name=f"Student {student_id}",
            diligence=60,
            talent=60,
            luck=50,
            stress=20,
            mental_state=80,
        )
        values.update(overrides)
        return StudentPersona(**values)

    return _make


@pytest.fixture
def stats():
    return MentorStats(
        morale=Gauge(70),
        academia=Gauge(50),
        admin=Gauge(50),
        integrity=Gauge(60),
        funding=100000,
        reputation=0,
    )


@pytest.fixture
def make_session(stats):
    def _make(students=(), **overrides):
        values = dict(
            id="career-test",
            mentor_name="Dr. Test",
            calendar=QuarterStamp(year=1, quarter=1),
            stats=stats,
            students=list(students),
        )
        values.update(overrides)
        return SimulationSession(**values)

    return _make
