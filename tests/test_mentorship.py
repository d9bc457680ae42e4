"""Test peer mentorship pairing, influence and assignment rules."""
import random

import pytest

from mentor_sim.services.mentorship import (
    apply_mentorship_influence,
    assign_mentor,
    build_mentor_pairs,
    mentor_delta,
    trait_band_delta,
    would_create_cycle,
)


def _influence(students, settings, catalog):
    return apply_mentorship_influence(
        students,
        catalog=catalog,
        rules=settings.mentorship_influence,
        boost_bands=settings.trait_boost_bands,
        drag_bands=settings.trait_drag_bands,
    )


def test_first_claim_wins_when_two_mentees_share_a_mentor(make_student, settings, catalog):
    students = [
        make_student("a", mentor_id="c"),
        make_student("b", mentor_id="c"),
        make_student("c"),
    ]

    assert build_mentor_pairs(students) == {"a": "c"}

    rebuilt = {s.id: s for s in _influence(students, settings, catalog)}
    assert rebuilt["a"].mentor_id == "c"
    assert rebuilt["a"].is_being_mentored
    assert rebuilt["b"].mentor_id is None
    assert not rebuilt["b"].is_being_mentored


def test_self_and_unknown_mentors_are_ignored(make_student):
    students = [make_student("a", mentor_id="a"), make_student("b", mentor_id="ghost")]

    assert build_mentor_pairs(students) == {}


def test_mentee_moves_toward_mentor_profile(make_student, settings, catalog):
    mentor = make_student("m", diligence=95, talent=50, luck=50, mental_state=50, stress=50)
    mentee = make_student("x", mentor_id="m", diligence=50)

    rebuilt = {s.id: s for s in _influence([mentee, mentor], settings, catalog)}

    # (95 - 50) / 15 = 3, the diligence ceiling.
    assert rebuilt["x"].diligence == 53
    assert rebuilt["x"].talent == mentee.talent
    assert rebuilt["m"] == mentor


def test_mentor_delta_is_clamped():
    assert mentor_delta(95, step=15, low=-2, high=3) == 3
    assert mentor_delta(20, step=15, low=-2, high=3) == -2
    assert mentor_delta(5, step=15, low=-2, high=3) == -2
    assert mentor_delta(50, step=15, low=-2, high=3) == 0


def test_trait_band_delta(settings):
    bands = dict(boost_bands=settings.trait_boost_bands, drag_bands=settings.trait_drag_bands)

    assert trait_band_delta((80, 100), **bands) == 3
    assert trait_band_delta((65, 100), **bands) == 1
    assert trait_band_delta((0, 30), **bands) == -2
    assert trait_band_delta((40, 90), **bands) == 0


def test_self_assignment_is_rejected(make_student):
    with pytest.raises(ValueError):
        assign_mentor([make_student("a")], "a", "a")


def test_mentor_can_only_take_one_mentee(make_student):
    students = [make_student("a", mentor_id="c"), make_student("b"), make_student("c")]

    with pytest.raises(ValueError):
        assign_mentor(students, "b", "c")


def test_cycle_forming_assignment_is_rejected(make_student):
    students = [make_student("a", mentor_id="b"), make_student("b", mentor_id="c"), make_student("c")]

    assert would_create_cycle(students, "c", "a")
    with pytest.raises(ValueError):
        assign_mentor(students, "c", "a")


def test_unknown_students_are_rejected(make_student):
    with pytest.raises(ValueError):
        assign_mentor([make_student("a")], "ghost", None)
    with pytest.raises(ValueError):
        assign_mentor([make_student("a")], "a", "ghost")


def test_clearing_a_mentor(make_student):
    students = assign_mentor([make_student("a", mentor_id="b", is_being_mentored=True), make_student("b")], "a", None)

    assert students[0].mentor_id is None
    assert not students[0].is_being_mentored


def test_graph_stays_acyclic_under_random_assignments(make_student):
    generator = random.Random(99)
    ids = [f"s{i}" for i in range(6)]
    students = [make_student(student_id) for student_id in ids]

    for _ in range(400):
        mentee = generator.choice(ids)
        mentor = generator.choice(ids + [None])
        try:
            students = assign_mentor(students, mentee, mentor)
        except ValueError:
            continue

        mentor_of = {s.id: s.mentor_id for s in students}
        for start in ids:
            seen = set()
            current = start
            while current is not None:
                assert current not in seen, f"cycle through {current}"
                seen.add(current)
                current = mentor_of[current]
        claimed = [m for m in mentor_of.values() if m]
        assert len(claimed) == len(set(claimed))
