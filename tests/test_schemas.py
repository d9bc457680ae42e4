"""Tests for generated decision payload validation and clamping."""
import json

import pytest

from mentor_sim.models import StudentAction
from mentor_sim.schemas import (
    EffectBounds,
    extract_json_object,
    normalize_delta,
    normalize_meta,
    parse_generated_decision,
    to_decision_options,
)


@pytest.fixture
def grant_bounds(settings):
    return EffectBounds.from_dict(settings.generator_bounds["grant"])


def _payload(options, **extra):
    return json.dumps({"title": "Referee reports", "prompt": "How do you respond?", "options": options, **extra})


def _option(option_id, **fields):
    return {"id": option_id, "label": f"Option {option_id}", "outcome": "It happens.", **fields}


def test_reply_wrapped_in_prose_is_parsed():
    text = "Sure, here you go:\n" + _payload([_option("A"), _option("B")]) + "\nHope that helps!"

    decision = parse_generated_decision(text)

    assert decision.title == "Referee reports"
    assert [option.id for option in decision.options] == ["A", "B"]


def test_effects_are_clamped_rounded_and_renamed(grant_bounds):
    text = _payload(
        [
            _option(
                "A",
                effects={
                    "stats": {"morale": 50, "funding": 10**9, "reputation": 0, "charisma": 4, "admin": 2.5},
                    "student": {"mentalState": -40, "pendingPapers": True, "stress": "5"},
                },
                meta={"scoreDelta": 40, "luckDelta": -3, "studentAction": "leave"},
            ),
            _option("B"),
        ]
    )

    options = to_decision_options(parse_generated_decision(text), grant_bounds)

    first = options[0]
    assert first.effects.stats.present() == {"morale": 12, "funding": 60000, "admin": 3}
    assert first.effects.student.present() == {"mental_state": -15}
    assert first.meta.score_delta == 18
    assert first.meta.luck_delta == -3
    assert first.meta.student_action is None
    assert options[1].effects is None


def test_non_finite_values_are_dropped(grant_bounds):
    assert normalize_delta({"morale": float("nan"), "admin": float("inf"), "integrity": -3}, grant_bounds.stats) == {
        "integrity": -3
    }


def test_student_action_only_when_allowed(grant_bounds):
    meta = normalize_meta({"studentAction": "leave"}, grant_bounds, allow_student_action=True)
    ignored = normalize_meta({"studentAction": "vanish"}, grant_bounds, allow_student_action=True)

    assert meta.student_action is StudentAction.LEAVE
    assert ignored.student_action is None


def test_invalid_options_are_dropped_and_extra_options_cut():
    text = _payload(
        [
            _option("A"),
            {"id": "B", "label": "", "outcome": "Blank label"},
            _option("C"),
            _option("D"),
        ]
    )

    decision = parse_generated_decision(text)

    # Only the first three entries are considered.
    assert [option.id for option in decision.options] == ["A", "C"]


def test_duplicate_or_missing_ids_are_reassigned(grant_bounds):
    text = _payload([_option("A"), _option("A"), {"label": "Third", "outcome": "Fine."}])

    options = to_decision_options(parse_generated_decision(text), grant_bounds)

    assert [option.id for option in options] == ["A", "B", "C"]


@pytest.mark.parametrize(
    "text",
    [
        "no json here",
        "[1, 2, 3]",
        _payload([_option("A")]),
        _payload("A, B"),
        json.dumps({"title": "", "prompt": "x", "options": [_option("A"), _option("B")]}),
        '{"title": "broken", ',
    ],
)
def test_malformed_payloads_raise_value_error(text):
    with pytest.raises(ValueError):
        parse_generated_decision(text)


def test_extract_json_object_uses_outermost_braces():
    assert extract_json_object('prefix {"a": {"b": 1}} suffix') == {"a": {"b": 1}}


def test_non_mapping_options_are_dropped():
    decision = parse_generated_decision(_payload(["not an option", _option("A"), _option("B")]))

    assert [option.id for option in decision.options] == ["A", "B"]
