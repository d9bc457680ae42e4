"""Smoke tests for the career balance simulator."""
import json
from pathlib import Path

import pytest

from mentor_sim.tools.simulate_career import run_simulation


def test_run_simulation_produces_a_timeline():
    result = run_simulation(quarters=4, seed=3)

    assert result["config"] == {"quarters": 4, "seed": 3, "policy": "first", "team_size": 3}
    assert len(result["timeline"]) == 4
    assert result["timeline"][-1]["stamp"] == result["summary"]["stamp"]
    summary = result["summary"]
    for key in ("funding", "reputation", "paper_status", "grant_status", "accepted_papers", "completed_grants"):
        assert key in summary
    assert summary["funding"] >= 0


def test_random_policy_writes_output(tmp_path):
    result = run_simulation(quarters=2, seed=5, policy="random", output_dir=tmp_path)

    output = Path(result["output_path"])
    assert output.parent == tmp_path
    written = json.loads(output.read_text(encoding="utf-8"))
    assert written["summary"] == result["summary"]


def test_unknown_policy_is_rejected():
    with pytest.raises(ValueError):
        run_simulation(quarters=1, policy="greedy")
