"""Career balance simulator: run quarters with an automatic decision policy."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..models import GrantStatus, PaperStatus
from ..rng import DeterministicRNG
from ..service import MentorService

POLICIES = ("first", "random")


def _resolve_backlog(service: MentorService, policy: str, rng: DeterministicRNG) -> int:
    resolved = 0
    while service.active_decision is not None:
        decision = service.active_decision
        option = decision.options[0] if policy == "first" else rng.choice(decision.options)
        service.choose_option(decision.id, option.id)
        resolved += 1
    return resolved


def _try_apply_grants(service: MentorService) -> List[str]:
    applied = []
    for grant_type in service.settings.grant_types:
        try:
            asyncio.run(service.apply_grant(grant_type))
        except ValueError:
            continue
        applied.append(grant_type)
    return applied


def _snapshot(service: MentorService) -> Dict[str, Any]:
    session = service.session
    stats = session.stats
    return {
        "stamp": str(session.calendar),
        "funding": stats.funding,
        "reputation": stats.reputation,
        "morale": stats.morale.value,
        "academia": stats.academia.value,
        "admin": stats.admin.value,
        "integrity": stats.integrity.value,
        "students": len(session.students),
        "pending_decisions": len(session.backlog),
    }


def run_simulation(
    *,
    quarters: int,
    seed: int = 42,
    policy: str = "first",
    team_size: int = 3,
    output_dir: Optional[Path] = None,
) -> Dict[str, Any]:
    """Run ``quarters`` settlements and return a timeline plus summary."""

    if policy not in POLICIES:
        raise ValueError(f"Unknown policy {policy}; expected one of {', '.join(POLICIES)}")
    os.environ.setdefault("LLM_MODE", "mock")
    service = MentorService.new_career("Simulated Mentor", seed=seed, team_size=team_size)
    policy_rng = DeterministicRNG(seed + 1)
    project = service.create_project(category="general")
    for student in service.session.students:
        service.assign_to_project(project.id, student.id)

    timeline: List[Dict[str, Any]] = []
    for _ in range(quarters):
        applied = _try_apply_grants(service)
        if service.session.calendar.quarter == service.settings.recruitment["quarter"]:
            service.recruit_students(1)
        resolved = _resolve_backlog(service, policy, policy_rng)
        asyncio.run(service.end_quarter())
        entry = _snapshot(service)
        entry.update({"grants_applied": applied, "decisions_resolved": resolved})
        timeline.append(entry)

    session = service.session
    summary = {
        **_snapshot(service),
        "paper_status": dict(Counter(paper.status.value for paper in session.papers)),
        "accepted_papers": sum(1 for paper in session.papers if paper.status is PaperStatus.ACCEPTED),
        "grant_status": dict(Counter(grant.status.value for grant in session.grants)),
        "completed_grants": sum(1 for grant in session.grants if grant.status is GrantStatus.COMPLETED),
        "total_student_papers": sum(student.total_papers for student in session.students),
    }
    result = {
        "config": {"quarters": quarters, "seed": seed, "policy": policy, "team_size": team_size},
        "timeline": timeline,
        "summary": summary,
    }

    if output_dir is not None:
        output_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        output_path = output_dir / f"career_simulation_{timestamp}.json"
        output_path.write_text(json.dumps(result, indent=2), encoding="utf-8")
        result["output_path"] = str(output_path)

    return result


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a career balance simulation.")
    parser.add_argument("--quarters", type=int, default=12, help="Number of quarters to settle.")
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--policy", choices=POLICIES, default="first", help="How pending decisions are resolved.")
    parser.add_argument("--team-size", type=int, default=3)
    parser.add_argument("--output-dir", type=Path, help="Write the result JSON into this directory.")
    return parser.parse_args()


def main() -> None:  # pragma: no cover - CLI entry point
    args = _parse_args()
    result = run_simulation(
        quarters=args.quarters,
        seed=args.seed,
        policy=args.policy,
        team_size=args.team_size,
        output_dir=args.output_dir,
    )
    print(json.dumps(result["summary"], indent=2))


if __name__ == "__main__":
    main()
