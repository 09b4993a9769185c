from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any, Literal

from quorum.config import ConsensusMode

Vote = Literal["APPROVE", "REJECT", "REVISE"]
ProposalStatus = Literal[
    "draft",
    "pending_review",
    "revision",
    "disputed",
    "escalated",
    "approved",
    "rejected",
    "implemented",
]
DecisionOutcome = Literal["approved", "rejected", "deferred"]

VOTES: tuple[Vote, ...] = ("APPROVE", "REJECT", "REVISE")
PROPOSAL_STATUSES: tuple[ProposalStatus, ...] = (
    "draft",
    "pending_review",
    "revision",
    "disputed",
    "escalated",
    "approved",
    "rejected",
    "implemented",
)
TERMINAL_STATUSES = frozenset({"approved", "rejected", "implemented"})


def _utcnow_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat()


def generate_proposal_id(title: str, *, now: datetime | None = None) -> str:
    moment = now or datetime.now(UTC)
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    prefix = moment.strftime("%Y%m%d")
    return f"{prefix}-{slug}" if slug else prefix


@dataclass(frozen=True, slots=True)
class VoteRecord:
    agent: str
    vote: Vote

    def to_dict(self) -> dict[str, str]:
        return {"agent": self.agent, "vote": self.vote}


@dataclass(frozen=True, slots=True)
class SeverityCounts:
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0

    @property
    def total(self) -> int:
        return self.critical + self.high + self.medium + self.low

    def to_dict(self) -> dict[str, int]:
        return {
            "critical": self.critical,
            "high": self.high,
            "medium": self.medium,
            "low": self.low,
        }


@dataclass(frozen=True, slots=True)
class Review:
    id: str
    proposal_id: str
    agent: str
    vote: Vote
    content: str = ""
    severity: SeverityCounts | None = None
    iteration: int = 0
    counted: bool = True
    recorded_at: str = field(default_factory=_utcnow_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "proposal_id": self.proposal_id,
            "agent": self.agent,
            "vote": self.vote,
            "content": self.content,
            "severity": self.severity.to_dict() if self.severity else None,
            "iteration": self.iteration,
            "counted": self.counted,
            "recorded_at": self.recorded_at,
        }


@dataclass(frozen=True, slots=True)
class Decision:
    proposal_id: str
    outcome: DecisionOutcome
    summary: str
    decided_by: str = "consensus"
    recorded_at: str = field(default_factory=_utcnow_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "proposal_id": self.proposal_id,
            "outcome": self.outcome,
            "summary": self.summary,
            "decided_by": self.decided_by,
            "recorded_at": self.recorded_at,
        }


@dataclass(slots=True)
class Proposal:
    id: str
    title: str
    planner: str
    reviewers: list[str]
    content: str = ""
    status: ProposalStatus = "draft"
    arbiter: str | None = None
    iterations: int = 0
    max_iterations: int = 2
    consensus_mode: ConsensusMode = "majority"
    votes: list[VoteRecord] = field(default_factory=list)
    reviews: list[Review] = field(default_factory=list)
    decision: Decision | None = None
    created_at: str = field(default_factory=_utcnow_iso)
    updated_at: str = field(default_factory=_utcnow_iso)
    completed_at: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def pending_reviewers(self) -> list[str]:
        voted = {record.agent for record in self.votes}
        return [reviewer for reviewer in self.reviewers if reviewer not in voted]

    def snapshot(self) -> Proposal:
        return replace(
            self,
            reviewers=list(self.reviewers),
            votes=list(self.votes),
            reviews=list(self.reviews),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "status": self.status,
            "planner": self.planner,
            "reviewers": list(self.reviewers),
            "arbiter": self.arbiter,
            "iterations": self.iterations,
            "max_iterations": self.max_iterations,
            "consensus_mode": self.consensus_mode,
            "votes": [record.to_dict() for record in self.votes],
            "reviews": [review.to_dict() for review in self.reviews],
            "decision": self.decision.to_dict() if self.decision else None,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
        }
