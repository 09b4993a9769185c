"""Vote consensus evaluation.

``evaluate_consensus`` is a pure function of the current iteration's votes and
the consensus mode. Rules are checked in order and the first match wins:

1. no votes: no consensus
2. every vote APPROVE: approved
3. every vote REJECT: rejected
4. any vote REVISE: revise, whatever the remaining votes say
5. majority mode with unequal APPROVE/REJECT counts: the larger side
6. anything else: disputed
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from quorum.config import ConsensusMode
from quorum.models import VOTES, Vote, VoteRecord

ConsensusOutcome = Literal["approved", "rejected", "revise", "disputed"]


@dataclass(frozen=True, slots=True)
class ConsensusResult:
    has_consensus: bool
    outcome: ConsensusOutcome | None
    votes: tuple[VoteRecord, ...] = ()
    counts: dict[str, int] = field(default_factory=dict)
    summary: str = ""

    @property
    def unanimous(self) -> bool:
        return bool(self.votes) and len({record.vote for record in self.votes}) == 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_consensus": self.has_consensus,
            "outcome": self.outcome,
            "votes": [record.to_dict() for record in self.votes],
            "counts": dict(self.counts),
            "summary": self.summary,
        }


def normalize_votes(votes: Iterable[VoteRecord | tuple[str, str]]) -> tuple[VoteRecord, ...]:
    records: list[VoteRecord] = []
    for item in votes:
        if isinstance(item, VoteRecord):
            records.append(item)
            continue
        agent, vote = item
        normalized = str(vote).strip().upper()
        if normalized not in VOTES:
            raise ValueError(f"Unknown vote '{vote}' from {agent}; expected one of {VOTES}.")
        records.append(VoteRecord(agent=str(agent), vote=normalized))  # type: ignore[arg-type]
    return tuple(records)


def count_votes(votes: Sequence[VoteRecord]) -> dict[Vote, int]:
    counts: dict[Vote, int] = {"APPROVE": 0, "REJECT": 0, "REVISE": 0}
    for record in votes:
        counts[record.vote] += 1
    return counts


def evaluate_consensus(
    votes: Iterable[VoteRecord | tuple[str, str]],
    mode: ConsensusMode = "majority",
) -> ConsensusResult:
    records = normalize_votes(votes)
    if not records:
        return ConsensusResult(
            has_consensus=False,
            outcome=None,
            counts=dict(count_votes(records)),
            summary="No votes received",
        )

    counts = count_votes(records)
    total = len(records)

    def _result(has_consensus: bool, outcome: ConsensusOutcome, summary: str) -> ConsensusResult:
        return ConsensusResult(
            has_consensus=has_consensus,
            outcome=outcome,
            votes=records,
            counts=dict(counts),
            summary=summary,
        )

    if counts["APPROVE"] == total:
        return _result(True, "approved", f"All {total} vote(s) APPROVE")
    if counts["REJECT"] == total:
        return _result(True, "rejected", f"All {total} vote(s) REJECT")
    if counts["REVISE"] > 0:
        return _result(True, "revise", f"{counts['REVISE']} vote(s) request REVISE")

    if mode == "majority":
        if counts["APPROVE"] > counts["REJECT"]:
            return _result(True, "approved", f"Majority APPROVE ({counts['APPROVE']}/{total})")
        if counts["REJECT"] > counts["APPROVE"]:
            return _result(True, "rejected", f"Majority REJECT ({counts['REJECT']}/{total})")

    return _result(
        False,
        "disputed",
        f"Split vote: {counts['APPROVE']} APPROVE, {counts['REJECT']} REJECT",
    )
