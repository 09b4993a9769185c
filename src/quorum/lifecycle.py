"""Proposal lifecycle state machine.

``transition`` is the pure transition table. ``LifecycleEngine`` owns proposal
records, serializes the events aimed at each one, and turns transitions into
reviews, decisions and workflow events.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any, ClassVar
from uuid import uuid4

from quorum.config import ConsensusMode, QuorumConfig
from quorum.consensus import ConsensusResult, evaluate_consensus
from quorum.directives import Directive, next_directive
from quorum.models import (
    TERMINAL_STATUSES,
    VOTES,
    Decision,
    Proposal,
    ProposalStatus,
    Review,
    SeverityCounts,
    VoteRecord,
    generate_proposal_id,
)
from quorum.roles import (
    ArbiterSelection,
    ArbitrationHistory,
    RoleAssignment,
    select_arbiter,
    tally_arbitrations,
)

logger = logging.getLogger(__name__)

EventHook = Callable[[dict[str, Any]], None]


def _utcnow_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat()


class UnknownProposalError(LookupError):
    """Raised when an operation targets a proposal the engine does not own."""


@dataclass(frozen=True, slots=True)
class Create:
    type: ClassVar[str] = "CREATE"


@dataclass(frozen=True, slots=True)
class ReviewReceived:
    agent: str
    vote: str
    type: ClassVar[str] = "REVIEW_RECEIVED"


@dataclass(frozen=True, slots=True)
class Revised:
    type: ClassVar[str] = "REVISED"


@dataclass(frozen=True, slots=True)
class ArbiterDecision:
    vote: str
    type: ClassVar[str] = "ARBITER_DECISION"


@dataclass(frozen=True, slots=True)
class HumanDecision:
    approved: bool
    type: ClassVar[str] = "HUMAN_DECISION"


@dataclass(frozen=True, slots=True)
class ImplementationComplete:
    type: ClassVar[str] = "IMPLEMENTATION_COMPLETE"


LifecycleEvent = (
    Create | ReviewReceived | Revised | ArbiterDecision | HumanDecision | ImplementationComplete
)


@dataclass(frozen=True, slots=True)
class ProposalContext:
    proposal_id: str = ""
    iterations: int = 0
    max_iterations: int = 2
    consensus_mode: ConsensusMode = "majority"
    votes: tuple[VoteRecord, ...] = ()

    @classmethod
    def from_proposal(cls, proposal: Proposal) -> ProposalContext:
        return cls(
            proposal_id=proposal.id,
            iterations=proposal.iterations,
            max_iterations=proposal.max_iterations,
            consensus_mode=proposal.consensus_mode,
            votes=tuple(proposal.votes),
        )


@dataclass(frozen=True, slots=True)
class Transition:
    status: ProposalStatus
    context: ProposalContext
    applied: bool = True
    reason: str = ""
    consensus: ConsensusResult | None = None


def _ignored(
    status: ProposalStatus,
    context: ProposalContext,
    reason: str,
) -> Transition:
    return Transition(status=status, context=context, applied=False, reason=reason)


def _on_review(context: ProposalContext, event: ReviewReceived) -> Transition:
    vote = str(event.vote).strip().upper()
    if vote not in VOTES:
        return _ignored(
            "pending_review", context, f"Invalid vote '{event.vote}' from {event.agent}"
        )

    votes = (*context.votes, VoteRecord(agent=event.agent, vote=vote))  # type: ignore[arg-type]
    updated = replace(context, votes=votes)
    result = evaluate_consensus(votes, context.consensus_mode)
    approvals = result.counts["APPROVE"]
    rejections = result.counts["REJECT"]

    def _to(status: ProposalStatus, reason: str) -> Transition:
        return Transition(status=status, context=updated, reason=reason, consensus=result)

    # Guards are checked in order; the first match wins.
    if approvals == len(votes):
        return _to("approved", result.summary)
    if vote == "REVISE":
        return _to("revision", result.summary)
    if approvals and rejections:
        return _to("disputed", f"Mixed votes: {approvals} APPROVE, {rejections} REJECT")
    if rejections == len(votes):
        return _to("rejected", result.summary)
    return _to("pending_review", "Collecting reviews")


def transition(
    status: ProposalStatus,
    event: LifecycleEvent,
    context: ProposalContext,
) -> Transition:
    """Apply ``event`` to a proposal in ``status``.

    Pairs missing from the table come back with ``applied=False`` and the
    inputs unchanged.
    """
    if status == "draft" and isinstance(event, Create):
        return Transition(status="pending_review", context=replace(context, votes=()))

    if status == "pending_review" and isinstance(event, ReviewReceived):
        return _on_review(context, event)

    if status == "revision" and isinstance(event, Revised):
        iterations = context.iterations + 1
        if iterations >= context.max_iterations:
            return Transition(
                status="escalated",
                context=replace(context, iterations=iterations),
                reason=f"Iteration limit reached ({iterations}/{context.max_iterations})",
            )
        return Transition(
            status="pending_review",
            context=replace(context, iterations=iterations, votes=()),
        )

    if status == "disputed" and isinstance(event, ArbiterDecision):
        vote = str(event.vote).strip().upper()
        if vote == "APPROVE":
            return Transition(status="approved", context=context)
        if vote == "REJECT":
            return Transition(status="rejected", context=context)
        return _ignored(
            status, context, f"Arbiter vote must be APPROVE or REJECT, got '{event.vote}'"
        )

    if status in {"disputed", "escalated"} and isinstance(event, HumanDecision):
        return Transition(status="approved" if event.approved else "rejected", context=context)

    if status == "approved" and isinstance(event, ImplementationComplete):
        return Transition(status="implemented", context=context)

    return _ignored(status, context, f"No transition for {event.type} in state '{status}'")


@dataclass(frozen=True, slots=True)
class TransitionResult:
    proposal_id: str
    event: str
    previous_status: ProposalStatus
    status: ProposalStatus
    applied: bool
    reason: str = ""
    votes: tuple[VoteRecord, ...] = ()
    iterations: int = 0
    consensus: ConsensusResult | None = None
    decision: Decision | None = None
    review: Review | None = None

    @property
    def changed(self) -> bool:
        return self.previous_status != self.status

    def to_dict(self) -> dict[str, Any]:
        return {
            "proposal_id": self.proposal_id,
            "event": self.event,
            "previous_status": self.previous_status,
            "status": self.status,
            "applied": self.applied,
            "reason": self.reason,
            "votes": [record.to_dict() for record in self.votes],
            "iterations": self.iterations,
            "consensus": self.consensus.to_dict() if self.consensus else None,
            "decision": self.decision.to_dict() if self.decision else None,
        }


class LifecycleEngine:
    def __init__(
        self,
        config: QuorumConfig,
        *,
        event_hook: EventHook | None = None,
        ignored_hook: Callable[[TransitionResult], None] | None = None,
    ) -> None:
        self.config = config.validate()
        self.event_hook = event_hook
        self.ignored_hook = ignored_hook
        self._proposals: dict[str, Proposal] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _emit(self, event: dict[str, Any]) -> None:
        if self.event_hook:
            payload = dict(event)
            payload["timestamp"] = _utcnow_iso()
            self.event_hook(payload)

    @contextmanager
    def _locked(self, proposal_id: str) -> Iterator[Proposal]:
        with self._registry_lock:
            proposal = self._proposals.get(proposal_id)
            lock = self._locks.get(proposal_id)
        if proposal is None or lock is None:
            raise UnknownProposalError(f"Proposal not found: {proposal_id}")
        with lock:
            yield proposal

    def _insert(self, proposal: Proposal) -> bool:
        with self._registry_lock:
            if proposal.id in self._proposals:
                return False
            self._proposals[proposal.id] = proposal.snapshot()
            self._locks[proposal.id] = threading.Lock()
        return True

    def register(self, proposal: Proposal) -> Proposal:
        """Adopt an existing record, e.g. one reloaded from storage."""
        if not self._insert(proposal):
            raise ValueError(f"Proposal already exists: {proposal.id}")
        return proposal.snapshot()

    def _build_proposal(
        self,
        title: str,
        content: str,
        proposal_id: str | None,
        assignment: RoleAssignment | None,
        planner: str | None,
        reviewers: list[str] | None,
        consensus_mode: ConsensusMode | None,
        max_iterations: int | None,
    ) -> Proposal:
        if max_iterations is not None and (
            isinstance(max_iterations, bool)
            or not isinstance(max_iterations, int)
            or max_iterations <= 0
        ):
            raise ValueError(f"max_iterations must be a positive integer, got {max_iterations!r}")
        if assignment is not None:
            planner = planner or assignment.planner.identity
            reviewers = reviewers or assignment.reviewer_identities
        planner = planner or self.config.roles.planner
        if reviewers is None:
            reviewers = list(self.config.roles.reviewers)
        return Proposal(
            id=proposal_id or generate_proposal_id(title),
            title=title,
            content=content,
            planner=planner,
            reviewers=reviewers,
            max_iterations=(
                max_iterations if max_iterations is not None else self.config.rules.max_iterations
            ),
            consensus_mode=consensus_mode or self.config.rules.consensus_mode,
        )

    def draft_proposal(
        self,
        title: str,
        content: str = "",
        *,
        proposal_id: str | None = None,
        assignment: RoleAssignment | None = None,
        planner: str | None = None,
        reviewers: list[str] | None = None,
        consensus_mode: ConsensusMode | None = None,
        max_iterations: int | None = None,
    ) -> Proposal:
        proposal = self._build_proposal(
            title,
            content,
            proposal_id,
            assignment,
            planner,
            reviewers,
            consensus_mode,
            max_iterations,
        )
        return self.register(proposal)

    def get(self, proposal_id: str) -> Proposal:
        with self._locked(proposal_id) as proposal:
            return proposal.snapshot()

    def list_proposals(self, status: ProposalStatus | None = None) -> list[Proposal]:
        with self._registry_lock:
            ids = list(self._proposals)
        snapshots = [self.get(proposal_id) for proposal_id in ids]
        if status is None:
            return snapshots
        return [item for item in snapshots if item.status == status]

    def _apply(
        self,
        proposal: Proposal,
        event: LifecycleEvent,
    ) -> tuple[Transition, ProposalStatus]:
        previous = proposal.status
        outcome = transition(previous, event, ProposalContext.from_proposal(proposal))
        if outcome.applied:
            proposal.status = outcome.status
            proposal.iterations = outcome.context.iterations
            proposal.votes = list(outcome.context.votes)
            proposal.updated_at = _utcnow_iso()
            if outcome.status in TERMINAL_STATUSES and proposal.completed_at is None:
                proposal.completed_at = proposal.updated_at
            logger.debug(
                "Proposal %s: %s -> %s on %s", proposal.id, previous, outcome.status, event.type
            )
        return outcome, previous

    def _result(
        self,
        proposal: Proposal,
        event: LifecycleEvent,
        outcome: Transition,
        previous: ProposalStatus,
        *,
        decision: Decision | None = None,
        review: Review | None = None,
    ) -> TransitionResult:
        return TransitionResult(
            proposal_id=proposal.id,
            event=event.type,
            previous_status=previous,
            status=proposal.status,
            applied=outcome.applied,
            reason=outcome.reason,
            votes=tuple(proposal.votes),
            iterations=proposal.iterations,
            consensus=outcome.consensus,
            decision=decision,
            review=review,
        )

    def _report_ignored(self, result: TransitionResult) -> None:
        logger.info(
            "Ignored %s for proposal %s in state %s: %s",
            result.event,
            result.proposal_id,
            result.status,
            result.reason,
        )
        self._emit(
            {
                "event": "transition_ignored",
                "proposal_id": result.proposal_id,
                "lifecycle_event": result.event,
                "status": result.status,
                "reason": result.reason,
            }
        )
        if self.ignored_hook:
            self.ignored_hook(result)

    def _decide(
        self,
        proposal: Proposal,
        outcome: str,
        summary: str,
        decided_by: str,
    ) -> Decision:
        decision = Decision(
            proposal_id=proposal.id,
            outcome=outcome,  # type: ignore[arg-type]
            summary=summary,
            decided_by=decided_by,
        )
        proposal.decision = decision
        return decision

    def create_proposal(
        self,
        proposal_id: str,
        *,
        title: str | None = None,
        content: str = "",
        assignment: RoleAssignment | None = None,
        planner: str | None = None,
        reviewers: list[str] | None = None,
    ) -> TransitionResult:
        """Submit a proposal for review, drafting it first when the id is new."""
        with self._registry_lock:
            known = proposal_id in self._proposals
        if not known:
            # A concurrent CREATE may win the insert; ours then falls through as ignored.
            self._insert(
                self._build_proposal(
                    title or proposal_id,
                    content,
                    proposal_id,
                    assignment,
                    planner,
                    reviewers,
                    None,
                    None,
                )
            )

        event = Create()
        with self._locked(proposal_id) as proposal:
            outcome, previous = self._apply(proposal, event)
            result = self._result(proposal, event, outcome, previous)
            title_value = proposal.title
            planner = proposal.planner

        if not result.applied:
            self._report_ignored(result)
            return result
        self._emit(
            {
                "event": "proposal_created",
                "proposal_id": proposal_id,
                "title": title_value,
                "planner": planner,
            }
        )
        return result

    def record_review(
        self,
        proposal_id: str,
        agent: str,
        vote: str,
        *,
        content: str = "",
        severity: SeverityCounts | None = None,
    ) -> TransitionResult:
        event = ReviewReceived(agent=agent, vote=vote)
        with self._locked(proposal_id) as proposal:
            outcome, previous = self._apply(proposal, event)
            review: Review | None = None
            normalized = str(vote).strip().upper()
            if normalized in VOTES:
                # Late votes are kept for audit but never reach the accumulator.
                review = Review(
                    id=f"rev-{proposal_id}-{agent}-{uuid4().hex[:8]}",
                    proposal_id=proposal_id,
                    agent=agent,
                    vote=normalized,  # type: ignore[arg-type]
                    content=content,
                    severity=severity,
                    iteration=proposal.iterations,
                    counted=outcome.applied,
                )
                proposal.reviews.append(review)
            decision: Decision | None = None
            if outcome.applied and proposal.status in {"approved", "rejected"}:
                summary = outcome.consensus.summary if outcome.consensus else outcome.reason
                decision = self._decide(proposal, proposal.status, summary, "consensus")
            result = self._result(
                proposal, event, outcome, previous, decision=decision, review=review
            )
            total = len(proposal.reviewers)
            mode = proposal.consensus_mode

        if not result.applied:
            self._report_ignored(result)
            return result

        votes_payload = [record.to_dict() for record in result.votes]
        self._emit(
            {
                "event": "review_received",
                "proposal_id": proposal_id,
                "agent": agent,
                "vote": result.votes[-1].vote,
                "current": len(result.votes),
                "total": total,
            }
        )
        self._emit(
            {
                "event": "consensus_checked",
                "proposal_id": proposal_id,
                "votes": votes_payload,
                "mode": mode,
            }
        )
        if result.changed:
            self._emit(
                {
                    "event": "consensus_reached",
                    "proposal_id": proposal_id,
                    "outcome": result.consensus.outcome if result.consensus else None,
                    "status": result.status,
                    "mode": mode,
                }
            )
        if result.status == "disputed":
            self._emit(
                {"event": "dispute_detected", "proposal_id": proposal_id, "votes": votes_payload}
            )
        return result

    def record_revision(self, proposal_id: str, content: str | None = None) -> TransitionResult:
        event = Revised()
        with self._locked(proposal_id) as proposal:
            outcome, previous = self._apply(proposal, event)
            decision: Decision | None = None
            if outcome.applied:
                if content is not None:
                    proposal.content = content
                if proposal.status == "escalated":
                    decision = self._decide(
                        proposal,
                        "deferred",
                        f"{outcome.reason}; awaiting human decision",
                        "consensus",
                    )
            result = self._result(proposal, event, outcome, previous, decision=decision)

        if not result.applied:
            self._report_ignored(result)
        elif result.status == "escalated":
            self._emit(
                {
                    "event": "human_escalation",
                    "proposal_id": proposal_id,
                    "reason": result.reason,
                }
            )
        else:
            self._emit(
                {
                    "event": "revision_started",
                    "proposal_id": proposal_id,
                    "iteration": result.iterations,
                }
            )
        return result

    def assign_arbiter(
        self,
        proposal_id: str,
        history: ArbitrationHistory | None = None,
    ) -> ArbiterSelection | None:
        """Pick and store an arbiter for a disputed proposal."""
        counts = history if history is not None else self.arbitration_counts()
        with self._locked(proposal_id) as proposal:
            if proposal.status != "disputed":
                logger.info(
                    "Arbiter not assigned for proposal %s in state %s",
                    proposal_id,
                    proposal.status,
                )
                return None
            families = [self.config.family_of(record.agent) for record in proposal.votes]
            selection = select_arbiter(self.config, counts, families)
            proposal.arbiter = selection.identity
            proposal.updated_at = _utcnow_iso()

        self._emit(
            {
                "event": "arbiter_invoked",
                "proposal_id": proposal_id,
                "arbiter": selection.identity,
                "fallback": selection.fallback,
            }
        )
        return selection

    def record_arbiter_decision(
        self,
        proposal_id: str,
        vote: str,
        *,
        arbiter: str | None = None,
        summary: str = "",
    ) -> TransitionResult:
        event = ArbiterDecision(vote=vote)
        with self._locked(proposal_id) as proposal:
            outcome, previous = self._apply(proposal, event)
            decision: Decision | None = None
            if outcome.applied:
                if arbiter and not proposal.arbiter:
                    proposal.arbiter = arbiter
                decided_by = proposal.arbiter or "arbiter"
                decision = self._decide(
                    proposal,
                    proposal.status,
                    summary or f"Arbiter {decided_by} voted {str(vote).strip().upper()}",
                    decided_by,
                )
            result = self._result(proposal, event, outcome, previous, decision=decision)

        if not result.applied:
            self._report_ignored(result)
            return result
        self._emit(
            {
                "event": "arbiter_decision",
                "proposal_id": proposal_id,
                "arbiter": decision.decided_by if decision else arbiter,
                "decision": str(vote).strip().upper(),
            }
        )
        return result

    def record_human_decision(
        self,
        proposal_id: str,
        approved: bool,
        *,
        summary: str = "",
    ) -> TransitionResult:
        event = HumanDecision(approved=bool(approved))
        with self._locked(proposal_id) as proposal:
            outcome, previous = self._apply(proposal, event)
            decision: Decision | None = None
            if outcome.applied:
                decision = self._decide(
                    proposal,
                    proposal.status,
                    summary or ("Approved by human" if approved else "Rejected by human"),
                    "human",
                )
            result = self._result(proposal, event, outcome, previous, decision=decision)

        if not result.applied:
            self._report_ignored(result)
            return result
        self._emit(
            {
                "event": "human_decision",
                "proposal_id": proposal_id,
                "approved": bool(approved),
                "status": result.status,
            }
        )
        return result

    def mark_implemented(self, proposal_id: str) -> TransitionResult:
        event = ImplementationComplete()
        with self._locked(proposal_id) as proposal:
            outcome, previous = self._apply(proposal, event)
            result = self._result(proposal, event, outcome, previous)

        if not result.applied:
            self._report_ignored(result)
            return result
        self._emit({"event": "implementation_complete", "proposal_id": proposal_id})
        return result

    def next_directive(
        self,
        proposal_id: str,
        history: ArbitrationHistory | None = None,
    ) -> Directive:
        proposal = self.get(proposal_id)
        counts = history if history is not None else self.arbitration_counts()
        return next_directive(proposal, self.config, counts)

    def arbitration_counts(self) -> dict[str, int]:
        with self._registry_lock:
            ids = list(self._proposals)
        return tally_arbitrations(self.get(proposal_id) for proposal_id in ids)

    def stats(self) -> dict[str, Any]:
        proposals = self.list_proposals()
        by_status: dict[str, int] = {}
        by_agent: dict[str, dict[str, int]] = {}
        severity = {"critical": 0, "high": 0, "medium": 0, "low": 0}
        total_reviews = 0

        def _agent(identity: str) -> dict[str, int]:
            return by_agent.setdefault(
                identity, {"proposals": 0, "reviews": 0, "arbitrations": 0}
            )

        for proposal in proposals:
            by_status[proposal.status] = by_status.get(proposal.status, 0) + 1
            _agent(proposal.planner)["proposals"] += 1
            if proposal.arbiter:
                _agent(proposal.arbiter)["arbitrations"] += 1
            for review in proposal.reviews:
                total_reviews += 1
                _agent(review.agent)["reviews"] += 1
                if review.severity:
                    for key, value in review.severity.to_dict().items():
                        severity[key] += value

        return {
            "total_proposals": len(proposals),
            "by_status": by_status,
            "total_reviews": total_reviews,
            "avg_reviews_per_proposal": (
                round(total_reviews / len(proposals), 1) if proposals else 0.0
            ),
            "arbiter_invocations": sum(1 for item in proposals if item.arbiter),
            "issues_by_severity": severity,
            "by_agent": by_agent,
        }
