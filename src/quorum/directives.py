from __future__ import annotations

import shlex
from dataclasses import dataclass
from typing import Any, Literal

from quorum.config import QuorumConfig
from quorum.consensus import evaluate_consensus
from quorum.models import Proposal, ProposalStatus
from quorum.roles import ArbitrationHistory, select_arbiter

NextAction = Literal[
    "create_proposal",
    "request_review",
    "revise_proposal",
    "invoke_arbiter",
    "implement",
    "escalate_human",
    "mark_complete",
]


@dataclass(frozen=True, slots=True)
class Directive:
    proposal_id: str
    status: ProposalStatus
    action: NextAction
    instructions: str
    target_agent: str | None = None
    command: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "proposal_id": self.proposal_id,
            "status": self.status,
            "next_action": self.action,
            "agent": self.target_agent,
            "command": self.command,
            "instructions": self.instructions,
        }


def proposal_path(proposal: Proposal, config: QuorumConfig) -> str:
    return f"{config.paths.base_dir}/{config.paths.proposals_dir}/{proposal.id}.md"


def review_path(proposal: Proposal, reviewer: str, config: QuorumConfig) -> str:
    return f"{config.paths.base_dir}/{config.paths.reviews_dir}/{proposal.id}-{reviewer}.md"


def decision_path(proposal: Proposal, config: QuorumConfig) -> str:
    return f"{config.paths.base_dir}/{config.paths.decisions_dir}/{proposal.id}.md"


def agent_command(identity: str, prompt: str, config: QuorumConfig) -> str:
    agent = config.agents.get(identity)
    cli = agent.cli if agent else identity
    tokens = [cli]
    if agent and agent.headless_flag:
        tokens.extend(shlex.split(agent.headless_flag))
    tokens.append(prompt)
    return shlex.join(tokens)


def review_command(proposal: Proposal, reviewer: str, config: QuorumConfig) -> str:
    prompt = (
        f"Review {proposal_path(proposal, config)} for security vulnerabilities, edge cases, "
        "and alternative approaches. Vote: APPROVE/REJECT/REVISE with detailed reasoning. "
        f"Save your review to {review_path(proposal, reviewer, config)}"
    )
    return agent_command(reviewer, prompt, config)


def arbiter_command(proposal: Proposal, arbiter: str, config: QuorumConfig) -> str:
    reviews_dir = f"{config.paths.base_dir}/{config.paths.reviews_dir}"
    prompt = (
        f"Act as arbiter for proposal {proposal_path(proposal, config)}. Review the "
        f"conflicting reviews in {reviews_dir}/{proposal.id}-*.md. Make a final decision: "
        f"APPROVE/REJECT. Save your decision to {decision_path(proposal, config)}"
    )
    return agent_command(arbiter, prompt, config)


def implement_command(proposal: Proposal, implementer: str, config: QuorumConfig) -> str:
    prompt = (
        f"Implement the approved proposal from {proposal_path(proposal, config)}. Follow the "
        "implementation plan and address all review feedback."
    )
    return agent_command(implementer, prompt, config)


def _dispute_arbiter(
    proposal: Proposal,
    config: QuorumConfig,
    history: ArbitrationHistory | None,
) -> str:
    if proposal.arbiter:
        return proposal.arbiter
    families = [config.family_of(record.agent) for record in proposal.votes]
    return select_arbiter(config, history, families).identity


def next_directive(
    proposal: Proposal,
    config: QuorumConfig,
    history: ArbitrationHistory | None = None,
) -> Directive:
    """Recommend the next step for ``proposal`` without changing it."""
    status = proposal.status

    def _directive(
        action: NextAction,
        instructions: str,
        target_agent: str | None = None,
        command: str | None = None,
    ) -> Directive:
        return Directive(
            proposal_id=proposal.id,
            status=status,
            action=action,
            instructions=instructions,
            target_agent=target_agent,
            command=command,
        )

    if status == "draft":
        return _directive("create_proposal", "Create the proposal document", proposal.planner)

    if status == "pending_review":
        pending = proposal.pending_reviewers()
        voted = len(proposal.reviewers) - len(pending)
        if pending:
            reviewer = pending[0]
            return _directive(
                "request_review",
                f"Request review from {reviewer} ({voted}/{len(proposal.reviewers)} received)",
                reviewer,
                review_command(proposal, reviewer, config),
            )
        tally = evaluate_consensus(proposal.votes, proposal.consensus_mode)
        return _directive(
            "request_review",
            f"All assigned reviewers have voted; collecting further reviews. {tally.summary}",
        )

    if status == "revision":
        if proposal.iterations + 1 >= proposal.max_iterations:
            return _directive(
                "revise_proposal",
                f"Final revision ({proposal.iterations + 1}/{proposal.max_iterations}). "
                "Recording it escalates the proposal for a human decision.",
                proposal.planner,
            )
        return _directive(
            "revise_proposal",
            "Revise the proposal based on feedback "
            f"(iteration {proposal.iterations + 1}/{proposal.max_iterations})",
            proposal.planner,
        )

    if status == "disputed":
        arbiter = _dispute_arbiter(proposal, config, history)
        return _directive(
            "invoke_arbiter",
            f"Invoke {arbiter} as arbiter to resolve the dispute",
            arbiter,
            arbiter_command(proposal, arbiter, config),
        )

    if status == "escalated":
        return _directive("escalate_human", "Human decision required")

    if status == "approved":
        implementer = config.roles.implementer
        return _directive(
            "implement",
            "Implement the approved proposal",
            implementer,
            implement_command(proposal, implementer, config),
        )

    if status == "implemented":
        return _directive("mark_complete", "Mark proposal as complete")

    return _directive("escalate_human", "Proposal was rejected")
