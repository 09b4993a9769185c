from quorum.config import QuorumConfig
from quorum.directives import agent_command, next_directive
from quorum.models import Proposal, VoteRecord


def _proposal(status: str, **kwargs: object) -> Proposal:
    data: dict = {
        "id": "20260101-add-jwt-auth",
        "title": "Add JWT auth",
        "planner": "claude",
        "reviewers": ["codex", "gemini"],
        "status": status,
    }
    data.update(kwargs)
    return Proposal(**data)


def test_draft_asks_planner_to_write_proposal() -> None:
    directive = next_directive(_proposal("draft"), QuorumConfig.default())

    assert directive.action == "create_proposal"
    assert directive.target_agent == "claude"
    assert directive.command is None


def test_pending_review_targets_first_missing_reviewer() -> None:
    proposal = _proposal("pending_review", votes=[VoteRecord("codex", "APPROVE")])

    directive = next_directive(proposal, QuorumConfig.default())

    assert directive.action == "request_review"
    assert directive.target_agent == "gemini"
    assert directive.command is not None
    assert directive.command.startswith("gemini ")
    assert "docs/quorum/proposals/20260101-add-jwt-auth.md" in directive.command
    assert "docs/quorum/reviews/20260101-add-jwt-auth-gemini.md" in directive.command
    assert "(1/2 received)" in directive.instructions


def test_review_command_uses_headless_flag() -> None:
    command = agent_command("codex", "Review it", QuorumConfig.default())

    assert command == "codex exec 'Review it'"
    assert agent_command("local", "hi", QuorumConfig.default()) == "local hi"


def test_revision_keeps_planner_revising_at_cap() -> None:
    config = QuorumConfig.default()

    first = next_directive(_proposal("revision", iterations=0, max_iterations=2), config)
    last = next_directive(_proposal("revision", iterations=1, max_iterations=2), config)

    assert first.action == "revise_proposal"
    assert first.target_agent == "claude"
    assert last.action == "revise_proposal"
    assert last.target_agent == "claude"
    assert "escalates" in last.instructions


def test_disputed_invokes_arbiter_outside_reviewer_families() -> None:
    proposal = _proposal(
        "disputed",
        votes=[VoteRecord("codex", "APPROVE"), VoteRecord("gemini", "REJECT")],
    )

    directive = next_directive(proposal, QuorumConfig.default(), {})
    assigned = next_directive(
        _proposal("disputed", arbiter="gemini"), QuorumConfig.default(), {}
    )

    assert directive.action == "invoke_arbiter"
    assert directive.target_agent == "claude"
    assert directive.command is not None
    assert directive.command.startswith("claude -p ")
    assert "docs/quorum/decisions/20260101-add-jwt-auth.md" in directive.command
    assert assigned.target_agent == "gemini"


def test_terminal_and_escalated_states() -> None:
    config = QuorumConfig.default()

    approved = next_directive(_proposal("approved"), config)
    implemented = next_directive(_proposal("implemented"), config)
    rejected = next_directive(_proposal("rejected"), config)
    escalated = next_directive(_proposal("escalated"), config)

    assert approved.action == "implement"
    assert approved.target_agent == "claude"
    assert implemented.action == "mark_complete"
    assert rejected.action == "escalate_human"
    assert rejected.instructions == "Proposal was rejected"
    assert escalated.action == "escalate_human"


def test_next_directive_is_idempotent() -> None:
    config = QuorumConfig.default()
    proposal = _proposal(
        "disputed",
        votes=[VoteRecord("codex", "APPROVE"), VoteRecord("gemini", "REJECT")],
    )
    before = proposal.to_dict()

    first = next_directive(proposal, config, {"gemini": 1})
    second = next_directive(proposal, config, {"gemini": 1})

    assert first == second
    assert proposal.to_dict() == before
    assert first.to_dict()["next_action"] == "invoke_arbiter"
