import pytest

from quorum.consensus import count_votes, evaluate_consensus, normalize_votes
from quorum.models import VoteRecord


def _votes(*values: str) -> list[tuple[str, str]]:
    return [(f"agent-{index}", value) for index, value in enumerate(values)]


def test_no_votes_has_no_consensus() -> None:
    result = evaluate_consensus([], "majority")

    assert result.has_consensus is False
    assert result.outcome is None
    assert result.summary == "No votes received"


@pytest.mark.parametrize("mode", ["majority", "unanimous"])
def test_all_approve_is_approved_in_both_modes(mode: str) -> None:
    votes = _votes("APPROVE", "APPROVE", "APPROVE")

    result = evaluate_consensus(votes, mode)  # type: ignore[arg-type]

    assert result.has_consensus is True
    assert result.outcome == "approved"
    assert result.unanimous is True
    assert result.summary == "All 3 vote(s) APPROVE"


def test_all_reject_is_rejected() -> None:
    result = evaluate_consensus(_votes("REJECT", "REJECT"), "unanimous")

    assert result.outcome == "rejected"
    assert result.has_consensus is True


def test_any_revise_wins_over_other_votes() -> None:
    result = evaluate_consensus(_votes("APPROVE", "APPROVE", "REVISE"), "majority")

    assert result.outcome == "revise"
    assert result.counts == {"APPROVE": 2, "REJECT": 0, "REVISE": 1}


def test_majority_mode_picks_larger_side() -> None:
    approved = evaluate_consensus(_votes("APPROVE", "APPROVE", "REJECT"), "majority")
    rejected = evaluate_consensus(_votes("REJECT", "REJECT", "APPROVE"), "majority")

    assert approved.outcome == "approved"
    assert approved.summary == "Majority APPROVE (2/3)"
    assert approved.unanimous is False
    assert rejected.outcome == "rejected"
    assert rejected.summary == "Majority REJECT (2/3)"


def test_ties_and_unanimous_splits_are_disputed() -> None:
    tie = evaluate_consensus(_votes("APPROVE", "REJECT"), "majority")
    split = evaluate_consensus(_votes("APPROVE", "APPROVE", "REJECT"), "unanimous")

    assert tie.outcome == "disputed"
    assert tie.has_consensus is False
    assert split.outcome == "disputed"
    assert split.summary == "Split vote: 2 APPROVE, 1 REJECT"


def test_votes_are_normalized_and_validated() -> None:
    records = normalize_votes([("codex", " approve "), VoteRecord("gemini", "REJECT")])

    assert records == (VoteRecord("codex", "APPROVE"), VoteRecord("gemini", "REJECT"))
    assert count_votes(records)["APPROVE"] == 1

    with pytest.raises(ValueError, match="Unknown vote"):
        evaluate_consensus([("codex", "MAYBE")])


def test_result_snapshot_is_serializable() -> None:
    result = evaluate_consensus(_votes("APPROVE"), "majority")

    payload = result.to_dict()

    assert payload["outcome"] == "approved"
    assert payload["votes"] == [{"agent": "agent-0", "vote": "APPROVE"}]
