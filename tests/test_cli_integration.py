import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from quorum.cli import cli
from quorum.config import load_config, save_config


def _write_events(path: Path, events: list[dict]) -> None:
    path.write_text("\n".join(json.dumps(event) for event in events) + "\n", encoding="utf-8")


def test_cli_init_and_check(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    runner = CliRunner()

    init_result = runner.invoke(cli, ["init"])
    assert init_result.exit_code == 0
    assert "Planner: claude" in init_result.output
    assert (tmp_path / "quorum.toml").exists()

    again = runner.invoke(cli, ["init"])
    assert again.exit_code != 0
    assert "already exists" in again.output

    check_result = runner.invoke(cli, ["check"])
    assert check_result.exit_code == 0
    assert "Configuration OK" in check_result.output


def test_cli_check_reports_invalid_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    config_path = tmp_path / "quorum.toml"
    config = load_config(config_path)
    config.roles.reviewers = []
    save_config(config_path, config)

    result = CliRunner().invoke(cli, ["check"])

    assert result.exit_code != 0
    assert "roles.reviewers" in result.output


def test_cli_analyze_outputs_json(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    result = CliRunner().invoke(
        cli,
        ["analyze", "Add JWT check", "--file", "src/auth/jwt.py", "--mode", "unanimous"],
    )

    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert payload["requires_review"] is True
    assert payload["confidence"] == 0.95
    assert payload["consensus_mode"] == "unanimous"
    assert payload["assignment"]["top_expertise"] == "security"
    assert payload["next_action"] == "create_proposal"


def test_cli_consensus_accepts_named_and_bare_votes() -> None:
    runner = CliRunner()

    named = runner.invoke(cli, ["consensus", "codex=APPROVE", "gemini=approve", "claude=REJECT"])
    bare = runner.invoke(cli, ["consensus", "APPROVE", "REJECT", "--mode", "unanimous"])
    invalid = runner.invoke(cli, ["consensus", "codex=MAYBE"])

    assert named.exit_code == 0
    assert json.loads(named.output)["outcome"] == "approved"
    assert bare.exit_code == 0
    bare_payload = json.loads(bare.output)
    assert bare_payload["outcome"] == "disputed"
    assert bare_payload["votes"][0]["agent"] == "voter-1"
    assert invalid.exit_code != 0
    assert "Unknown vote" in invalid.output


def test_cli_replay_runs_lifecycle(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    events_path = tmp_path / "events.jsonl"
    _write_events(
        events_path,
        [
            {
                "proposal_id": "p1",
                "type": "CREATE",
                "title": "Rate limit",
                "reviewers": ["codex", "gemini"],
            },
            {"proposal_id": "p1", "type": "REVIEW_RECEIVED", "agent": "codex", "vote": "REVISE"},
            {"proposal_id": "p1", "type": "REVISED", "content": "second draft"},
            {"proposal_id": "p1", "type": "REVIEW_RECEIVED", "agent": "gemini", "vote": "REVISE"},
            {"proposal_id": "p1", "type": "REVISED"},
            {"proposal_id": "p1", "type": "ASSIGN_ARBITER"},
            {"proposal_id": "p2", "type": "CREATE", "title": "Add JWT auth"},
            {"proposal_id": "p2", "type": "REVIEW_RECEIVED", "agent": "codex", "vote": "APPROVE"},
            {"proposal_id": "p2", "type": "REVIEW_RECEIVED", "agent": "gemini", "vote": "REJECT"},
            {"proposal_id": "p2", "type": "IMPLEMENTATION_COMPLETE"},
            {"proposal_id": "p2", "type": "IMPLEMENTATION_COMPLETE"},
        ],
    )

    result = CliRunner().invoke(cli, ["replay", str(events_path)])

    assert result.exit_code == 0
    payload = json.loads(result.output)
    by_id = {item["proposal"]["id"]: item for item in payload["proposals"]}
    assert by_id["p1"]["proposal"]["status"] == "escalated"
    assert by_id["p1"]["proposal"]["iterations"] == 2
    assert by_id["p1"]["proposal"]["arbiter"] is None
    assert by_id["p1"]["directive"]["next_action"] == "escalate_human"
    assert by_id["p2"]["proposal"]["status"] == "implemented"
    assert by_id["p2"]["directive"]["next_action"] == "mark_complete"
    assert len(payload["ignored"]) == 2
    assert payload["stats"]["arbiter_invocations"] == 0


def test_cli_replay_streams_events(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    events_path = tmp_path / "events.jsonl"
    _write_events(
        events_path,
        [
            {"proposal_id": "p1", "type": "CREATE", "title": "Add JWT auth"},
            {"proposal_id": "p1", "type": "REVIEW_RECEIVED", "agent": "codex", "vote": "REVISE"},
        ],
    )

    result = CliRunner().invoke(cli, ["replay", str(events_path), "--events"])

    assert result.exit_code == 0
    assert '"event": "proposal_created"' in result.output
    assert '"event": "consensus_reached"' in result.output


def test_cli_replay_rejects_bad_lines(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    unknown = tmp_path / "unknown.jsonl"
    _write_events(unknown, [{"proposal_id": "p1", "type": "REVIEW_RECEIVED", "vote": "APPROVE"}])
    garbled = tmp_path / "garbled.jsonl"
    garbled.write_text("{not json\n", encoding="utf-8")

    runner = CliRunner()
    unknown_result = runner.invoke(cli, ["replay", str(unknown)])
    garbled_result = runner.invoke(cli, ["replay", str(garbled)])

    assert unknown_result.exit_code != 0
    assert "Proposal not found: p1" in unknown_result.output
    assert garbled_result.exit_code != 0
    assert "garbled.jsonl:1" in garbled_result.output
