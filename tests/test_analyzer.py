from quorum.analyzer import analyze_task, detect_consensus_mode
from quorum.config import QuorumConfig


def test_skip_wins_over_everything() -> None:
    result = analyze_task("Use quorum to add JWT auth", QuorumConfig.default(), skip=True)

    assert result.requires_review is False
    assert result.confidence == 1.0
    assert result.next_action == "implement"


def test_explicit_review_request() -> None:
    result = analyze_task("Use quorum for this refactor", QuorumConfig.default())

    assert result.requires_review is True
    assert result.reason == "Review explicitly requested"
    assert result.confidence == 1.0
    assert result.next_action == "create_proposal"


def test_trivial_task_is_skipped() -> None:
    result = analyze_task("Fix typo in README", QuorumConfig.default())

    assert result.requires_review is False
    assert result.confidence == 0.9
    assert result.reason == "Matched trivial patterns: [typo, readme]"


def test_trigger_keywords_outrank_trivial_patterns() -> None:
    result = analyze_task("Fix typo in auth docs", QuorumConfig.default())

    assert result.requires_review is True
    assert result.matched_keywords == ["auth"]
    assert result.confidence == 0.85
    assert "security implications" in result.instructions


def test_trivial_skip_can_be_disabled() -> None:
    config = QuorumConfig.default()
    config.rules.auto_skip_trivial = False

    result = analyze_task("Fix typo in README", config)

    assert result.requires_review is False
    assert result.confidence == 0.0
    assert result.reason == "No matching rules found"


def test_file_patterns_trigger_review() -> None:
    result = analyze_task("Update handler", QuorumConfig.default(), files=["app/routers/users.py"])

    assert result.requires_review is True
    assert result.matched_file_patterns == ["**/routers/**"]
    assert result.confidence == 0.8


def test_keywords_and_files_raise_confidence() -> None:
    result = analyze_task("Add JWT check", QuorumConfig.default(), files=["src/auth/jwt.py"])

    assert result.requires_review is True
    assert result.confidence == 0.95
    assert result.assignment is not None
    assert result.assignment.top_expertise == "security"


def test_force_requires_review() -> None:
    result = analyze_task("Rename variable in loop", QuorumConfig.default(), force=True)

    assert result.requires_review is True
    assert result.confidence == 1.0
    assert result.reason.startswith("Forced")


def test_consensus_mode_detection_and_override() -> None:
    config = QuorumConfig.default()

    detected = analyze_task("Use quorum, we need all agents to agree", config)
    explicit = analyze_task(
        "Use quorum, we need all agents to agree", config, consensus_mode="majority"
    )

    assert detected.consensus_mode == "unanimous"
    assert explicit.consensus_mode == "majority"
    assert detect_consensus_mode("Simple majority is fine", "unanimous") == "majority"
    assert detect_consensus_mode("Ship it", "unanimous") == "unanimous"


def test_role_overrides_apply_to_assignment() -> None:
    config = QuorumConfig.default()

    result = analyze_task("Add password hashing", config, planner="codex", reviewer="gemini")

    assert result.assignment is not None
    assert result.assignment.planner.identity == "codex"
    assert result.assignment.reviewer_identities == ["gemini"]
    assert result.assignment.arbiter is not None
    assert result.assignment.arbiter.identity == "claude"
    assert config.roles.planner == "claude"


def test_result_serializes_matched_rules() -> None:
    payload = analyze_task("Add JWT check", QuorumConfig.default()).to_dict()

    assert payload["matched_rules"] == {"keywords": ["jwt"], "file_patterns": []}
    assert payload["expertise"][0]["expertise"] == "security"
    assert payload["assignment"]["planner"]["identity"] == "claude"
