"""Decide whether a task needs multi-agent review and who should handle it."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from quorum.config import ConsensusMode, QuorumConfig, replace_roles
from quorum.expertise import ExpertiseMatch, classify_task, matched_keywords, matched_patterns
from quorum.roles import ArbitrationHistory, RoleAssignment, assign_roles

UNANIMOUS_PHRASES = (
    "all agree",
    "all to agree",
    "must all agree",
    "everyone agree",
    "unanimous",
    "all agents agree",
    "all agents to agree",
    "full agreement",
    "complete agreement",
    "all must approve",
    "everyone must approve",
    "all reviewers agree",
    "need all to agree",
    "require unanimous",
    "require all",
)
MAJORITY_PHRASES = (
    "majority",
    "majority vote",
    "majority wins",
    "most agree",
    "majority rules",
    "simple majority",
)
REVIEW_REQUEST_PHRASES = (
    "use quorum",
    "using quorum",
    "with quorum",
    "quorum review",
    "multi-agent review",
    "multi agent review",
    "get review",
    "need review",
    "want review",
    "review this",
    "review the",
    "code review",
)
TOPIC_KEYWORDS: tuple[tuple[str, frozenset[str]], ...] = (
    (
        "security implications",
        frozenset(
            {
                "auth", "authentication", "authorization", "password", "token", "jwt",
                "session", "security", "encrypt", "decrypt", "hash",
            }
        ),
    ),
    ("performance impact", frozenset({"rate limit", "rate-limit", "throttle", "performance"})),
    ("data integrity", frozenset({"sql", "database", "migration", "schema"})),
    ("API contract changes", frozenset({"api", "endpoint", "public"})),
    ("data loss risks", frozenset({"delete", "remove", "drop"})),
    ("financial implications", frozenset({"payment", "billing", "subscription"})),
)


@dataclass(slots=True)
class AnalysisResult:
    requires_review: bool
    reason: str
    confidence: float
    consensus_mode: ConsensusMode
    instructions: str
    matched_keywords: list[str] = field(default_factory=list)
    matched_file_patterns: list[str] = field(default_factory=list)
    matches: list[ExpertiseMatch] = field(default_factory=list)
    assignment: RoleAssignment | None = None
    next_action: str = "create_proposal"

    def to_dict(self) -> dict[str, Any]:
        return {
            "requires_review": self.requires_review,
            "reason": self.reason,
            "confidence": self.confidence,
            "consensus_mode": self.consensus_mode,
            "matched_rules": {
                "keywords": list(self.matched_keywords),
                "file_patterns": list(self.matched_file_patterns),
            },
            "expertise": [match.to_dict() for match in self.matches],
            "assignment": self.assignment.to_dict() if self.assignment else None,
            "next_action": self.next_action,
            "instructions": self.instructions,
        }


def detect_consensus_mode(task: str, default: ConsensusMode) -> ConsensusMode:
    lower = task.lower()
    if any(phrase in lower for phrase in UNANIMOUS_PHRASES):
        return "unanimous"
    if any(phrase in lower for phrase in MAJORITY_PHRASES):
        return "majority"
    return default


def _review_topics(keywords: Iterable[str]) -> list[str]:
    found = set(keywords)
    return [topic for topic, members in TOPIC_KEYWORDS if found & members]


def _proposal_instructions(keywords: list[str]) -> str:
    topics = _review_topics(keywords)
    if topics:
        return (
            f"Create a proposal document covering: {', '.join(topics)}, "
            "and alternative approaches."
        )
    return (
        "Create a proposal document covering the implementation approach, "
        "potential risks, and alternatives."
    )


def analyze_task(
    task: str,
    config: QuorumConfig,
    *,
    files: Iterable[str] | None = None,
    force: bool = False,
    skip: bool = False,
    consensus_mode: ConsensusMode | None = None,
    planner: str | None = None,
    reviewer: str | None = None,
    history: ArbitrationHistory | None = None,
) -> AnalysisResult:
    file_list = list(files or [])
    lower = task.lower()
    mode = consensus_mode or detect_consensus_mode(task, config.rules.consensus_mode)

    effective = replace_roles(
        config,
        planner=planner,
        reviewers=[reviewer] if reviewer else None,
    )
    matches = classify_task(task, file_list, effective.expertise)
    assignment = assign_roles(matches, effective, history)

    def _result(
        requires_review: bool,
        reason: str,
        confidence: float,
        instructions: str,
        keywords: list[str] | None = None,
        patterns: list[str] | None = None,
    ) -> AnalysisResult:
        return AnalysisResult(
            requires_review=requires_review,
            reason=reason,
            confidence=confidence,
            consensus_mode=mode,
            instructions=instructions,
            matched_keywords=keywords or [],
            matched_file_patterns=patterns or [],
            matches=matches,
            assignment=assignment,
            next_action="create_proposal" if requires_review else "implement",
        )

    if skip:
        return _result(
            False,
            "Explicitly skipped",
            1.0,
            "Review skipped. Proceed with implementation.",
        )

    if any(phrase in lower for phrase in REVIEW_REQUEST_PHRASES):
        return _result(
            True,
            "Review explicitly requested",
            1.0,
            "Review requested. Create a proposal document covering the task, approach, "
            "potential risks, and alternatives.",
        )

    keywords = matched_keywords(task, effective.triggers.keywords)
    # Trigger keywords outrank trivial patterns.
    if not force and not keywords and effective.rules.auto_skip_trivial:
        trivial = matched_keywords(task, effective.rules.trivial_patterns)
        if trivial:
            return _result(
                False,
                f"Matched trivial patterns: [{', '.join(trivial)}]",
                0.9,
                "Task appears trivial. Proceed without review.",
            )

    patterns = matched_patterns(file_list, effective.triggers.file_patterns)
    requires_review = force or bool(keywords) or bool(patterns)

    reasons: list[str] = []
    if force:
        reasons.append("Forced")
    if keywords:
        reasons.append(f"Matched keywords: [{', '.join(keywords)}]")
    if patterns:
        reasons.append(f"Matched file patterns: [{', '.join(patterns)}]")

    if force:
        confidence = 1.0
    elif keywords and patterns:
        confidence = 0.95
    elif keywords:
        confidence = 0.85
    elif patterns:
        confidence = 0.8
    else:
        confidence = 0.0

    if requires_review:
        instructions = _proposal_instructions(keywords)
    else:
        instructions = "No review required. Proceed with implementation."

    return _result(
        requires_review,
        "; ".join(reasons) if reasons else "No matching rules found",
        confidence,
        instructions,
        keywords,
        patterns,
    )
