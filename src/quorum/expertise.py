from __future__ import annotations

import fnmatch
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from quorum.config import ExpertiseProfile

KEYWORD_WEIGHT = 2
FILE_PATTERN_WEIGHT = 1
GENERAL_EXPERTISE = "general"


@dataclass(frozen=True, slots=True)
class ExpertiseMatch:
    expertise: str
    score: int
    matched_keywords: tuple[str, ...] = ()
    matched_file_patterns: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "expertise": self.expertise,
            "score": self.score,
            "matched_keywords": list(self.matched_keywords),
            "matched_file_patterns": list(self.matched_file_patterns),
        }


def matches_glob(path: str, pattern: str) -> bool:
    """Glob match where a leading ``**/`` may also match zero directories."""
    normalized = path.replace("\\", "/")
    if normalized.startswith("./"):
        normalized = normalized[2:]
    if fnmatch.fnmatchcase(normalized, pattern):
        return True
    if pattern.startswith("**/"):
        return fnmatch.fnmatchcase(normalized, pattern[3:])
    return False


def matched_patterns(files: Iterable[str], patterns: Iterable[str]) -> list[str]:
    file_list = [str(item) for item in files]
    if not file_list:
        return []
    return [
        pattern
        for pattern in patterns
        if any(matches_glob(file_path, pattern) for file_path in file_list)
    ]


def matched_keywords(task: str, keywords: Iterable[str]) -> list[str]:
    task_lower = task.lower()
    return [keyword for keyword in keywords if keyword.lower() in task_lower]


def match_expertise(
    task: str,
    files: Iterable[str],
    profile: ExpertiseProfile,
) -> ExpertiseMatch:
    keywords = matched_keywords(task, profile.keywords)
    patterns = matched_patterns(files, profile.file_patterns)
    score = KEYWORD_WEIGHT * len(keywords) + FILE_PATTERN_WEIGHT * len(patterns)
    return ExpertiseMatch(
        expertise=profile.name,
        score=score,
        matched_keywords=tuple(keywords),
        matched_file_patterns=tuple(patterns),
    )


def classify_task(
    task: str,
    files: Iterable[str] | None,
    profiles: Iterable[ExpertiseProfile] | Mapping[str, ExpertiseProfile],
) -> list[ExpertiseMatch]:
    """Rank expertise profiles for a task, best first.

    Ties keep declaration order. When nothing scores, a single neutral
    ``general`` match with score 0 is returned.
    """
    file_list = list(files or [])
    ordered = profiles.values() if isinstance(profiles, Mapping) else profiles
    scored = [match_expertise(task, file_list, profile) for profile in ordered]
    ranked = sorted((match for match in scored if match.score > 0), key=lambda m: -m.score)
    if not ranked:
        return [ExpertiseMatch(expertise=GENERAL_EXPERTISE, score=0)]
    return ranked
