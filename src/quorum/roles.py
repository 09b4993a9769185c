from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from quorum.config import ConfigError, ExpertiseProfile, QuorumConfig
from quorum.expertise import GENERAL_EXPERTISE, ExpertiseMatch
from quorum.models import Proposal

logger = logging.getLogger(__name__)

ArbitrationHistory = Mapping[str, int]


@dataclass(frozen=True, slots=True)
class AgentAssignment:
    identity: str
    role: str
    expertise: str
    focus: str
    family: str
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "role": self.role,
            "expertise": self.expertise,
            "focus": self.focus,
            "family": self.family,
            "reason": self.reason,
        }


@dataclass(frozen=True, slots=True)
class ArbiterSelection:
    identity: str
    strategy: str
    excluded_families: tuple[str, ...] = ()
    fallback: bool = False
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "strategy": self.strategy,
            "excluded_families": list(self.excluded_families),
            "fallback": self.fallback,
            "reason": self.reason,
        }


@dataclass(frozen=True, slots=True)
class RoleAssignment:
    planner: AgentAssignment
    reviewers: tuple[AgentAssignment, ...]
    arbiter: AgentAssignment | None
    arbiter_selection: ArbiterSelection | None
    matches: tuple[ExpertiseMatch, ...]

    @property
    def top_expertise(self) -> str:
        return self.matches[0].expertise if self.matches else GENERAL_EXPERTISE

    @property
    def reviewer_identities(self) -> list[str]:
        return [item.identity for item in self.reviewers]

    def to_dict(self) -> dict[str, Any]:
        return {
            "top_expertise": self.top_expertise,
            "focus": self.planner.focus,
            "planner": self.planner.to_dict(),
            "reviewers": [item.to_dict() for item in self.reviewers],
            "arbiter": self.arbiter.to_dict() if self.arbiter else None,
            "arbiter_selection": (
                self.arbiter_selection.to_dict() if self.arbiter_selection else None
            ),
            "matches": [match.to_dict() for match in self.matches],
        }


def _require_roles(config: QuorumConfig) -> None:
    if not str(config.roles.planner or "").strip():
        raise ConfigError("No planner identity configured (roles.planner).")
    if not [item for item in config.roles.reviewers if str(item).strip()]:
        raise ConfigError("No reviewer identities configured (roles.reviewers).")


def _general_profile(config: QuorumConfig) -> ExpertiseProfile:
    return config.expertise.get(GENERAL_EXPERTISE) or ExpertiseProfile(name=GENERAL_EXPERTISE)


def _pick_candidate(
    eligible: Sequence[str],
    strategy: str,
    history: ArbitrationHistory,
) -> str:
    if strategy in {"round-robin", "least-used"}:
        # min() keeps the first configured candidate on ties.
        return min(eligible, key=lambda identity: int(history.get(identity, 0)))
    return eligible[0]


def select_arbiter(
    config: QuorumConfig,
    history: ArbitrationHistory | None = None,
    exclude_families: Iterable[str] = (),
) -> ArbiterSelection:
    """Choose an arbiter outside the families that took part in a dispute.

    ``exclude_families`` is ordered oldest to newest; the last entry belongs to
    the most recent dispute-contributing reviewer. All listed families are
    avoided when possible, then only the most recent one. With no eligible
    candidate left the first configured arbiter is returned as a fallback.
    """
    candidates = [item for item in config.roles.arbiters if str(item).strip()]
    if not candidates:
        raise ConfigError("No arbiter candidates configured (roles.arbiters).")
    counts = history or {}
    strategy = config.roles.arbiter_strategy
    # Deduplicate keeping each family's latest position.
    excluded = tuple(reversed(dict.fromkeys(reversed(list(exclude_families)))))

    tiers: list[tuple[str, ...]] = [excluded]
    if len(excluded) > 1:
        tiers.append((excluded[-1],))

    for tier in tiers:
        eligible = [item for item in candidates if config.family_of(item) not in tier]
        if not eligible:
            continue
        identity = _pick_candidate(eligible, strategy, counts)
        return ArbiterSelection(
            identity=identity,
            strategy=strategy,
            excluded_families=tier,
            reason=(
                f"Selected {identity} via {strategy} from "
                f"{len(eligible)} eligible candidate(s)"
            ),
        )

    identity = candidates[0]
    logger.warning(
        "No arbiter candidate outside families %s; falling back to %s",
        ", ".join(excluded),
        identity,
    )
    return ArbiterSelection(
        identity=identity,
        strategy=strategy,
        excluded_families=excluded,
        fallback=True,
        reason=f"No candidate outside {', '.join(excluded)}; using first configured arbiter",
    )


def assign_roles(
    matches: Sequence[ExpertiseMatch],
    config: QuorumConfig,
    history: ArbitrationHistory | None = None,
    *,
    dispute_reviewers: Sequence[str] | None = None,
) -> RoleAssignment:
    _require_roles(config)
    ranked = list(matches) or [ExpertiseMatch(expertise=GENERAL_EXPERTISE, score=0)]
    general = _general_profile(config)
    top_profile = config.expertise.get(ranked[0].expertise, general)

    planner_identity = config.roles.planner
    planner = AgentAssignment(
        identity=planner_identity,
        role="planner",
        expertise=top_profile.name,
        focus=top_profile.focus,
        family=config.family_of(planner_identity),
        reason=f"Using {planner_identity} with {top_profile.name} expertise focus",
    )

    reviewers: list[AgentAssignment] = []
    for index, identity in enumerate(config.roles.reviewers):
        match = ranked[min(index, len(ranked) - 1)]
        profile = config.expertise.get(match.expertise, general)
        reviewers.append(
            AgentAssignment(
                identity=identity,
                role="reviewer",
                expertise=profile.name,
                focus=profile.focus,
                family=config.family_of(identity),
                reason=f"Using {identity} with {profile.name} expertise focus",
            )
        )

    if dispute_reviewers:
        families = [config.family_of(identity) for identity in dispute_reviewers]
    else:
        families = [config.family_of(config.roles.reviewers[-1])]
    selection = select_arbiter(config, history, families)
    arbiter = AgentAssignment(
        identity=selection.identity,
        role="arbiter",
        expertise=general.name,
        focus=general.focus,
        family=config.family_of(selection.identity),
        reason=selection.reason,
    )

    return RoleAssignment(
        planner=planner,
        reviewers=tuple(reviewers),
        arbiter=arbiter,
        arbiter_selection=selection,
        matches=tuple(ranked),
    )


def tally_arbitrations(proposals: Iterable[Proposal]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for proposal in proposals:
        if proposal.arbiter:
            counts[proposal.arbiter] = counts.get(proposal.arbiter, 0) + 1
    return counts
