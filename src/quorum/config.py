from __future__ import annotations

import json
import logging
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Literal

logger = logging.getLogger(__name__)

ConsensusMode = Literal["majority", "unanimous"]
ArbiterStrategy = Literal["round-robin", "least-used", "specific"]

CONSENSUS_MODES = ("majority", "unanimous")
ARBITER_STRATEGIES = ("round-robin", "least-used", "specific")

GENERAL_FOCUS = (
    "Focus on: code quality, maintainability, testing, error handling, "
    "documentation, best practices"
)


class ConfigError(RuntimeError):
    """Raised when the configuration cannot drive a review."""


@dataclass(frozen=True, slots=True)
class ExpertiseProfile:
    name: str
    keywords: tuple[str, ...] = ()
    file_patterns: tuple[str, ...] = ()
    focus: str = GENERAL_FOCUS
    description: str = ""

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> ExpertiseProfile:
        return cls(
            name=str(data.get("name", name)),
            keywords=tuple(str(item) for item in data.get("keywords", [])),
            file_patterns=tuple(str(item) for item in data.get("file_patterns", [])),
            focus=str(data.get("focus", GENERAL_FOCUS)),
            description=str(data.get("description", "")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "keywords": list(self.keywords),
            "file_patterns": list(self.file_patterns),
            "focus": self.focus,
        }


DEFAULT_EXPERTISE: tuple[ExpertiseProfile, ...] = (
    ExpertiseProfile(
        name="security",
        description="Security specialist for auth, crypto, and vulnerability review",
        keywords=(
            "auth", "authentication", "authorization", "password", "token", "jwt",
            "session", "security", "encrypt", "decrypt", "hash", "vulnerability",
            "injection", "xss", "csrf", "owasp",
        ),
        file_patterns=("**/auth/**", "**/security/**", "**/middleware/auth*"),
        focus=(
            "Focus on: authentication bypass, injection vulnerabilities, data exposure, "
            "session management, crypto weaknesses, OWASP top 10"
        ),
    ),
    ExpertiseProfile(
        name="database",
        description="Database specialist for data integrity and performance",
        keywords=(
            "sql", "database", "migration", "schema", "index", "transaction", "query",
            "orm", "model",
        ),
        file_patterns=("**/*.sql", "**/migrations/**", "**/models/**", "alembic/versions/**"),
        focus=(
            "Focus on: data integrity, transaction safety, index usage, N+1 queries, "
            "migration rollback safety, schema design"
        ),
    ),
    ExpertiseProfile(
        name="api",
        description="API design specialist for contracts and compatibility",
        keywords=(
            "api", "endpoint", "rest", "graphql", "route", "router", "controller",
            "versioning",
        ),
        file_patterns=("**/routers/**", "**/routes/**", "**/controllers/**", "**/api/**"),
        focus=(
            "Focus on: backwards compatibility, API versioning, error handling, "
            "input validation, rate limiting, documentation"
        ),
    ),
    ExpertiseProfile(
        name="performance",
        description="Performance specialist for optimization and scaling",
        keywords=(
            "performance", "cache", "caching", "optimize", "latency", "memory",
            "scaling", "rate limit", "throttle",
        ),
        file_patterns=("**/cache/**", "**/workers/**", "**/queues/**"),
        focus=(
            "Focus on: caching strategies, memory leaks, algorithmic complexity, "
            "database query optimization, async patterns"
        ),
    ),
    ExpertiseProfile(
        name="frontend",
        description="Frontend specialist for UI/UX and accessibility",
        keywords=(
            "react", "vue", "angular", "component", "ui", "ux", "accessibility", "a11y",
            "responsive", "css",
        ),
        file_patterns=(
            "**/components/**", "**/*.tsx", "**/*.jsx", "**/*.vue", "**/styles/**",
        ),
        focus=(
            "Focus on: accessibility (WCAG), responsive design, state management, "
            "component reusability, user experience"
        ),
    ),
    ExpertiseProfile(
        name="payments",
        description="Payments specialist for financial transactions",
        keywords=(
            "payment", "billing", "subscription", "stripe", "invoice", "transaction",
            "refund", "checkout",
        ),
        file_patterns=("**/payments/**", "**/billing/**", "**/checkout/**"),
        focus=(
            "Focus on: PCI compliance, idempotency, error recovery, audit trails, "
            "financial accuracy, fraud prevention"
        ),
    ),
    ExpertiseProfile(
        name="general",
        description="General code review for overall quality",
        focus=GENERAL_FOCUS,
    ),
)


def _default_expertise() -> dict[str, ExpertiseProfile]:
    return {profile.name: profile for profile in DEFAULT_EXPERTISE}


@dataclass(slots=True)
class AgentConfig:
    cli: str
    headless_flag: str = ""
    family: str = "anthropic"


def _default_agents() -> dict[str, AgentConfig]:
    return {
        "claude": AgentConfig(cli="claude", headless_flag="-p", family="anthropic"),
        "codex": AgentConfig(cli="codex", headless_flag="exec", family="openai"),
        "gemini": AgentConfig(cli="gemini", headless_flag="", family="google"),
    }


@dataclass(slots=True)
class RolesConfig:
    planner: str = "claude"
    reviewers: list[str] = field(default_factory=lambda: ["codex"])
    arbiters: list[str] = field(default_factory=lambda: ["gemini", "claude"])
    arbiter_strategy: ArbiterStrategy = "round-robin"
    implementer: str = "claude"


@dataclass(slots=True)
class RulesConfig:
    max_iterations: int = 2
    consensus_mode: ConsensusMode = "majority"
    auto_skip_trivial: bool = True
    trivial_patterns: list[str] = field(
        default_factory=lambda: [
            "typo", "typos", "comment", "comments", "readme", "documentation",
            "formatting", "style",
        ]
    )


@dataclass(slots=True)
class TriggersConfig:
    keywords: list[str] = field(
        default_factory=lambda: [
            "auth", "authentication", "authorization", "password", "token", "jwt",
            "session", "security", "encrypt", "decrypt", "hash", "sql", "database",
            "migration", "schema", "rate limit", "rate-limit", "throttle", "payment",
            "billing", "subscription", "api", "endpoint", "public", "delete", "remove",
            "drop",
        ]
    )
    file_patterns: list[str] = field(
        default_factory=lambda: [
            "**/auth/**", "**/routers/**", "**/models.py", "**/schemas.py",
            "alembic/versions/**", "**/middleware/**", "**/*.sql",
        ]
    )


@dataclass(slots=True)
class PathsConfig:
    base_dir: str = "docs/quorum"
    proposals_dir: str = "proposals"
    reviews_dir: str = "reviews"
    decisions_dir: str = "decisions"


@dataclass(slots=True)
class QuorumConfig:
    roles: RolesConfig = field(default_factory=RolesConfig)
    rules: RulesConfig = field(default_factory=RulesConfig)
    triggers: TriggersConfig = field(default_factory=TriggersConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    agents: dict[str, AgentConfig] = field(default_factory=_default_agents)
    expertise: dict[str, ExpertiseProfile] = field(default_factory=_default_expertise)

    @classmethod
    def default(cls) -> QuorumConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> QuorumConfig:
        config = cls(
            roles=RolesConfig(**data.get("roles", {})),
            rules=RulesConfig(**data.get("rules", {})),
            triggers=TriggersConfig(**data.get("triggers", {})),
            paths=PathsConfig(**data.get("paths", {})),
        )
        agents = data.get("agents")
        if agents:
            config.agents = {
                str(name): AgentConfig(**payload) for name, payload in agents.items()
            }
        expertise = data.get("expertise")
        if expertise:
            config.expertise = {
                str(name): ExpertiseProfile.from_dict(str(name), payload)
                for name, payload in expertise.items()
            }
        return config

    def to_dict(self) -> dict:
        return {
            "roles": {
                "planner": self.roles.planner,
                "reviewers": list(self.roles.reviewers),
                "arbiters": list(self.roles.arbiters),
                "arbiter_strategy": self.roles.arbiter_strategy,
                "implementer": self.roles.implementer,
            },
            "rules": {
                "max_iterations": self.rules.max_iterations,
                "consensus_mode": self.rules.consensus_mode,
                "auto_skip_trivial": self.rules.auto_skip_trivial,
                "trivial_patterns": list(self.rules.trivial_patterns),
            },
            "triggers": {
                "keywords": list(self.triggers.keywords),
                "file_patterns": list(self.triggers.file_patterns),
            },
            "paths": {
                "base_dir": self.paths.base_dir,
                "proposals_dir": self.paths.proposals_dir,
                "reviews_dir": self.paths.reviews_dir,
                "decisions_dir": self.paths.decisions_dir,
            },
            "agents": {
                name: {
                    "cli": agent.cli,
                    "headless_flag": agent.headless_flag,
                    "family": agent.family,
                }
                for name, agent in self.agents.items()
            },
            "expertise": {name: profile.to_dict() for name, profile in self.expertise.items()},
        }

    @property
    def profiles(self) -> list[ExpertiseProfile]:
        return list(self.expertise.values())

    def family_of(self, identity: str) -> str:
        """Identity-family of an agent; unconfigured identities form their own family."""
        agent = self.agents.get(identity)
        if agent is None:
            return identity
        return agent.family

    def validate(self) -> QuorumConfig:
        problems: list[str] = []
        if not str(self.roles.planner or "").strip():
            problems.append("roles.planner must name an agent identity.")
        reviewers = [item for item in self.roles.reviewers if str(item).strip()]
        if not reviewers:
            problems.append("roles.reviewers must list at least one agent identity.")
        if not self.roles.arbiters:
            problems.append("roles.arbiters must list at least one arbiter candidate.")
        if self.roles.arbiter_strategy not in ARBITER_STRATEGIES:
            problems.append(
                f"roles.arbiter_strategy '{self.roles.arbiter_strategy}' is not one of "
                + ", ".join(ARBITER_STRATEGIES)
            )
        if self.rules.consensus_mode not in CONSENSUS_MODES:
            problems.append(
                f"rules.consensus_mode '{self.rules.consensus_mode}' is not one of "
                + ", ".join(CONSENSUS_MODES)
            )
        if isinstance(self.rules.max_iterations, bool) or not isinstance(
            self.rules.max_iterations, int
        ) or self.rules.max_iterations <= 0:
            problems.append("rules.max_iterations must be a positive integer.")
        if problems:
            raise ConfigError(
                "Invalid quorum configuration:\n" + "\n".join(f"- {item}" for item in problems)
            )

        identities = {self.roles.planner, *self.roles.reviewers, *self.roles.arbiters}
        unknown = sorted(identity for identity in identities if identity not in self.agents)
        if unknown:
            logger.warning(
                "Role identities without an [agents] entry use their own name as family: %s",
                ", ".join(unknown),
            )
        return self


def replace_roles(
    config: QuorumConfig,
    *,
    planner: str | None = None,
    reviewers: list[str] | None = None,
) -> QuorumConfig:
    """Copy of ``config`` with per-task role overrides applied."""
    if planner is None and reviewers is None:
        return config
    roles = replace(
        config.roles,
        planner=planner if planner is not None else config.roles.planner,
        reviewers=list(reviewers) if reviewers is not None else list(config.roles.reviewers),
    )
    return replace(config, roles=roles)


def _toml_key(key: str) -> str:
    if key.replace("_", "").replace("-", "").isalnum():
        return key
    return json.dumps(key)


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        rendered = f"{value:.3f}".rstrip("0").rstrip(".")
        return rendered if rendered else "0"
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def dumps_toml(config: QuorumConfig) -> str:
    data = config.to_dict()
    lines: list[str] = []
    for section in ["roles", "rules", "triggers", "paths"]:
        lines.append(f"[{section}]")
        for key, value in data[section].items():
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")
    for section in ["agents", "expertise"]:
        for name, table in data[section].items():
            lines.append(f"[{section}.{_toml_key(name)}]")
            for key, value in table.items():
                lines.append(f"{key} = {_toml_value(value)}")
            lines.append("")
    return "\n".join(lines).strip() + "\n"


def load_config(path: Path) -> QuorumConfig:
    if not path.exists():
        return QuorumConfig.default()
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Could not parse {path}: {exc}") from exc
    try:
        return QuorumConfig.from_dict(data)
    except TypeError as exc:
        raise ConfigError(f"Unsupported setting in {path}: {exc}") from exc


def save_config(path: Path, config: QuorumConfig) -> None:
    path.write_text(dumps_toml(config), encoding="utf-8")
