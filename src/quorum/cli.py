from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import click

from quorum.analyzer import analyze_task
from quorum.config import CONSENSUS_MODES, ConfigError, QuorumConfig, load_config, save_config
from quorum.consensus import evaluate_consensus
from quorum.lifecycle import LifecycleEngine, TransitionResult, UnknownProposalError

logger = logging.getLogger(__name__)

REPLAY_EVENT_TYPES = (
    "CREATE",
    "REVIEW_RECEIVED",
    "REVISED",
    "ASSIGN_ARBITER",
    "ARBITER_DECISION",
    "HUMAN_DECISION",
    "IMPLEMENTATION_COMPLETE",
)


def _resolve_config_path(repo_root: Path, config_value: str) -> Path:
    config_path = Path(config_value)
    if not config_path.is_absolute():
        config_path = repo_root / config_path
    return config_path.resolve()


def _load_valid_config(config_value: str) -> tuple[Path, QuorumConfig]:
    config_path = _resolve_config_path(Path.cwd().resolve(), config_value)
    try:
        config = load_config(config_path).validate()
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    return config_path, config


def _parse_vote(raw: str, index: int) -> tuple[str, str]:
    if "=" in raw:
        agent, _, vote = raw.partition("=")
        return agent.strip() or f"voter-{index}", vote
    return f"voter-{index}", raw


def _echo_event(event: dict[str, Any]) -> None:
    click.echo(json.dumps(event, ensure_ascii=False), err=True)


def _apply_replay_event(
    engine: LifecycleEngine,
    payload: dict[str, Any],
) -> TransitionResult | None:
    event_type = str(payload.get("type", "")).upper()
    proposal_id = payload.get("proposal_id")
    if not proposal_id:
        raise ValueError("missing 'proposal_id'")
    if event_type not in REPLAY_EVENT_TYPES:
        raise ValueError(f"unknown event type '{payload.get('type')}'")

    if event_type == "CREATE":
        reviewers = payload.get("reviewers")
        return engine.create_proposal(
            proposal_id,
            title=payload.get("title"),
            content=str(payload.get("content", "")),
            planner=payload.get("planner"),
            reviewers=list(reviewers) if reviewers is not None else None,
        )
    if event_type == "REVIEW_RECEIVED":
        return engine.record_review(
            proposal_id,
            str(payload.get("agent", "")),
            str(payload.get("vote", "")),
            content=str(payload.get("content", "")),
        )
    if event_type == "REVISED":
        return engine.record_revision(proposal_id, payload.get("content"))
    if event_type == "ASSIGN_ARBITER":
        engine.assign_arbiter(proposal_id)
        return None
    if event_type == "ARBITER_DECISION":
        return engine.record_arbiter_decision(
            proposal_id,
            str(payload.get("vote", "")),
            arbiter=payload.get("arbiter"),
        )
    if event_type == "HUMAN_DECISION":
        return engine.record_human_decision(proposal_id, bool(payload.get("approved")))
    return engine.mark_implemented(proposal_id)


@click.group()
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """Quorum multi-agent proposal review CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command("init")
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing config.")
@click.option("--config", "config_value", default="quorum.toml", show_default=True)
def init_command(force: bool, config_value: str) -> None:
    repo_root = Path.cwd().resolve()
    config_path = _resolve_config_path(repo_root, config_value)
    if config_path.exists() and not force:
        raise click.ClickException(f"{config_path} already exists (use --force to overwrite)")
    config = QuorumConfig.default()
    save_config(config_path, config)

    click.echo(f"Initialized Quorum in {repo_root}")
    click.echo(f"Config: {config_path}")
    click.echo(f"Planner: {config.roles.planner}")
    click.echo(f"Reviewers: {', '.join(config.roles.reviewers)}")


@cli.command("check")
@click.option("--config", "config_value", default="quorum.toml", show_default=True)
def check_command(config_value: str) -> None:
    config_path, config = _load_valid_config(config_value)
    source = str(config_path) if config_path.exists() else "built-in defaults"
    click.echo(f"Configuration OK ({source})")
    click.echo(f"Planner: {config.roles.planner}")
    click.echo(f"Reviewers: {', '.join(config.roles.reviewers)}")
    click.echo(
        f"Arbiters: {', '.join(config.roles.arbiters)} ({config.roles.arbiter_strategy})"
    )
    click.echo(
        f"Consensus: {config.rules.consensus_mode}, "
        f"max {config.rules.max_iterations} iteration(s)"
    )


@cli.command("analyze")
@click.argument("task")
@click.option("--file", "-f", "files", multiple=True, help="File the task touches.")
@click.option("--force", is_flag=True, default=False)
@click.option("--skip", is_flag=True, default=False)
@click.option("--mode", type=click.Choice(CONSENSUS_MODES), default=None)
@click.option("--planner", default=None)
@click.option("--reviewer", default=None)
@click.option("--config", "config_value", default="quorum.toml", show_default=True)
def analyze_command(
    task: str,
    files: tuple[str, ...],
    force: bool,
    skip: bool,
    mode: str | None,
    planner: str | None,
    reviewer: str | None,
    config_value: str,
) -> None:
    _, config = _load_valid_config(config_value)
    try:
        result = analyze_task(
            task,
            config,
            files=files,
            force=force,
            skip=skip,
            consensus_mode=mode,  # type: ignore[arg-type]
            planner=planner,
            reviewer=reviewer,
        )
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))


@cli.command("consensus")
@click.argument("votes", nargs=-1, required=True)
@click.option("--mode", type=click.Choice(CONSENSUS_MODES), default="majority", show_default=True)
def consensus_command(votes: tuple[str, ...], mode: str) -> None:
    parsed = [_parse_vote(raw, index) for index, raw in enumerate(votes, start=1)]
    try:
        result = evaluate_consensus(parsed, mode)  # type: ignore[arg-type]
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))


@cli.command("replay")
@click.argument("events_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--events",
    "stream_events",
    is_flag=True,
    default=False,
    help="Stream workflow events as JSON lines on stderr.",
)
@click.option("--config", "config_value", default="quorum.toml", show_default=True)
def replay_command(events_file: Path, stream_events: bool, config_value: str) -> None:
    _, config = _load_valid_config(config_value)
    ignored: list[dict[str, Any]] = []
    engine = LifecycleEngine(
        config,
        event_hook=_echo_event if stream_events else None,
        ignored_hook=lambda result: ignored.append(result.to_dict()),
    )

    lines = events_file.read_text(encoding="utf-8").splitlines()
    for line_number, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        try:
            payload = json.loads(line)
            if not isinstance(payload, dict):
                raise ValueError("event must be a JSON object")
            _apply_replay_event(engine, payload)
        except (ValueError, UnknownProposalError) as exc:
            raise click.ClickException(f"{events_file}:{line_number}: {exc}") from exc

    proposals = []
    for proposal in engine.list_proposals():
        proposals.append(
            {
                "proposal": proposal.to_dict(),
                "directive": engine.next_directive(proposal.id).to_dict(),
            }
        )
    logger.debug("Replayed %d line(s) from %s", len(lines), events_file)
    click.echo(
        json.dumps(
            {"proposals": proposals, "ignored": ignored, "stats": engine.stats()},
            ensure_ascii=False,
            indent=2,
        )
    )
