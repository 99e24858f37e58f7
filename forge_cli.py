"""Browser Forge command-line interface.

Entry point for mining telemetry into candidates, reviewing them, generating
proposals and handing approved proposals to the skill-pack gateway.
"""

from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path
from typing import Any, List

import schedule
from dotenv import load_dotenv
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from browser_forge.config import ForgeConfig, load_config
from browser_forge.errors import ForgeError, NotFoundError
from browser_forge.gateway import SkillPackGateway
from browser_forge.health_check import main as health_main
from browser_forge.miner import CandidateAggregator
from browser_forge.models import ChangeProposal
from browser_forge.notifier import notify
from browser_forge.proposal_cache import ProposalCache
from browser_forge.service import ForgeService
from browser_forge.store import CandidateStore
from browser_forge.summarizer import run_review_summary
from browser_forge.telemetry import load_telemetry


console = Console()


def _configure_logging() -> ForgeConfig:
    """Load .env and config, then configure loguru."""
    load_dotenv()
    config = load_config()
    logger.remove()
    logger.add(sys.stderr, level=config.log_level)
    return config


def _build_service(config: ForgeConfig) -> ForgeService:
    store = CandidateStore(config.state_path)
    store.load()
    cache = ProposalCache(config.proposals_path)
    cache.load()
    return ForgeService(
        store,
        cache=cache,
        aggregator=CandidateAggregator(min_usage=config.min_usage),
        notifier=notify,
    )


def _print_proposal(proposal: ChangeProposal) -> None:
    console.print(f"[bold]{escape(proposal.summary)}[/bold]")
    console.print(
        f"Skill: [cyan]{proposal.new_skill_id}[/cyan]"
        + (f" (updates [cyan]{proposal.target_skill_id}[/cyan])" if proposal.target_skill_id else " (new)")
    )

    if proposal.selector_changes:
        table = Table(title="Selector changes", show_header=True, header_style="bold magenta")
        table.add_column("Action")
        table.add_column("Name")
        table.add_column("Selector")
        table.add_column("Uses", justify="right")
        table.add_column("Success", justify="right")
        for change in proposal.selector_changes:
            table.add_row(
                change.action.value,
                escape(change.name),
                escape(change.selector),
                str(change.usage_count),
                f"{change.success_rate:.0%}",
            )
        console.print(table)

    if proposal.workflow_changes:
        table = Table(title="Workflow changes", show_header=True, header_style="bold magenta")
        table.add_column("Action")
        table.add_column("Name")
        table.add_column("Steps", justify="right")
        table.add_column("Success", justify="right")
        table.add_column("Failure patterns")
        for change in proposal.workflow_changes:
            table.add_row(
                change.action.value,
                escape(change.name),
                str(len(change.steps)),
                f"{change.success_rate:.0%}",
                escape(", ".join(change.failure_patterns)) or "-",
            )
        console.print(table)


def _run_mine(service: ForgeService, paths: List[Path]) -> None:
    items: List[Any] = []
    for path in paths:
        try:
            items.extend(load_telemetry(path))
        except (OSError, ForgeError):
            logger.exception("Failed to load telemetry from {path}", path=path)
            continue
    result = service.mine(items)
    console.print(
        f"[bold green]Mined[/bold green] {len(result.candidates)} candidate(s) from "
        f"{len(paths)} file(s) ({result.skipped} malformed record(s) skipped, "
        f"{result.already_ingested} already ingested, "
        f"{result.dropped_groups} group(s) below threshold)."
    )


def cmd_mine(args: argparse.Namespace, config: ForgeConfig) -> int:
    """Handle the `mine` command."""
    paths = [Path(p) for p in args.paths] or config.telemetry_paths
    if not paths:
        console.print(
            "[yellow]No telemetry files given and none configured under 'telemetry_paths'.[/yellow]"
        )
        return 0

    service = _build_service(config)
    if args.daemon:
        console.print(
            f"[bold]Mining every {config.mine_interval_minutes} minute(s).[/bold] "
            "Press Ctrl+C to stop."
        )
        _run_mine(service, paths)
        schedule.every(config.mine_interval_minutes).minutes.do(_run_mine, service, paths)
        while True:
            schedule.run_pending()
            time.sleep(1)

    _run_mine(service, paths)
    return 0


def cmd_list(_args: argparse.Namespace, config: ForgeConfig) -> int:
    """Handle the `list` command."""
    candidates = _build_service(config).list_candidates()
    if not candidates:
        console.print("[yellow]No candidates yet. Run `mine` first.[/yellow]")
        return 0

    table = Table(title="Forge Candidates", show_header=True, header_style="bold magenta")
    table.add_column("ID")
    table.add_column("Source")
    table.add_column("Domain / Skill")
    table.add_column("Selectors", justify="right")
    table.add_column("Workflows", justify="right")
    table.add_column("Status")
    for candidate in candidates:
        table.add_row(
            candidate.id,
            candidate.source.value,
            candidate.target_skill_id or candidate.virtual_domain or "-",
            str(len(candidate.selectors)),
            str(len(candidate.workflows)),
            candidate.status.value,
        )
    console.print(table)
    return 0


def cmd_show(args: argparse.Namespace, config: ForgeConfig) -> int:
    """Handle the `show` command."""
    candidate = _build_service(config).get_candidate(args.candidate_id)

    console.print(f"[bold]{candidate.id}[/bold] [dim]({candidate.source.value}, {candidate.status.value})[/dim]")
    if candidate.virtual_domain:
        console.print(f"Domain: [cyan]{candidate.virtual_domain}[/cyan]")
    if candidate.target_skill_id:
        console.print(f"Target skill: [cyan]{candidate.target_skill_id}[/cyan]")
    if candidate.url_sample:
        console.print(f"URL sample: {candidate.url_sample}")
    if candidate.notes:
        console.print(f"Notes: [italic]{escape(candidate.notes)}[/italic]")

    table = Table(title="Selectors", show_header=True, header_style="bold magenta")
    table.add_column("Selector")
    table.add_column("Uses", justify="right")
    table.add_column("Success", justify="right")
    table.add_column("Last seen")
    for stat in candidate.selectors:
        table.add_row(
            escape(stat.selector),
            str(stat.usage_count),
            f"{stat.success_rate:.0%}",
            stat.last_seen_at.isoformat() if stat.last_seen_at else "-",
        )
    console.print(table)

    table = Table(title="Workflows", show_header=True, header_style="bold magenta")
    table.add_column("Name")
    table.add_column("Runs", justify="right")
    table.add_column("Success", justify="right")
    table.add_column("Failure patterns")
    for workflow in candidate.workflows:
        table.add_row(
            escape(workflow.name),
            str(workflow.attempts),
            f"{workflow.success_rate:.0%}",
            escape(", ".join(workflow.failure_patterns)) or "-",
        )
    console.print(table)
    return 0


def cmd_propose(args: argparse.Namespace, config: ForgeConfig) -> int:
    """Handle the `propose` command."""
    proposal = _build_service(config).generate_proposal(args.candidate_id)
    _print_proposal(proposal)
    return 0


def cmd_approve(args: argparse.Namespace, config: ForgeConfig) -> int:
    """Handle the `approve` command."""
    candidate = _build_service(config).approve(args.candidate_id)
    console.print(f"[green]Approved[/green] [cyan]{candidate.id}[/cyan].")
    return 0


def cmd_reject(args: argparse.Namespace, config: ForgeConfig) -> int:
    """Handle the `reject` command."""
    candidate = _build_service(config).reject(args.candidate_id)
    console.print(f"[red]Rejected[/red] [cyan]{candidate.id}[/cyan].")
    return 0


def cmd_apply(args: argparse.Namespace, config: ForgeConfig) -> int:
    """Handle the `apply` command: merge or preview the reviewed proposal via the gateway."""
    service = _build_service(config)
    gateway = SkillPackGateway(config.skills_dir)

    try:
        proposal = service.get_cached_proposal(args.candidate_id)
    except NotFoundError as exc:
        if exc.kind != "proposal":
            raise
        console.print(
            f"[yellow]No proposal for [cyan]{escape(args.candidate_id)}[/cyan] yet. "
            "Run `propose` and review it first.[/yellow]"
        )
        return 1
    console.print(f"[bold]{escape(proposal.summary)}[/bold]")
    result = service.apply_proposal(args.candidate_id, gateway, preview=args.preview)

    if args.preview:
        if result.preview_diff:
            console.print(result.preview_diff, markup=False, highlight=False)
        else:
            console.print("[dim]No changes.[/dim]")
        return 0
    console.print(
        f"[bold green]Merged[/bold green] [cyan]{args.candidate_id}[/cyan] "
        f"into skill [cyan]{result.skill_id}[/cyan] at {result.skill_path}"
    )
    return 0


def cmd_summary(_args: argparse.Namespace, config: ForgeConfig) -> int:
    """Handle the `summary` command."""
    console.print("[bold]Sending review summary…[/bold]")
    payload = run_review_summary(_build_service(config).store)
    console.print(
        f"{payload['pending']} awaiting review, {payload['approved']} approved, "
        f"{payload['total']} total."
    )
    return 0


def cmd_health(_args: argparse.Namespace, _config: ForgeConfig) -> int:
    """Handle the `health` command."""
    return health_main()


def build_parser() -> argparse.ArgumentParser:
    """Build and return the top-level argument parser."""
    parser = argparse.ArgumentParser(
        prog="browser_forge",
        description="Browser Forge: mine automation telemetry into reviewable skill proposals.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # mine
    mine_parser = subparsers.add_parser(
        "mine",
        help="Aggregate telemetry files into candidates (default: configured telemetry_paths).",
    )
    mine_parser.add_argument("paths", nargs="*", help="Telemetry files (.jsonl, .json, .yaml).")
    mine_parser.add_argument(
        "--daemon",
        action="store_true",
        help="Keep mining on the configured interval using the schedule library.",
    )
    mine_parser.set_defaults(func=cmd_mine)

    # list
    list_parser = subparsers.add_parser("list", help="List all candidates.")
    list_parser.set_defaults(func=cmd_list)

    # show / propose / approve / reject / apply take a candidate id
    for name, func, help_text in (
        ("show", cmd_show, "Show one candidate's selectors and workflows."),
        ("propose", cmd_propose, "Synthesize the change proposal for a candidate."),
        ("approve", cmd_approve, "Approve a candidate for merging."),
        ("reject", cmd_reject, "Reject a candidate."),
        ("apply", cmd_apply, "Merge an approved candidate's proposal into its skill pack."),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("candidate_id", help="Candidate id, e.g. 'forge-shadow-shop-example-com'.")
        sub.set_defaults(func=func)
        if name == "apply":
            sub.add_argument(
                "--preview",
                action="store_true",
                help="Print the skill-pack diff without writing anything.",
            )

    # summary
    summary_parser = subparsers.add_parser(
        "summary",
        help="Send the review-queue report via Telegram.",
    )
    summary_parser.set_defaults(func=cmd_summary)

    # health
    health_parser = subparsers.add_parser("health", help="Check configuration and directories.")
    health_parser.set_defaults(func=cmd_health)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the Browser Forge CLI."""
    config = _configure_logging()
    parser = build_parser()
    args = parser.parse_args(argv)
    func = getattr(args, "func", None)
    if func is None:
        parser.print_help()
        return 1
    try:
        return int(func(args, config))
    except ForgeError as exc:
        logger.debug("Command {cmd} failed: {err}", cmd=args.command, err=exc)
        console.print(f"[red]{exc}[/red]")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
