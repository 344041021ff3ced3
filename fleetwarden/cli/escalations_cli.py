#!/usr/bin/env python3
"""
Escalations CLI Tool
====================

Command-line interface for working the escalation queue and reviewing the
action audit log.

Usage:
    fleetwarden escalations [--status STATUS] [--project PATH]
    fleetwarden ack ID
    fleetwarden resolve ID --by NAME --resolution TEXT
    fleetwarden dismiss ID
    fleetwarden actions [--outcome OUTCOME] [--agent AGENT_ID]
    fleetwarden counts
    fleetwarden thresholds
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import asdict
from pathlib import Path

from fleetwarden.action_logger import ActionLogger
from fleetwarden.config import FleetwardenConfig
from fleetwarden.db.connection import close_db, init_db
from fleetwarden.errors import EscalationNotFoundError, InvalidTransitionError
from fleetwarden.escalation import EscalationQueue
from fleetwarden.escalation_store import EscalationStatus, EscalationStore
from fleetwarden.metrics import Outcome
from fleetwarden.output import (
    console,
    create_table,
    print_error,
    print_header,
    print_key_value_table,
    print_muted,
    print_success,
    setup_rich_logging,
    styled,
)


def get_project_dir(args) -> Path:
    """Get project directory from args or current directory."""
    if getattr(args, "project", None):
        return Path(args.project)
    return Path.cwd()


def _short(text: str, limit: int = 60) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


async def _open(args):
    """Load config and open the database. Returns (config, session_maker)."""
    config = FleetwardenConfig.load(get_project_dir(args))
    session_maker = await init_db(config.project_dir, config.db_dir)
    return config, session_maker


# =============================================================================
# Commands
# =============================================================================

async def cmd_escalations(args) -> int:
    """List escalations, most urgent first."""
    config, session_maker = await _open(args)
    store = EscalationStore(session_maker)
    escalations = await store.list_escalations(config.project_id, status=args.status)

    print_header(f"Escalations ({config.project_id})")
    if not escalations:
        print_muted("No escalations.")
        return 0

    table = create_table(columns=["ID", "Priority", "Status", "Agent", "Title", "Created"])
    for esc in escalations:
        table.add_row(
            esc.id,
            styled(esc.priority, "priority"),
            styled(esc.status, "status"),
            esc.agent_id or "-",
            _short(esc.title),
            f"[fw.timestamp]{esc.created_at:%Y-%m-%d %H:%M:%S}[/]",
        )
    console.print(table)
    return 0


async def _transition(args, verb: str) -> int:
    config, session_maker = await _open(args)
    queue = EscalationQueue(config.project_id, EscalationStore(session_maker))
    try:
        if verb == "ack":
            escalation = await queue.acknowledge(args.id)
        elif verb == "resolve":
            escalation = await queue.resolve(args.id, args.by, args.resolution)
        else:
            escalation = await queue.dismiss(args.id)
    except (EscalationNotFoundError, InvalidTransitionError) as e:
        print_error(str(e))
        return 1
    print_success(f"{escalation.id} is now {escalation.status}")
    return 0


async def cmd_ack(args) -> int:
    return await _transition(args, "ack")


async def cmd_resolve(args) -> int:
    return await _transition(args, "resolve")


async def cmd_dismiss(args) -> int:
    return await _transition(args, "dismiss")


async def cmd_actions(args) -> int:
    """Show the audit log of autonomous actions."""
    config, session_maker = await _open(args)
    action_logger = ActionLogger(session_maker)
    if args.agent:
        actions = await action_logger.get_actions_by_agent(config.project_id, args.agent)
        if args.outcome:
            actions = [a for a in actions if a.outcome == args.outcome]
    else:
        actions = await action_logger.list_actions(config.project_id, outcome=args.outcome)

    print_header("Autonomous Actions")
    if not actions:
        print_muted("No actions recorded.")
        return 0

    table = create_table(columns=["ID", "Action", "Agent", "Trigger", "Outcome", "Details", "Created"])
    for entry in actions:
        table.add_row(
            entry.id,
            entry.action.type,
            entry.trigger_event.agent_id,
            entry.trigger_event.type,
            styled(entry.outcome, "status"),
            _short(entry.outcome_details or "", 40),
            f"[fw.timestamp]{entry.created_at:%Y-%m-%d %H:%M:%S}[/]",
        )
    console.print(table)
    return 0


async def cmd_counts(args) -> int:
    """Show escalation counts per status."""
    config, session_maker = await _open(args)
    counts = await EscalationStore(session_maker).count_by_status(config.project_id)

    table = create_table(title="Escalations by Status", columns=["Status", "Count"])
    for status, count in counts.items():
        table.add_row(styled(status, "status"), f"[fw.number]{count}[/]")
    console.print(table)
    return 0


async def cmd_thresholds(args) -> int:
    """Print the effective configuration and thresholds."""
    config = FleetwardenConfig.load(get_project_dir(args))

    print_key_value_table(
        {
            "Project": config.project_id,
            "Observer": config.observer_id,
            "Autonomy level": config.autonomy_level,
        },
        title="Configuration",
    )
    for category, values in asdict(config.effective_thresholds).items():
        print_key_value_table(values, title=category)
    return 0


# =============================================================================
# Entry Point
# =============================================================================

COMMANDS = {
    "escalations": cmd_escalations,
    "ack": cmd_ack,
    "resolve": cmd_resolve,
    "dismiss": cmd_dismiss,
    "actions": cmd_actions,
    "counts": cmd_counts,
    "thresholds": cmd_thresholds,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fleetwarden",
        description="Fleetwarden escalation and audit CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Show pending escalations
    fleetwarden escalations --status pending

    # Resolve an escalation
    fleetwarden resolve esc-1234 --by alice --resolution "Completed OAuth"

    # Show failed actions for one agent
    fleetwarden actions --agent agent-1 --outcome failure
        """
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    escalations_parser = subparsers.add_parser("escalations", help="List escalations")
    escalations_parser.add_argument("--status", "-s", choices=[s.value for s in EscalationStatus],
                                    help="Only show escalations with this status")
    escalations_parser.add_argument("--project", "-p", help="Project directory")

    ack_parser = subparsers.add_parser("ack", help="Acknowledge an escalation")
    ack_parser.add_argument("id", help="Escalation ID")
    ack_parser.add_argument("--project", "-p", help="Project directory")

    resolve_parser = subparsers.add_parser("resolve", help="Resolve an escalation")
    resolve_parser.add_argument("id", help="Escalation ID")
    resolve_parser.add_argument("--by", required=True, help="Who resolved it")
    resolve_parser.add_argument("--resolution", required=True, help="How it was resolved")
    resolve_parser.add_argument("--project", "-p", help="Project directory")

    dismiss_parser = subparsers.add_parser("dismiss", help="Dismiss an escalation")
    dismiss_parser.add_argument("id", help="Escalation ID")
    dismiss_parser.add_argument("--project", "-p", help="Project directory")

    actions_parser = subparsers.add_parser("actions", help="Show the action audit log")
    actions_parser.add_argument("--outcome", "-o", choices=[o.value for o in Outcome],
                                help="Only show actions with this outcome")
    actions_parser.add_argument("--agent", "-a", help="Only show actions for this agent")
    actions_parser.add_argument("--project", "-p", help="Project directory")

    counts_parser = subparsers.add_parser("counts", help="Count escalations by status")
    counts_parser.add_argument("--project", "-p", help="Project directory")

    thresholds_parser = subparsers.add_parser("thresholds", help="Show effective thresholds")
    thresholds_parser.add_argument("--project", "-p", help="Project directory")

    return parser


async def _run(args) -> int:
    try:
        return await COMMANDS[args.command](args)
    finally:
        await close_db()


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_rich_logging(logging.DEBUG if args.verbose else logging.WARNING)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return asyncio.run(_run(args))
    except ValueError as e:
        # Bad autonomy level in config or environment
        print_error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
