"""
HookGuard CLI Entry Point.

Usage:
    echo '{"operation_kind": "create", "target_path": "auth_v2.js"}' | hookguard
    hookguard --event request.json
    hookguard --report
    hookguard --help
"""

import argparse
import json
import sys
from typing import Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from hookguard import __version__
from hookguard.engine import Engine, build_engine
from hookguard.protocol import EXIT_ALLOWED, EXIT_BLOCKED, EXIT_ERROR

# Load environment
load_dotenv()

# stdout carries the protocol response
console = Console(stderr=True)


def emit(response: dict) -> None:
    sys.stdout.write(json.dumps(response) + "\n")
    sys.stdout.flush()


def print_stats(engine: Engine) -> None:
    """Print classifier statistics."""
    stats = engine.classifier.statistics()

    table = Table(title="Policy Classification")
    table.add_column("Tier")
    table.add_column("Policies", justify="right")
    for tier, count in stats["by_tier"].items():
        table.add_row(tier, str(count))
    console.print(table)

    families = Table(title="Families")
    families.add_column("Family")
    families.add_column("Policies", justify="right")
    families.add_column("Enabled")
    for family, count in sorted(stats["by_family"].items()):
        enabled = engine.config.family_enabled(family)
        families.add_row(family, str(count), "[green]yes[/green]" if enabled else "[red]no[/red]")
    console.print(families)

    session = engine.store.read()
    console.print(Panel.fit(
        f"[bold]Registered:[/bold] {len(engine.registry)}\n"
        f"[bold]Classified:[/bold] {stats['total']}\n"
        f"[bold]Average timeout:[/bold] {stats['average_timeout_ms']}ms\n"
        f"[bold]Session:[/bold] {session.message_count} events over "
        f"{engine.store.session_duration_minutes()} min, "
        f"{len(engine.store.get_recent_file_changes())} files changed recently",
        title="Summary",
    ))


def print_report(engine: Engine, min_runs: int) -> None:
    """Print the analytics summary for policy-set curation."""
    report = engine.recorder.report(min_runs=min_runs)

    if not report["total_records"]:
        console.print("[dim]No analytics recorded yet[/dim]")
        return

    table = Table(title=f"Policy Outcomes ({report['total_records']} records)")
    table.add_column("Policy")
    table.add_column("Allow", justify="right")
    table.add_column("Block", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Cached", justify="right")
    for policy_id, counts in sorted(report["by_policy"].items()):
        table.add_row(
            policy_id,
            str(counts.get("allow", 0)),
            str(counts.get("block", 0)),
            str(counts["errors"]),
            str(counts["cached"]),
        )
    console.print(table)

    candidates = report["candidates"]
    lines = []
    for policy_id in candidates["never_blocking_policies"]:
        lines.append(f"[yellow]never blocked:[/yellow] {policy_id}")
    for key in candidates["always_blocking_fingerprints"]:
        fp = report["by_fingerprint"][key]
        lines.append(
            f"[red]always blocks:[/red] {fp['policy_id']} "
            f"({fp['file_extension'] or 'no ext'}, {fp['project_type']})"
        )
    console.print(Panel.fit(
        "\n".join(lines) or "[green]No curation candidates[/green]",
        title="Curation Candidates",
    ))


def main(argv: Optional[list[str]] = None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="HookGuard - Policy enforcement for automated code edits",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exit codes:
  0  operation allowed
  2  operation blocked (message on stderr and in the JSON response)
  1  internal error (response still reports "ok")

Environment:
  HOOK_<FAMILY>=false     disable a policy family
  HOOKS_TESTING_MODE=true bypass all checks
  HOOK_VERBOSE=true       verbose diagnostics
        """,
    )

    parser.add_argument(
        "--event",
        help="Read the request from this file instead of stdin",
    )
    parser.add_argument(
        "--config",
        help="Config file (default: $HOOKGUARD_CONFIG or .hookguard/config.json)",
    )
    parser.add_argument(
        "--report",
        action="store_true",
        help="Show the analytics summary and exit",
    )
    parser.add_argument(
        "--min-runs",
        type=int,
        default=5,
        help="Runs needed before a policy is a curation candidate (default: 5)",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Show policy classification statistics and exit",
    )
    parser.add_argument(
        "--cleanup",
        action="store_true",
        help="Prune old backups, analytics and cache entries and exit",
    )
    parser.add_argument(
        "--reset-session",
        action="store_true",
        help="Start a fresh session state and exit",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Print per-policy diagnostics to stderr",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"HookGuard {__version__}",
    )

    args = parser.parse_args(argv)

    try:
        engine = build_engine(args.config, verbose=args.verbose)
    except Exception as e:
        console.print(f"[red]Error initializing engine: {e}[/red]")
        emit({"status": "ok"})
        sys.exit(EXIT_ERROR)

    if args.stats:
        print_stats(engine)
        sys.exit(EXIT_ALLOWED)

    if args.report:
        print_report(engine, args.min_runs)
        sys.exit(EXIT_ALLOWED)

    if args.cleanup:
        removed = engine.cleanup()
        console.print(
            f"[green]✓ Removed {removed['backups_removed']} backups, "
            f"{removed['analytics_removed']} analytics records, "
            f"{removed['cache_removed']} cache entries[/green]"
        )
        sys.exit(EXIT_ALLOWED)

    if args.reset_session:
        engine.store.reset()
        console.print("[green]✓ Session state reset[/green]")
        sys.exit(EXIT_ALLOWED)

    try:
        if args.event:
            with open(args.event, "r", encoding="utf-8") as f:
                raw = f.read()
        else:
            raw = sys.stdin.read()

        response, code = engine.handle_request(raw)

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)

    except Exception as e:
        console.print(f"[red]Error during evaluation: {e}[/red]")
        response, code = {"status": "ok"}, EXIT_ERROR

    engine.shutdown()
    emit(response)

    if code == EXIT_BLOCKED:
        # The host feeds stderr back to the actor on exit code 2
        sys.stderr.write(response["message"] + "\n")
        sys.stderr.flush()

    sys.exit(code)


if __name__ == "__main__":
    main()
