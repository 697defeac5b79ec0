from __future__ import annotations

import argparse
import getpass
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table

from ig_followcheck.config import Settings, upsert_env_values
from ig_followcheck.identity import PageContext
from ig_followcheck.models import ListEntry, RunState, RunStatus
from ig_followcheck.orchestrator import CollectionOrchestrator
from ig_followcheck.report import TABS, filter_entries, tab_entries, write_export

_CONSOLE = Console()


def _build_parser() -> argparse.ArgumentParser:
  parser = argparse.ArgumentParser(
    prog="followcheck",
    description="Find Instagram accounts that don't follow you back, and fans you don't follow.",
  )
  parser.add_argument(
    "target",
    nargs="?",
    help="Username, @username or profile URL.",
  )
  parser.add_argument("--url", help="Profile page URL to detect the username from.")
  parser.add_argument(
    "--tab",
    choices=[*TABS, "both"],
    default="both",
    help="Which list to print.",
  )
  parser.add_argument("--search", help="Only show usernames containing this text.")
  parser.add_argument("--export", choices=["txt", "json"], help="Write the selected list to a file.")
  parser.add_argument("--output-dir", help="Directory for export files (default: OUTPUT_DIR).")
  parser.add_argument(
    "--no-images",
    action="store_true",
    help="Skip converting profile pictures to embedded data URIs.",
  )
  return parser


def configure_logging(settings: Settings) -> None:
  logging.basicConfig(
    level=settings.logging_level,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=settings.debug, show_path=settings.debug)],
  )


def _prompt_required(label: str, *, secret: bool = False) -> str:
  while True:
    try:
      value = getpass.getpass(f"{label}: ") if secret else input(f"{label}: ")
    except (KeyboardInterrupt, EOFError):
      print("\nSetup cancelled.")
      raise SystemExit(1)
    value = value.strip()
    if value:
      return value
    print("Value is required.")


def _ensure_bootstrapped_settings(settings: Settings) -> Settings:
  if not settings.needs_bootstrap:
    return settings

  if not sys.stdin.isatty():
    print(
      "Missing Instagram session cookies and no interactive stdin available.\n"
      f"Please fill {settings.env_file} with IG_SESSIONID and IG_CSRFTOKEN.",
    )
    raise SystemExit(1)

  _CONSOLE.rule("followcheck first-time setup")
  print(f"Config file: {settings.env_file}")
  print("Copy the cookies from a logged-in instagram.com browser tab. They are saved to this local .env file.\n")

  values = {
    "IG_SESSIONID": (settings.ig_sessionid or "").strip() or _prompt_required("sessionid cookie", secret=True),
    "IG_CSRFTOKEN": (settings.ig_csrftoken or "").strip() or _prompt_required("csrftoken cookie", secret=True),
  }
  ds_user_id = (settings.ig_ds_user_id or "").strip() or input("ds_user_id cookie (optional): ").strip()
  if ds_user_id:
    values["IG_DS_USER_ID"] = ds_user_id
  values["DEBUG"] = "true" if settings.debug else "false"

  upsert_env_values(settings.env_file, values)

  fresh_settings = Settings.load()
  if fresh_settings.needs_bootstrap:
    print("Setup failed: required cookies are still missing in .env")
    raise SystemExit(1)
  return fresh_settings


def _follow_progress(orchestrator: CollectionOrchestrator) -> RunState:
  with Progress(
    TextColumn("[bold]{task.percentage:>3.0f}%"),
    BarColumn(),
    TextColumn("{task.description}"),
    console=_CONSOLE,
    transient=True,
  ) as progress:
    task_id = progress.add_task("Starting analysis...", total=100)
    state = orchestrator.poll_status()
    while not state.status.is_terminal:
      state = orchestrator.wait_for_change(state.version, timeout=0.5)
      progress.update(task_id, completed=state.progress, description=state.message)
  return state


def _render_table(title: str, entries: list[ListEntry]) -> Table:
  table = Table(title=f"{title} ({len(entries)})", show_lines=False)
  table.add_column("#", justify="right", style="dim")
  table.add_column("username", style="bold")
  table.add_column("name")
  table.add_column("profile")
  for index, entry in enumerate(entries, start=1):
    handle = f"@{entry.username}" + (" ✓" if entry.is_verified else "")
    table.add_row(str(index), handle, entry.full_name or "", entry.profile_url)
  return table


def main(argv: list[str] | None = None) -> int:
  parser = _build_parser()
  args = parser.parse_args(argv)

  if not args.target and not args.url:
    parser.error("a username or --url is required")

  settings = _ensure_bootstrapped_settings(Settings.load())
  configure_logging(settings)

  orchestrator = CollectionOrchestrator.from_settings(settings, materialize_images=not args.no_images)
  ack = orchestrator.start(args.target, PageContext(url=args.url) if args.url else None)
  if not ack.get("success"):
    print(ack.get("message"))
    return 1

  state = _follow_progress(orchestrator)
  if state.status is RunStatus.ERROR:
    _CONSOLE.print(f"[red]Error:[/red] {state.message}")
    return 1

  _CONSOLE.print(
    f"Found {len(state.followers)} followers and {len(state.following)} following for @{state.subject.username if state.subject else '?'}",
  )
  for result in (state.followers, state.following):
    if result.error:
      _CONSOLE.print(f"[yellow]{result.relationship.value} list is partial:[/yellow] {result.error}")

  tabs = list(TABS) if args.tab == "both" else [args.tab]
  for tab in tabs:
    entries = filter_entries(tab_entries(state, tab), args.search)
    _CONSOLE.print(_render_table(TABS[tab][1], entries))

  if args.export:
    output_dir = Path(args.output_dir).expanduser() if args.output_dir else settings.output_dir
    # The json export already holds both lists.
    export_tabs = tabs if args.export == "txt" else tabs[:1]
    for tab in export_tabs:
      path = write_export(state, tab=tab, fmt=args.export, output_dir=output_dir)
      _CONSOLE.print(f"Exported: {path}")
  return 0


if __name__ == "__main__":
  raise SystemExit(main())
