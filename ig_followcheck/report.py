from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any

from ig_followcheck.models import ListEntry, RunState

TABS = {
  "not-following": ("not_reciprocating", "Not Following Back"),
  "fans": ("admirers", "Fans You Don't Follow"),
}


def tab_entries(state: RunState, tab: str) -> list[ListEntry]:
  if tab not in TABS:
    raise ValueError(f"Unknown tab {tab!r}; use one of: {', '.join(TABS)}")
  return list(getattr(state, TABS[tab][0]))


def filter_entries(entries: list[ListEntry], search: str | None) -> list[ListEntry]:
  term = (search or "").strip().lower()
  if not term:
    return list(entries)
  return [entry for entry in entries if term in entry.username.lower()]


def strip_embedded_images(entries: list[ListEntry]) -> list[ListEntry]:
  """Copies safe to persist: embedded images dropped, remote URLs kept."""
  return [
    replace(entry, profile_pic=None) if entry.has_embedded_image else entry
    for entry in entries
  ]


def render_text_report(entries: list[ListEntry], *, title: str, generated_at: datetime | None = None) -> str:
  stamp = (generated_at or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
  lines = [
    f"Instagram {title} Report",
    f"Generated: {stamp}",
    f"Total: {len(entries)} users",
    "=" * 50,
    "",
  ]
  for entry in entries:
    lines.append(f"@{entry.username}")
    lines.append(f"  URL: {entry.profile_url}")
    lines.append("")
  return "\n".join(lines) + "\n"


def snapshot_payload(state: RunState) -> dict[str, Any]:
  def rows(entries: list[ListEntry]) -> list[dict[str, Any]]:
    return [entry.to_dict() for entry in strip_embedded_images(entries)]

  return {
    "status": state.status.value,
    "subject": state.subject.username if state.subject else None,
    "subject_id": state.subject.user_id if state.subject else None,
    "followers": rows(state.followers.entries),
    "following": rows(state.following.entries),
    "notFollowingBack": rows(state.not_reciprocating),
    "fans": rows(state.admirers),
    "counts": {
      "followers": len(state.followers.entries),
      "following": len(state.following.entries),
      "not_following_back": len(state.not_reciprocating),
      "fans": len(state.admirers),
    },
    "collection": {
      "followers": {
        "status": state.followers.status.value,
        "transport": state.followers.transport,
        "error": state.followers.error,
      },
      "following": {
        "status": state.following.status.value,
        "transport": state.following.transport,
        "error": state.following.error,
      },
    },
    "lastUpdated": state.finished_at or datetime.now().isoformat(timespec="seconds"),
  }


def write_export(state: RunState, *, tab: str, fmt: str, output_dir: Path) -> Path:
  fmt_text = fmt.strip().lower()
  if fmt_text not in {"txt", "json"}:
    raise ValueError("Use txt or json.")
  if tab not in TABS:
    raise ValueError(f"Unknown tab {tab!r}; use one of: {', '.join(TABS)}")

  output_dir.mkdir(parents=True, exist_ok=True)
  timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
  output_path = output_dir / f"instagram_{tab.replace('-', '_')}_{timestamp}.{fmt_text}"

  if fmt_text == "txt":
    output_path.write_text(
      render_text_report(tab_entries(state, tab), title=TABS[tab][1]),
      encoding="utf-8",
    )
  else:
    output_path.write_text(
      json.dumps(snapshot_payload(state), ensure_ascii=False, indent=2),
      encoding="utf-8",
    )
  return output_path
