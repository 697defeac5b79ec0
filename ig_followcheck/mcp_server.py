from __future__ import annotations

from typing import Any, Callable

from mcp.server.fastmcp import FastMCP

from ig_followcheck.config import Settings
from ig_followcheck.models import ListEntry, RunState, RunStatus
from ig_followcheck.orchestrator import CollectionOrchestrator
from ig_followcheck.report import TABS, filter_entries, strip_embedded_images, tab_entries, write_export


def _mcp_instructions() -> str:
  return (
    "Instagram follower check MCP server. "
    "Call start_analysis with a username or profile URL, then poll get_progress until status is "
    "complete or error. Use get_results for the not-following-back and fans lists, and "
    "export_results to write them to a txt or json file."
  )


def _progress_payload(state: RunState) -> dict[str, Any]:
  return {
    "ok": True,
    "status": state.status.value,
    "progress": round(state.progress, 1),
    "message": state.message,
    "subject": state.subject.username if state.subject else None,
    "followers_count": len(state.followers),
    "following_count": len(state.following),
  }


def _entry_rows(entries: list[ListEntry]) -> list[dict[str, Any]]:
  return [entry.to_dict() for entry in strip_embedded_images(entries)]


def create_mcp_server(
  settings: Settings | None = None,
  *,
  orchestrator: CollectionOrchestrator | None = None,
) -> FastMCP:
  runtime_settings = settings or Settings.load()
  runner = orchestrator or CollectionOrchestrator.from_settings(runtime_settings)
  server = FastMCP(
    name="ig-followcheck",
    instructions=_mcp_instructions(),
    json_response=True,
  )

  def safe_tool(fn: Callable[..., dict[str, Any]]) -> Callable[..., dict[str, Any]]:
    def wrapped(*args: Any, **kwargs: Any) -> dict[str, Any]:
      try:
        return fn(*args, **kwargs)
      except Exception as exc:
        return {"ok": False, "error": str(exc)}

    return wrapped

  @server.tool(description="Liveness check for the collection engine, independent of any run.")
  def ping() -> dict[str, Any]:
    return {**runner.ping(), "session_configured": not runtime_settings.needs_bootstrap}

  @server.tool(description="Start a followers/following analysis for a username or profile URL. Returns immediately.")
  def start_analysis(target: str) -> dict[str, Any]:
    return safe_tool(runner.start)(target)

  @server.tool(description="Current status, progress percent and message of the analysis run.")
  def get_progress() -> dict[str, Any]:
    return _progress_payload(runner.poll_status())

  @server.tool(description="Read the not-following (accounts not following back) or fans list of the last run.")
  def get_results(tab: str = "not-following", search: str | None = None, limit: int = 200) -> dict[str, Any]:
    def read() -> dict[str, Any]:
      state = runner.poll_status()
      entries = filter_entries(tab_entries(state, tab), search)
      safe_limit = max(1, min(limit, 2000))
      return {
        **_progress_payload(state),
        "tab": tab,
        "title": TABS[tab][1],
        "count": len(entries),
        "entries": _entry_rows(entries[:safe_limit]),
      }

    return safe_tool(read)()

  @server.tool(description="Export a result list of the last run to a txt report or a json snapshot.")
  def export_results(tab: str = "not-following", format: str = "txt") -> dict[str, Any]:
    def export() -> dict[str, Any]:
      state = runner.poll_status()
      if state.status is not RunStatus.COMPLETE:
        return {"ok": False, "error": "no_completed_run"}
      path = write_export(state, tab=tab, fmt=format, output_dir=runtime_settings.output_dir)
      return {"ok": True, "format": format, "path": str(path), "tab": tab}

    return safe_tool(export)()

  return server


def main() -> int:
  server = create_mcp_server()
  server.run(transport="stdio")
  return 0


if __name__ == "__main__":
  raise SystemExit(main())
