import random

import pytest

from conftest import FakeTransport, RecordingSleep, named
from ig_followcheck.assets import AssetMaterializer
from ig_followcheck.mcp_server import create_mcp_server
from ig_followcheck.models import Page, RelationshipType, SubjectIdentity
from ig_followcheck.orchestrator import CollectionOrchestrator


class StaticResolver:
  def resolve(self, hint, context=None):
    return SubjectIdentity(username="alice", user_id="42")


@pytest.fixture
def orchestrator():
  return CollectionOrchestrator(
    resolver=StaticResolver(),
    primary=FakeTransport({
      RelationshipType.FOLLOWERS: [Page(named("a", "b", "c"), None)],
      RelationshipType.FOLLOWING: [Page(named("b", "c", "d"), None)],
    }),
    fallback=FakeTransport({}, name="graphql"),
    materializer=AssetMaterializer(lambda url, timeout: (b"img", "image/png"), sleep=RecordingSleep()),
    sleep=RecordingSleep(),
    rng=random.Random(0),
  )


@pytest.fixture
def tools(settings, orchestrator):
  server = create_mcp_server(settings, orchestrator=orchestrator)

  def call(name, **kwargs):
    return server._tool_manager.get_tool(name).fn(**kwargs)

  return call


def test_ping_reports_session_configured(tools):
  assert tools("ping") == {"status": "ok", "session_configured": True}


def test_export_before_a_completed_run_is_refused(tools):
  assert tools("export_results", tab="fans", format="txt") == {"ok": False, "error": "no_completed_run"}


def test_unknown_tab_is_reported_as_error_payload(tools):
  result = tools("get_results", tab="mutuals")

  assert result["ok"] is False
  assert "mutuals" in result["error"]


def test_results_strip_embedded_images_and_respect_limit(tools, orchestrator):
  orchestrator.run("alice")

  fans = tools("get_results", tab="fans")
  not_following = tools("get_results", tab="not-following", limit=0)

  assert orchestrator.poll_status().admirers[0].has_embedded_image
  assert fans["status"] == "complete"
  assert fans["count"] == 1
  assert fans["entries"] == [
    {"username": "a", "full_name": None, "profile_pic": None, "is_verified": False, "user_id": None},
  ]
  assert len(not_following["entries"]) == 1
  assert not_following["entries"][0]["username"] == "d"


def test_start_then_progress_then_export(tools, orchestrator, settings):
  ack = tools("start_analysis", target="alice")
  orchestrator.join(5)

  progress = tools("get_progress")
  exported = tools("export_results", tab="not-following", format="txt")

  assert ack == {"success": True, "message": "Analysis started"}
  assert progress["status"] == "complete"
  assert progress["followers_count"] == 3
  assert exported["ok"] is True
  assert exported["path"].startswith(str(settings.output_dir))


def test_tool_errors_become_error_payloads(tools, orchestrator):
  orchestrator.run("alice")

  result = tools("export_results", tab="fans", format="csv")

  assert result["ok"] is False
