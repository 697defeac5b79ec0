from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
import requests

from ig_followcheck.config import Settings
from ig_followcheck.models import Cursor, ListEntry, Page, RelationshipType


def make_entries(prefix: str, count: int, *, start: int = 0) -> list[ListEntry]:
  return [
    ListEntry(
      username=f"{prefix}{index}",
      full_name=f"{prefix.title()} {index}",
      profile_pic=f"https://cdn.example/{prefix}{index}.jpg",
      user_id=str(1000 + index),
    )
    for index in range(start, start + count)
  ]


def named(*usernames: str) -> list[ListEntry]:
  return [ListEntry(username=name, profile_pic=f"https://cdn.example/{name}.jpg") for name in usernames]


class FakeTransport:
  """Replays scripted pages or exceptions per relationship type."""

  def __init__(
    self,
    scripts: dict[RelationshipType, list[Any]] | None = None,
    *,
    name: str = "fake",
    label_suffix: str = "",
    progress_scale: int = 100,
    entry_cap: int | None = None,
  ) -> None:
    self.scripts = {key: list(value) for key, value in (scripts or {}).items()}
    self.name = name
    self.label_suffix = label_suffix
    self.progress_scale = progress_scale
    self.entry_cap = entry_cap
    self.calls: list[tuple[str, RelationshipType, Cursor | None]] = []

  def fetch_page(self, user_id: str, relationship: RelationshipType, cursor: Cursor | None) -> Page:
    self.calls.append((user_id, relationship, cursor))
    script = self.scripts.get(relationship) or []
    if not script:
      raise AssertionError(f"{self.name}: unexpected fetch for {relationship.value}")
    outcome = script.pop(0)
    if isinstance(outcome, BaseException):
      raise outcome
    return outcome

  def calls_for(self, relationship: RelationshipType) -> int:
    return sum(1 for _, rel, _ in self.calls if rel is relationship)


class RecordingSleep:
  def __init__(self) -> None:
    self.delays: list[float] = []

  def __call__(self, seconds: float) -> None:
    self.delays.append(seconds)


class FakeResponse:
  def __init__(
    self,
    status_code: int = 200,
    payload: Any = None,
    *,
    text: str = "",
    headers: dict[str, str] | None = None,
    content: bytes = b"",
  ) -> None:
    self.status_code = status_code
    self._payload = payload
    self.text = text
    self.headers = headers or {}
    self._content = content
    self.closed = False

  def json(self) -> Any:
    if self._payload is None:
      raise ValueError("No JSON object could be decoded")
    return self._payload

  def iter_content(self, chunk_size: int = 1024):
    for start in range(0, len(self._content), chunk_size):
      yield self._content[start:start + chunk_size]

  def close(self) -> None:
    self.closed = True


class FakeSession:
  def __init__(self, responses: list[Any] | None = None) -> None:
    self.responses = list(responses or [])
    self.headers: dict[str, str] = {}
    self.cookies = requests.cookies.RequestsCookieJar()
    self.requests: list[dict[str, Any]] = []

  def get(self, url: str, **kwargs: Any) -> FakeResponse:
    self.requests.append({"url": url, **kwargs})
    outcome = self.responses.pop(0)
    if isinstance(outcome, BaseException):
      raise outcome
    return outcome


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
  return Settings(
    loaded_env_files=[],
    env_file=tmp_path / ".env",
    ig_sessionid="session-123",
    ig_csrftoken="csrf-abc",
    ig_ds_user_id="42",
    ig_www_claim="0",
    ig_app_id="936619743392459",
    ig_asbd_id="129477",
    ig_base_url="https://www.instagram.com",
    ig_user_agent="pytest",
    proxy_url=None,
    request_timeout_seconds=5.0,
    page_size=50,
    fallback_entry_cap=2000,
    image_timeout_seconds=3.0,
    image_concurrency=5,
    output_dir=tmp_path / "output",
    debug=False,
    log_level="INFO",
  )
