from __future__ import annotations

import json
import logging
import re
import time
from typing import Any
from urllib.parse import urlparse

import requests

from ig_followcheck.config import Settings
from ig_followcheck.models import ListEntry, RelationshipType

logger = logging.getLogger(__name__)


class InstagramWebError(RuntimeError):
  """Raised for Instagram web API related errors."""

  def __init__(self, message: str, *, status_code: int | None = None) -> None:
    super().__init__(message)
    self.status_code = status_code


class RateLimitedError(InstagramWebError):
  """HTTP 429 from Instagram."""


class UnauthorizedError(InstagramWebError):
  """HTTP 401/403: missing or expired session, or a private list."""


class HttpStatusError(InstagramWebError):
  """Any other non-2xx response."""


class TransientNetworkError(InstagramWebError):
  """Connection reset, DNS failure, read timeout and friends."""


class MalformedPayloadError(InstagramWebError):
  """The response was 2xx but not the JSON shape we expect."""


def _as_str(value: Any) -> str | None:
  if isinstance(value, str):
    stripped = value.strip()
    return stripped or None
  if isinstance(value, int) and not isinstance(value, bool):
    return str(value)
  return None


def _nested_get(data: Any, *path: str) -> Any:
  current = data
  for key in path:
    if not isinstance(current, dict):
      return None
    current = current.get(key)
  return current


_RESERVED_PROFILE_SEGMENTS = {"explore", "reels", "reel", "direct", "accounts", "stories", "p", "tv", "developer"}

_HANDLE_RE = re.compile(r"[A-Za-z0-9._]+")


def extract_profile_username(target: str) -> str | None:
  target = target.strip()
  if not target:
    return None

  if target.startswith("@"):
    candidate = target[1:]
    return candidate if _HANDLE_RE.fullmatch(candidate) else None

  if "instagram.com" not in target and not target.startswith("/"):
    return target if _HANDLE_RE.fullmatch(target) else None

  parsed = urlparse(target if "://" in target or target.startswith("/") else f"https://{target}")
  parts = [part for part in parsed.path.split("/") if part]
  if not parts:
    return None
  # /<handle>/ or /<handle>/followers/ or /<handle>/following/
  if len(parts) == 2 and parts[1] not in {"followers", "following"}:
    return None
  if len(parts) > 2:
    return None

  username = parts[0]
  if username in _RESERVED_PROFILE_SEGMENTS:
    return None
  if not _HANDLE_RE.fullmatch(username):
    return None
  return username


def normalize_list_entry(user: dict[str, Any]) -> ListEntry | None:
  username = _as_str(user.get("username"))
  if not username:
    return None
  user_id = user.get("pk") or user.get("id") or user.get("pk_id")
  return ListEntry(
    username=username,
    full_name=_as_str(user.get("full_name")),
    profile_pic=_as_str(user.get("profile_pic_url")),
    is_verified=bool(user.get("is_verified")),
    user_id=str(user_id) if user_id is not None else None,
  )


class InstagramWebClient:
  def __init__(self, settings: Settings, *, session: requests.Session | None = None) -> None:
    self._settings = settings
    self._base_url = settings.ig_base_url.rstrip("/")
    self._session = session or requests.Session()
    self._session.headers.update({"User-Agent": settings.ig_user_agent})
    for name, value in (
      ("sessionid", settings.ig_sessionid),
      ("csrftoken", settings.ig_csrftoken),
      ("ds_user_id", settings.ig_ds_user_id),
    ):
      if value:
        self._session.cookies.set(name, value, domain=".instagram.com")

  @property
  def base_url(self) -> str:
    return self._base_url

  @property
  def page_size(self) -> int:
    return self._settings.page_size

  def _requests_proxies(self) -> dict[str, str] | None:
    proxy = self._settings.proxy_url
    if not proxy:
      return None
    return {"http": proxy, "https": proxy}

  def _credential_headers(self) -> dict[str, str]:
    return {
      "X-IG-App-ID": self._settings.ig_app_id,
      "X-Requested-With": "XMLHttpRequest",
      "X-CSRFToken": self._settings.ig_csrftoken or "",
      "X-ASBD-ID": self._settings.ig_asbd_id,
      "X-IG-WWW-Claim": self._settings.ig_www_claim or "0",
      "Referer": f"{self._base_url}/",
    }

  def _get(
    self,
    path: str,
    params: dict[str, Any] | None = None,
    *,
    api: bool = True,
    timeout: float | None = None,
    stream: bool = False,
  ) -> requests.Response:
    url = path if path.startswith("http") else f"{self._base_url}{path}"
    headers = self._credential_headers() if api else {}
    try:
      response = self._session.get(
        url,
        params=params,
        headers=headers,
        timeout=timeout or self._settings.request_timeout_seconds,
        proxies=self._requests_proxies(),
        stream=stream,
      )
    except requests.RequestException as exc:
      raise TransientNetworkError(f"Instagram request failed: {exc}") from exc

    status = response.status_code
    logger.debug("GET %s -> %s", url, status)
    if 200 <= status < 300:
      return response

    detail = None
    try:
      payload = response.json()
      if isinstance(payload, dict):
        detail = payload.get("message") or payload.get("status")
    except ValueError:
      detail = (response.text or "")[:200] or None
    suffix = f" ({detail})" if detail else ""
    if stream:
      response.close()
    if status == 429:
      raise RateLimitedError(f"Instagram HTTP 429{suffix}", status_code=status)
    if status in {401, 403}:
      raise UnauthorizedError(f"Instagram HTTP {status}{suffix}", status_code=status)
    raise HttpStatusError(f"Instagram HTTP {status}{suffix}", status_code=status)

  def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
    response = self._get(path, params)
    try:
      return response.json()
    except ValueError as exc:
      raise MalformedPayloadError(
        f"Instagram returned non-JSON response: {exc}",
        status_code=response.status_code,
      ) from exc

  def friendships_page(
    self,
    user_id: str,
    relationship: RelationshipType,
    *,
    max_id: str | None = None,
  ) -> tuple[list[ListEntry], str | None]:
    params: dict[str, Any] = {"count": self.page_size}
    if relationship is RelationshipType.FOLLOWERS:
      params["search_surface"] = "follow_list_page"
    if max_id:
      params["max_id"] = max_id

    payload = self._get_json(f"/api/v1/friendships/{user_id}/{relationship.value}/", params)
    if not isinstance(payload, dict):
      raise MalformedPayloadError("Unexpected Instagram response format for friendships page.")

    users = payload.get("users")
    if not isinstance(users, list):
      users = []
    entries = [entry for entry in (normalize_list_entry(item) for item in users if isinstance(item, dict)) if entry]
    return entries, _as_str(payload.get("next_max_id"))

  def graphql_connection_page(
    self,
    user_id: str,
    relationship: RelationshipType,
    *,
    after: str | None = None,
  ) -> tuple[list[ListEntry], str | None, bool]:
    variables: dict[str, Any] = {
      "id": str(user_id),
      "include_reel": False,
      "fetch_mutual": False,
      "first": self.page_size,
    }
    if after:
      variables["after"] = after

    payload = self._get_json(
      "/graphql/query/",
      {
        "query_hash": relationship.query_hash,
        "variables": json.dumps(variables, separators=(",", ":")),
      },
    )
    connection = _nested_get(payload, "data", "user", relationship.edge_key)
    if not isinstance(connection, dict):
      raise MalformedPayloadError("Unexpected Instagram response format for graphql connection.")

    edges = connection.get("edges") if isinstance(connection.get("edges"), list) else []
    entries: list[ListEntry] = []
    for edge in edges:
      node = edge.get("node") if isinstance(edge, dict) else None
      if isinstance(node, dict):
        entry = normalize_list_entry(node)
        if entry:
          entries.append(entry)

    page_info = connection.get("page_info") if isinstance(connection.get("page_info"), dict) else {}
    return entries, _as_str(page_info.get("end_cursor")), bool(page_info.get("has_next_page"))

  def web_profile_info(self, username: str) -> dict[str, Any]:
    payload = self._get_json("/api/v1/users/web_profile_info/", {"username": username})
    user = _nested_get(payload, "data", "user")
    if not isinstance(user, dict):
      raise MalformedPayloadError("Unexpected Instagram response format for web profile info.")
    return user

  def profile_document(self, username: str) -> str:
    response = self._get(f"/{username}/", api=False)
    return response.text or ""

  def download_image(self, url: str, *, timeout: float, max_bytes: int = 2 * 1024 * 1024) -> tuple[bytes, str]:
    """Fetch one image within `timeout` seconds in total, not per read."""
    deadline = time.monotonic() + timeout
    response = self._get(url, api=False, timeout=timeout, stream=True)
    content_type = (response.headers.get("Content-Type") or "").split(";")[0].strip().lower()
    chunks: list[bytes] = []
    total = 0
    try:
      for chunk in response.iter_content(chunk_size=64 * 1024):
        if time.monotonic() > deadline:
          raise TransientNetworkError(f"Image download exceeded {timeout:.1f}s: {url[:80]}")
        if not chunk:
          continue
        total += len(chunk)
        if total > max_bytes:
          raise MalformedPayloadError(f"Image larger than {max_bytes} bytes: {url[:80]}")
        chunks.append(chunk)
    except requests.RequestException as exc:
      raise TransientNetworkError(f"Image download failed: {exc}") from exc
    finally:
      response.close()
    return b"".join(chunks), content_type
