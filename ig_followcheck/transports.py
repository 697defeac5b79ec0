from __future__ import annotations

import logging

from ig_followcheck.models import Cursor, FallbackCursor, Page, PrimaryCursor, RelationshipType
from ig_followcheck.web_api import InstagramWebClient, UnauthorizedError

logger = logging.getLogger(__name__)


def _not_authorized(exc: UnauthorizedError, relationship: RelationshipType) -> UnauthorizedError:
  return UnauthorizedError(
    f"Not authorized to view {relationship.value}. "
    "Make sure you're logged in and viewing your own profile.",
    status_code=exc.status_code,
  )


class PrimaryTransport:
  """friendships REST endpoint, paginated by a numeric max_id."""

  name = "rest"
  label_suffix = ""
  progress_scale = 100
  entry_cap: int | None = None

  def __init__(self, client: InstagramWebClient) -> None:
    self._client = client

  def fetch_page(self, user_id: str, relationship: RelationshipType, cursor: Cursor | None) -> Page:
    if cursor is not None and not isinstance(cursor, PrimaryCursor):
      raise TypeError(f"{self.name} transport cannot continue from {type(cursor).__name__}")
    try:
      entries, next_max_id = self._client.friendships_page(
        user_id,
        relationship,
        max_id=cursor.max_id if cursor else None,
      )
    except UnauthorizedError as exc:
      raise _not_authorized(exc, relationship) from exc
    return Page(
      entries=entries,
      next_cursor=PrimaryCursor(next_max_id) if next_max_id else None,
    )


class FallbackTransport:
  """GraphQL connection query, paginated by end_cursor/has_next_page."""

  name = "graphql"
  label_suffix = " (alt)"
  progress_scale = 50

  def __init__(self, client: InstagramWebClient, *, entry_cap: int = 2000) -> None:
    self._client = client
    self.entry_cap: int | None = entry_cap

  def fetch_page(self, user_id: str, relationship: RelationshipType, cursor: Cursor | None) -> Page:
    if cursor is not None and not isinstance(cursor, FallbackCursor):
      raise TypeError(f"{self.name} transport cannot continue from {type(cursor).__name__}")
    try:
      entries, end_cursor, has_next = self._client.graphql_connection_page(
        user_id,
        relationship,
        after=cursor.end_cursor if cursor else None,
      )
    except UnauthorizedError as exc:
      raise _not_authorized(exc, relationship) from exc
    next_cursor = FallbackCursor(end_cursor, has_next) if has_next and end_cursor else None
    return Page(entries=entries, next_cursor=next_cursor)
