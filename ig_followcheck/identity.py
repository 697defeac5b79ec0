from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable

from ig_followcheck.models import SubjectIdentity
from ig_followcheck.web_api import InstagramWebClient, InstagramWebError, extract_profile_username

logger = logging.getLogger(__name__)

MAX_SEARCH_DEPTH = 64

_TITLE_HANDLE_RE = re.compile(r"@([A-Za-z0-9._]+)")
_JSON_SCRIPT_RE = re.compile(
  r"<script[^>]*type=[\"']application/json[\"'][^>]*>(.*?)</script>",
  re.DOTALL | re.IGNORECASE,
)
_MARKUP_ID_PATTERNS = (
  re.compile(r'"user_id":"(\d+)"'),
  re.compile(r'"profilePage_(\d+)"'),
)


class IdentityNotFound(InstagramWebError):
  """No strategy could resolve the subject."""


@dataclass
class PageContext:
  """What a host page knows about itself; every field is optional."""

  url: str | None = None
  title: str | None = None
  header_text: str | None = None
  json_documents: list[Any] = field(default_factory=list)


def parse_handle(hint: str | None, context: PageContext | None = None) -> str | None:
  candidates: list[str] = []
  if hint:
    candidates.append(hint)
  if context is not None:
    if context.url:
      candidates.append(context.url)
    if context.header_text:
      candidates.append(context.header_text.strip())

  for candidate in candidates:
    username = extract_profile_username(candidate)
    if username:
      return username

  if context is not None and context.title:
    match = _TITLE_HANDLE_RE.search(context.title)
    if match:
      return match.group(1)
  return None


def find_user_id(node: Any, username: str, *, max_depth: int = MAX_SEARCH_DEPTH) -> str | None:
  """Depth-first search for a mapping with this username and an id or pk."""
  if max_depth < 0:
    return None
  if isinstance(node, dict):
    if node.get("username") == username:
      user_id = node.get("id") or node.get("pk")
      if user_id:
        return str(user_id)
    children = node.values()
  elif isinstance(node, (list, tuple)):
    children = node
  else:
    return None

  for child in children:
    if isinstance(child, (dict, list, tuple)):
      found = find_user_id(child, username, max_depth=max_depth - 1)
      if found:
        return found
  return None


def extract_json_documents(markup: str) -> list[Any]:
  documents: list[Any] = []
  for raw in _JSON_SCRIPT_RE.findall(markup):
    try:
      documents.append(json.loads(raw))
    except ValueError:
      continue
  return documents


def extract_user_id_from_markup(markup: str) -> str | None:
  for pattern in _MARKUP_ID_PATTERNS:
    match = pattern.search(markup)
    if match:
      return match.group(1)
  return None


class IdentityResolver:
  def __init__(self, client: InstagramWebClient) -> None:
    self._client = client

  def resolve(self, handle_hint: str | None, context: PageContext | None = None) -> SubjectIdentity:
    username = parse_handle(handle_hint, context)
    if not username:
      raise IdentityNotFound("Could not detect username. Go to instagram.com/yourusername")
    logger.info("Resolving user id for @%s", username)

    markup_cache: dict[str, str] = {}

    def profile_markup() -> str:
      if "markup" not in markup_cache:
        markup_cache["markup"] = self._client.profile_document(username)
      return markup_cache["markup"]

    strategies: list[tuple[str, Callable[[], str | None]]] = [
      ("web_profile_info", lambda: self._from_profile_info(username)),
      ("page_documents", lambda: self._from_documents(username, context, profile_markup)),
      ("profile_markup", lambda: extract_user_id_from_markup(profile_markup())),
    ]
    for name, strategy in strategies:
      try:
        user_id = strategy()
      except InstagramWebError as exc:
        logger.debug("identity strategy %s failed: %s", name, exc)
        continue
      if user_id:
        logger.info("Got user id %s for @%s from %s", user_id, username, name)
        return SubjectIdentity(username=username, user_id=str(user_id))

    raise IdentityNotFound(
      f"Could not find user ID for @{username}. Make sure you're on the correct profile.",
    )

  def _from_profile_info(self, username: str) -> str | None:
    user = self._client.web_profile_info(username)
    user_id = user.get("id") or user.get("pk")
    return str(user_id) if user_id else None

  @staticmethod
  def _from_documents(
    username: str,
    context: PageContext | None,
    profile_markup: Callable[[], str],
  ) -> str | None:
    if context is not None and context.json_documents:
      documents = []
      for document in context.json_documents:
        if isinstance(document, str):
          try:
            document = json.loads(document)
          except ValueError:
            continue
        documents.append(document)
    else:
      documents = extract_json_documents(profile_markup())

    for document in documents:
      user_id = find_user_id(document, username)
      if user_id:
        return user_id
    return None
