from __future__ import annotations

import logging
import random
import time
from enum import Enum
from typing import Callable, Protocol

from ig_followcheck.models import (
  CollectionResult,
  CollectionStatus,
  Cursor,
  ListEntry,
  Page,
  RelationshipType,
)
from ig_followcheck.reconcile import dedupe_entries
from ig_followcheck.retry_policy import FailureKind, RetryPolicy, classify_failure
from ig_followcheck.web_api import InstagramWebError, UnauthorizedError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str], None]

PROGRESS_RANGE = 40


class RateLimitExceeded(InstagramWebError):
  """Rate-limit retries are used up for this collection stage."""


class CollectorState(str, Enum):
  AWAITING_PAGE = "awaiting_page"
  BACKOFF = "backoff"
  RETRY = "retry"
  DONE = "done"
  FAILED = "failed"


class PageTransport(Protocol):
  name: str
  label_suffix: str
  progress_scale: int
  entry_cap: int | None

  def fetch_page(self, user_id: str, relationship: RelationshipType, cursor: Cursor | None) -> Page:
    ...


def progress_percent(relationship: RelationshipType, collected: int, scale: int) -> float:
  return relationship.progress_base + min(PROGRESS_RANGE, collected / max(1, scale))


class ListCollector:
  def __init__(
    self,
    *,
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], None] = time.sleep,
    rng: random.Random | None = None,
    on_progress: ProgressCallback | None = None,
  ) -> None:
    self._policy = policy or RetryPolicy()
    self._sleep = sleep
    self._rng = rng
    self._on_progress = on_progress

  @property
  def policy(self) -> RetryPolicy:
    return self._policy

  def _emit(self, percent: float, message: str) -> None:
    if self._on_progress is not None:
      self._on_progress(percent, message)

  def collect(self, transport: PageTransport, user_id: str, relationship: RelationshipType) -> CollectionResult:
    """Drive one transport until the list is exhausted, capped or failed.

    A terminal failure after entries were collected yields a PARTIAL result;
    with nothing collected the failure is raised to the caller.
    """
    label = f"{relationship.value}{transport.label_suffix}"
    state = CollectorState.AWAITING_PAGE
    cursor: Cursor | None = None
    collected: list[ListEntry] = []
    pages = 0
    rate_attempts = 0
    transient_attempts = 0
    pending_delay = 0.0
    failure: InstagramWebError | None = None

    def percent() -> float:
      return progress_percent(relationship, len(collected), transport.progress_scale)

    while state not in {CollectorState.DONE, CollectorState.FAILED}:
      if state in {CollectorState.BACKOFF, CollectorState.RETRY}:
        self._sleep(pending_delay)
        state = CollectorState.AWAITING_PAGE
        continue

      try:
        page = transport.fetch_page(user_id, relationship, cursor)
      except InstagramWebError as exc:
        kind = classify_failure(exc)
        if kind is FailureKind.RATE_LIMITED:
          rate_attempts += 1
          if self._policy.should_retry(kind, rate_attempts):
            pending_delay = self._policy.backoff_delay(kind, rate_attempts)
            logger.warning("%s: rate limited, sleeping %.1fs (retry %d)", label, pending_delay, rate_attempts)
            self._emit(
              percent(),
              f"Rate limited, waiting... (retry {rate_attempts}/{self._policy.max_rate_limit_retries})",
            )
            state = CollectorState.BACKOFF
            continue
          failure = RateLimitExceeded(
            "Rate limited by Instagram. Please wait a few minutes and try again.",
            status_code=exc.status_code,
          )
        elif kind is FailureKind.TRANSIENT:
          transient_attempts += 1
          if self._policy.should_retry(kind, transient_attempts):
            pending_delay = self._policy.backoff_delay(kind, transient_attempts)
            logger.warning(
              "%s: %s, retrying (%d/%d)",
              label,
              exc,
              transient_attempts,
              self._policy.max_transient_retries,
            )
            state = CollectorState.RETRY
            continue
          failure = exc
        else:
          failure = exc
        state = CollectorState.FAILED
        continue

      rate_attempts = 0
      transient_attempts = 0
      pages += 1
      logger.debug("%s: page %d returned %d entries", label, pages, len(page.entries))

      if not page.entries:
        if not collected:
          logger.warning("%s: no entries returned on first request", label)
        state = CollectorState.DONE
        continue

      collected = dedupe_entries([*collected, *page.entries])

      cap = transport.entry_cap
      if cap is not None and len(collected) >= cap:
        collected = collected[:cap]
        self._emit(percent(), f"Fetching {label}: {len(collected)} found...")
        logger.info("%s: stopped at the %d entry cap", label, cap)
        state = CollectorState.DONE
        continue

      self._emit(percent(), f"Fetching {label}: {len(collected)} found...")

      if page.next_cursor is None:
        state = CollectorState.DONE
        continue

      cursor = page.next_cursor
      self._sleep(self._policy.page_delay(self._rng))

    entries = collected
    if state is CollectorState.FAILED:
      assert failure is not None
      if not entries:
        raise failure
      logger.warning("%s: continuing with %d entries collected (%s)", label, len(entries), failure)
      return CollectionResult(
        relationship=relationship,
        entries=entries,
        status=CollectionStatus.PARTIAL,
        transport=transport.name,
        pages=pages,
        error=str(failure),
      )

    logger.info("%s: %d entries across %d pages", label, len(entries), pages)
    return CollectionResult(
      relationship=relationship,
      entries=entries,
      status=CollectionStatus.COMPLETE if entries else CollectionStatus.EMPTY,
      transport=transport.name,
      pages=pages,
    )

  def collect_with_fallback(
    self,
    primary: PageTransport,
    fallback: PageTransport,
    user_id: str,
    relationship: RelationshipType,
  ) -> CollectionResult:
    """Primary transport first; the fallback runs at most once.

    The fallback is used when the primary comes back empty or fails with
    anything but UnauthorizedError.
    """
    try:
      result = self.collect(primary, user_id, relationship)
    except UnauthorizedError:
      raise
    except InstagramWebError as exc:
      logger.warning("%s: primary transport failed (%s), trying %s", relationship.value, exc, fallback.name)
      self._emit(
        progress_percent(relationship, 0, fallback.progress_scale),
        f"Trying alternative method for {relationship.value}...",
      )
      try:
        return self.collect(fallback, user_id, relationship)
      except InstagramWebError as fallback_exc:
        logger.error("%s: fallback transport failed too (%s)", relationship.value, fallback_exc)
        raise exc from fallback_exc

    if result.entries:
      return result

    logger.warning("%s: primary transport returned 0 entries, trying %s", relationship.value, fallback.name)
    self._emit(
      progress_percent(relationship, 0, fallback.progress_scale),
      f"Trying alternative method for {relationship.value}...",
    )
    return self.collect(fallback, user_id, relationship)
