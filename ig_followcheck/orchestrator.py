from __future__ import annotations

import copy
import logging
import random
import threading
import time
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable

from ig_followcheck.assets import AssetMaterializer
from ig_followcheck.collector import ListCollector, PageTransport
from ig_followcheck.config import Settings
from ig_followcheck.identity import IdentityResolver, PageContext
from ig_followcheck.models import (
  CollectionResult,
  ListEntry,
  RelationshipType,
  RunState,
  RunStatus,
)
from ig_followcheck.reconcile import reconcile
from ig_followcheck.retry_policy import RetryPolicy
from ig_followcheck.transports import FallbackTransport, PrimaryTransport
from ig_followcheck.web_api import InstagramWebClient

logger = logging.getLogger(__name__)


class StageError(RuntimeError):
  """A pipeline stage failed; the message is what the user sees."""


class CollectionOrchestrator:
  """Runs identity -> followers -> following -> reconcile -> images.

  The run executes on one worker thread, which is the only writer of the
  state. Everyone else reads deep-copied snapshots.
  """

  def __init__(
    self,
    *,
    resolver: IdentityResolver,
    primary: PageTransport,
    fallback: PageTransport,
    materializer: AssetMaterializer | None = None,
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], None] = time.sleep,
    rng: random.Random | None = None,
  ) -> None:
    self._resolver = resolver
    self._primary = primary
    self._fallback = fallback
    self._materializer = materializer
    self._collector = ListCollector(
      policy=policy,
      sleep=sleep,
      rng=rng,
      on_progress=self._update_progress,
    )
    self._state = RunState()
    self._condition = threading.Condition()
    self._worker: threading.Thread | None = None

  @classmethod
  def from_settings(
    cls,
    settings: Settings,
    *,
    client: InstagramWebClient | None = None,
    materialize_images: bool = True,
  ) -> "CollectionOrchestrator":
    web = client or InstagramWebClient(settings)
    materializer = None
    if materialize_images:
      materializer = AssetMaterializer(
        lambda url, timeout: web.download_image(url, timeout=timeout),
        concurrency_limit=settings.image_concurrency,
        item_timeout_seconds=settings.image_timeout_seconds,
      )
    return cls(
      resolver=IdentityResolver(web),
      primary=PrimaryTransport(web),
      fallback=FallbackTransport(web, entry_cap=settings.fallback_entry_cap),
      materializer=materializer,
    )

  # Inbound control operations

  def ping(self) -> dict[str, str]:
    return {"status": "ok"}

  def is_running(self) -> bool:
    return self._worker is not None and self._worker.is_alive()

  def start(self, subject_hint: str | None, context: PageContext | None = None) -> dict[str, Any]:
    with self._condition:
      if self.is_running():
        return {"success": False, "message": "Analysis already running"}
      self._reset()
      self._worker = threading.Thread(
        target=self._run_pipeline,
        args=(subject_hint, context),
        name="followcheck-run",
        daemon=True,
      )
      self._worker.start()
    return {"success": True, "message": "Analysis started"}

  def run(self, subject_hint: str | None, context: PageContext | None = None) -> RunState:
    with self._condition:
      if self.is_running():
        raise RuntimeError("Analysis already running")
      self._reset()
    self._run_pipeline(subject_hint, context)
    return self.poll_status()

  def poll_status(self) -> RunState:
    with self._condition:
      return copy.deepcopy(self._state)

  def wait_for_change(self, version: int, timeout: float | None = None) -> RunState:
    """Block until the state version moves past `version` or the run ends."""
    with self._condition:
      self._condition.wait_for(
        lambda: self._state.version != version or self._state.status.is_terminal,
        timeout=timeout,
      )
      return copy.deepcopy(self._state)

  def join(self, timeout: float | None = None) -> None:
    if self._worker is not None:
      self._worker.join(timeout)

  # State mutation, worker thread only

  def _reset(self) -> None:
    self._state = RunState(
      status=RunStatus.RUNNING,
      message="Starting analysis...",
      started_at=datetime.now().isoformat(timespec="seconds"),
      version=self._state.version + 1,
    )
    self._condition.notify_all()

  def _mutate(self, **changes: Any) -> None:
    with self._condition:
      for key, value in changes.items():
        setattr(self._state, key, value)
      self._state.version += 1
      self._condition.notify_all()

  def _update_progress(self, percent: float, message: str) -> None:
    with self._condition:
      if self._state.status is not RunStatus.RUNNING:
        return
      self._state.progress = max(self._state.progress, min(100.0, float(percent)))
      self._state.message = message
      self._state.version += 1
      self._condition.notify_all()

  def _finish(self, status: RunStatus, message: str) -> None:
    with self._condition:
      self._state.status = status
      self._state.message = message
      if status is RunStatus.COMPLETE:
        self._state.progress = 100.0
      self._state.finished_at = datetime.now().isoformat(timespec="seconds")
      self._state.version += 1
      self._condition.notify_all()

  # Pipeline

  def _collect_stage(self, relationship: RelationshipType, user_id: str) -> CollectionResult:
    try:
      return self._collector.collect_with_fallback(self._primary, self._fallback, user_id, relationship)
    except Exception as exc:
      raise StageError(f"Error fetching {relationship.value}: {exc}") from exc

  def _run_pipeline(self, subject_hint: str | None, context: PageContext | None) -> None:
    try:
      self._update_progress(5, "Detecting username...")
      try:
        subject = self._resolver.resolve(subject_hint, context)
      except Exception as exc:
        raise StageError(str(exc)) from exc
      self._mutate(subject=subject)
      self._update_progress(10, f"Found @{subject.username}, fetching followers...")

      followers = self._collect_stage(RelationshipType.FOLLOWERS, subject.user_id)
      self._mutate(followers=followers)
      self._update_progress(55, f"Got {len(followers)} followers, fetching following...")

      following = self._collect_stage(RelationshipType.FOLLOWING, subject.user_id)
      self._mutate(following=following)

      reconciled = reconcile(followers.entries, following.entries)
      self._update_progress(95, "Converting profile pictures...")
      converted = self._materialize(reconciled.display_set)

      followers = replace(followers, entries=_merge_images(followers.entries, converted))
      following = replace(following, entries=_merge_images(following.entries, converted))
      final = reconcile(followers.entries, following.entries)
      self._mutate(
        followers=followers,
        following=following,
        not_reciprocating=final.not_reciprocating,
        admirers=final.admirers,
      )
      self._finish(RunStatus.COMPLETE, "Analysis complete!")
      logger.info(
        "Analysis complete: %d followers, %d following, %d not following back, %d admirers",
        len(followers),
        len(following),
        len(final.not_reciprocating),
        len(final.admirers),
      )
    except StageError as exc:
      logger.error("Analysis failed: %s", exc)
      self._finish(RunStatus.ERROR, str(exc))
    except Exception as exc:
      logger.exception("Analysis error")
      self._finish(RunStatus.ERROR, str(exc) or type(exc).__name__)

  def _materialize(self, display_set: list[ListEntry]) -> dict[str, str]:
    if self._materializer is None or not display_set:
      return {}
    converted = self._materializer.materialize(display_set, on_progress=self._update_progress)
    return {
      entry.username: entry.profile_pic
      for entry in converted
      if entry.profile_pic and entry.has_embedded_image
    }


def _merge_images(entries: list[ListEntry], converted: dict[str, str]) -> list[ListEntry]:
  if not converted:
    return entries
  return [
    replace(entry, profile_pic=converted[entry.username]) if entry.username in converted else entry
    for entry in entries
  ]
