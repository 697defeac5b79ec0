from __future__ import annotations

import base64
import logging
import mimetypes
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import replace
from typing import Callable
from urllib.parse import urlparse

from ig_followcheck.models import ListEntry, is_embedded_image
from ig_followcheck.web_api import InstagramWebError

logger = logging.getLogger(__name__)

ImageFetcher = Callable[[str, float], tuple[bytes, str]]
ProgressCallback = Callable[[float, str], None]

PROGRESS_BASE = 95
PROGRESS_RANGE = 4


class ConversionFailure(InstagramWebError):
  """One image could not be turned into a data URI."""


def to_data_uri(payload: bytes, content_type: str, *, source_url: str = "") -> str:
  mime = (content_type or "").split(";")[0].strip().lower()
  if not mime.startswith("image/"):
    guessed, _ = mimetypes.guess_type(urlparse(source_url).path)
    if guessed and guessed.startswith("image/") and not mime:
      mime = guessed
    else:
      raise ConversionFailure(f"Not an image ({content_type or 'no content type'})")
  if not payload:
    raise ConversionFailure("Empty image body")
  return f"data:{mime};base64,{base64.b64encode(payload).decode('ascii')}"


class AssetMaterializer:
  """Turns remote profile images into data URIs, a bounded batch at a time."""

  def __init__(
    self,
    fetch_image: ImageFetcher,
    *,
    concurrency_limit: int = 5,
    item_timeout_seconds: float = 3.0,
    batch_pause_seconds: float = 0.05,
    sleep: Callable[[float], None] = time.sleep,
  ) -> None:
    self._fetch_image = fetch_image
    self._concurrency_limit = max(1, concurrency_limit)
    self._item_timeout = item_timeout_seconds
    self._batch_pause = batch_pause_seconds
    self._sleep = sleep
    self._slots = threading.BoundedSemaphore(self._concurrency_limit)

  @property
  def concurrency_limit(self) -> int:
    return self._concurrency_limit

  def _convert(self, url: str, deadline: float) -> str:
    if not self._slots.acquire(timeout=max(0.0, deadline - time.monotonic())):
      raise ConversionFailure("No free download slot before the item timeout")
    try:
      payload, content_type = self._fetch_image(url, self._item_timeout)
    finally:
      self._slots.release()
    return to_data_uri(payload, content_type, source_url=url)

  def materialize(
    self,
    entries: list[ListEntry],
    on_progress: ProgressCallback | None = None,
  ) -> list[ListEntry]:
    results = list(entries)
    if not results:
      return results

    size = self._concurrency_limit
    batch_count = (len(results) + size - 1) // size
    converted = 0
    for batch_index, start in enumerate(range(0, len(results), size)):
      pending = [
        index
        for index in range(start, min(start + size, len(results)))
        if results[index].profile_pic and not is_embedded_image(results[index].profile_pic)
      ]
      if pending:
        # One pool per batch; hung workers are abandoned, never joined, and
        # keep their download slot until they really finish.
        deadline = time.monotonic() + self._item_timeout
        pool = ThreadPoolExecutor(max_workers=len(pending), thread_name_prefix="asset")
        try:
          futures: dict[Future[str], int] = {
            pool.submit(self._convert, results[index].profile_pic or "", deadline): index
            for index in pending
          }
          done, not_done = wait(futures, timeout=self._item_timeout)
        finally:
          pool.shutdown(wait=False, cancel_futures=True)

        for future in not_done:
          logger.debug("image timed out for @%s", results[futures[future]].username)
        for future in done:
          index = futures[future]
          try:
            data_uri = future.result()
          except Exception as exc:
            logger.debug("image conversion failed for @%s: %s", results[index].username, exc)
            continue
          results[index] = replace(results[index], profile_pic=data_uri)
          converted += 1

      if on_progress is not None:
        on_progress(
          PROGRESS_BASE + PROGRESS_RANGE * (batch_index + 1) / batch_count,
          f"Converting images... {converted}/{len(results)}",
        )
      if batch_index + 1 < batch_count:
        self._sleep(self._batch_pause)

    logger.info("Converted %d/%d profile pictures", converted, len(results))
    return results
