import base64
import threading
import time

import pytest

from conftest import RecordingSleep, make_entries
from ig_followcheck.assets import AssetMaterializer, ConversionFailure, to_data_uri
from ig_followcheck.models import ListEntry


class CountingFetcher:
  """Returns a tiny JPEG body and tracks how many fetches overlap."""

  def __init__(self, *, hang_on=(), fail_on=(), hold_seconds=0.0):
    self.hang_on = set(hang_on)
    self.fail_on = set(fail_on)
    self.hold_seconds = hold_seconds
    self.release = threading.Event()
    self.timeouts = []
    self.active = 0
    self.max_active = 0
    self._lock = threading.Lock()

  def __call__(self, url, timeout):
    with self._lock:
      self.timeouts.append(timeout)
      self.active += 1
      self.max_active = max(self.max_active, self.active)
    try:
      if url in self.hang_on:
        self.release.wait(10)
      if self.hold_seconds:
        time.sleep(self.hold_seconds)
      if url in self.fail_on:
        raise OSError("connection reset")
      return b"\xff\xd8img", "image/jpeg"
    finally:
      with self._lock:
        self.active -= 1


def test_hung_item_keeps_its_url_and_the_rest_convert():
  entries = make_entries("u", 12)
  fetcher = CountingFetcher(hang_on={entries[3].profile_pic})
  materializer = AssetMaterializer(fetcher, concurrency_limit=5, item_timeout_seconds=0.3, sleep=RecordingSleep())

  try:
    started = time.monotonic()
    results = materializer.materialize(entries)
    elapsed = time.monotonic() - started
  finally:
    fetcher.release.set()

  embedded = [entry for entry in results if entry.has_embedded_image]
  assert len(embedded) == 11
  assert results[3].profile_pic == entries[3].profile_pic
  assert [entry.username for entry in results] == [entry.username for entry in entries]
  assert elapsed < 3.0


def test_item_timeout_defaults_to_three_seconds():
  fetcher = CountingFetcher()

  AssetMaterializer(fetcher, sleep=RecordingSleep()).materialize(make_entries("u", 2))

  assert fetcher.timeouts == [3.0, 3.0]


def test_concurrency_never_exceeds_limit_and_batches_pause_between():
  fetcher = CountingFetcher(hold_seconds=0.02)
  sleep = RecordingSleep()
  progress = []

  AssetMaterializer(fetcher, concurrency_limit=5, sleep=sleep).materialize(
    make_entries("u", 12),
    on_progress=lambda pct, msg: progress.append(pct),
  )

  assert fetcher.max_active <= 5
  assert sleep.delays == [0.05, 0.05]
  assert progress == sorted(progress)
  assert progress[-1] == pytest.approx(99)
  assert all(95 < pct <= 99 for pct in progress)


def test_failures_are_tolerated_and_embedded_or_missing_images_are_skipped():
  entries = [
    ListEntry("done", profile_pic="data:image/png;base64,AAAA"),
    ListEntry("nopic"),
    ListEntry("broken", profile_pic="https://cdn.example/broken.jpg"),
    ListEntry("ok", profile_pic="https://cdn.example/ok.jpg"),
  ]
  fetcher = CountingFetcher(fail_on={"https://cdn.example/broken.jpg"})

  results = AssetMaterializer(fetcher, sleep=RecordingSleep()).materialize(entries)

  assert len(fetcher.timeouts) == 2
  assert results[0].profile_pic == "data:image/png;base64,AAAA"
  assert results[1].profile_pic is None
  assert results[2].profile_pic == "https://cdn.example/broken.jpg"
  assert results[3].profile_pic == "data:image/jpeg;base64," + base64.b64encode(b"\xff\xd8img").decode()


def test_empty_input_returns_empty_list():
  assert AssetMaterializer(CountingFetcher()).materialize([]) == []


def test_to_data_uri():
  assert to_data_uri(b"abc", "image/png; charset=binary") == "data:image/png;base64,YWJj"
  assert to_data_uri(b"abc", "", source_url="https://cdn.example/a.jpg?x=1").startswith("data:image/jpeg;base64,")
  with pytest.raises(ConversionFailure):
    to_data_uri(b"<html>", "text/html", source_url="https://cdn.example/a.jpg")
  with pytest.raises(ConversionFailure):
    to_data_uri(b"", "image/png")


def test_download_slots_stay_held_across_materialize_calls():
  entries = make_entries("u", 15)
  fetcher = CountingFetcher(hang_on={entry.profile_pic for entry in entries[:10]})
  materializer = AssetMaterializer(fetcher, concurrency_limit=5, item_timeout_seconds=0.2, sleep=RecordingSleep())

  try:
    first = materializer.materialize(entries[:5])
    results = materializer.materialize(entries[5:])
  finally:
    fetcher.release.set()

  assert fetcher.max_active <= 5
  assert not any(entry.has_embedded_image for entry in first)
  assert not any(entry.has_embedded_image for entry in results)
  assert len(fetcher.timeouts) == 5


def test_whole_hung_batch_does_not_push_in_flight_downloads_past_the_limit():
  entries = make_entries("u", 15)
  fetcher = CountingFetcher(hang_on={entry.profile_pic for entry in entries[:10]})
  materializer = AssetMaterializer(fetcher, concurrency_limit=5, item_timeout_seconds=0.2, sleep=RecordingSleep())

  try:
    started = time.monotonic()
    results = materializer.materialize(entries)
    elapsed = time.monotonic() - started
  finally:
    fetcher.release.set()

  assert fetcher.max_active <= 5
  assert [entry.profile_pic for entry in results] == [entry.profile_pic for entry in entries]
  assert elapsed < 3.0
