"""Backoff and retry eligibility for paginated list collection.

Everything here is pure: the collector asks the policy what to do with a
failure and how long to wait, and performs the waiting itself.
"""
from __future__ import annotations

import random
from dataclasses import dataclass
from enum import Enum

from ig_followcheck.web_api import (
  HttpStatusError,
  MalformedPayloadError,
  RateLimitedError,
  TransientNetworkError,
  UnauthorizedError,
)


class FailureKind(str, Enum):
  RATE_LIMITED = "rate_limited"
  UNAUTHORIZED = "unauthorized"
  TRANSIENT = "transient"
  FATAL = "fatal"


def classify_failure(exc: BaseException) -> FailureKind:
  if isinstance(exc, RateLimitedError):
    return FailureKind.RATE_LIMITED
  if isinstance(exc, UnauthorizedError):
    return FailureKind.UNAUTHORIZED
  if isinstance(exc, (TransientNetworkError, HttpStatusError, MalformedPayloadError)):
    return FailureKind.TRANSIENT
  return FailureKind.FATAL


@dataclass(frozen=True)
class RetryPolicy:
  max_transient_retries: int = 3
  transient_delay_seconds: float = 2.0
  max_rate_limit_retries: int = 3
  rate_limit_base_delay_seconds: float = 5.0
  page_delay_min_seconds: float = 1.0
  page_delay_max_seconds: float = 1.5

  def retry_budget(self, kind: FailureKind) -> int:
    if kind is FailureKind.RATE_LIMITED:
      return self.max_rate_limit_retries
    if kind is FailureKind.TRANSIENT:
      return self.max_transient_retries
    return 0

  def should_retry(self, kind: FailureKind, attempt: int) -> bool:
    """`attempt` is the 1-based count of consecutive failures of this kind."""
    return attempt <= self.retry_budget(kind)

  def backoff_delay(self, kind: FailureKind, attempt: int) -> float:
    if kind is FailureKind.RATE_LIMITED:
      return self.rate_limit_base_delay_seconds * max(1, attempt)
    if kind is FailureKind.TRANSIENT:
      return self.transient_delay_seconds
    return 0.0

  def page_delay(self, rng: random.Random | None = None) -> float:
    source = rng or random
    return source.uniform(self.page_delay_min_seconds, self.page_delay_max_seconds)
