from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from ig_followcheck.models import ListEntry


def dedupe_entries(entries: Iterable[ListEntry]) -> list[ListEntry]:
  """Unique by username; first position is kept, the last-seen values win."""
  by_username: dict[str, ListEntry] = {}
  for entry in entries:
    by_username[entry.username] = entry
  return list(by_username.values())


@dataclass(frozen=True)
class Reconciliation:
  not_reciprocating: list[ListEntry] = field(default_factory=list)
  admirers: list[ListEntry] = field(default_factory=list)

  @property
  def display_set(self) -> list[ListEntry]:
    return [*self.not_reciprocating, *self.admirers]


def reconcile(followers: Iterable[ListEntry], following: Iterable[ListEntry]) -> Reconciliation:
  followers = list(followers)
  following = list(following)
  follower_names = {entry.username for entry in followers}
  following_names = {entry.username for entry in following}
  return Reconciliation(
    not_reciprocating=[entry for entry in following if entry.username not in follower_names],
    admirers=[entry for entry in followers if entry.username not in following_names],
  )
