from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Union


EMBEDDED_IMAGE_PREFIX = "data:"


def is_embedded_image(ref: str | None) -> bool:
  return bool(ref) and ref.startswith(EMBEDDED_IMAGE_PREFIX)


class RelationshipType(str, Enum):
  FOLLOWERS = "followers"
  FOLLOWING = "following"

  @property
  def progress_base(self) -> int:
    # 0-10 is identity resolution, 95-100 is image materialization.
    return 10 if self is RelationshipType.FOLLOWERS else 55

  @property
  def query_hash(self) -> str:
    if self is RelationshipType.FOLLOWERS:
      return "c76146de99bb02f6415203be841dd25a"
    return "d04b0a864b4b54837c0d870b0e77e076"

  @property
  def edge_key(self) -> str:
    return "edge_followed_by" if self is RelationshipType.FOLLOWERS else "edge_follow"


@dataclass(frozen=True)
class SubjectIdentity:
  username: str
  user_id: str


@dataclass(frozen=True)
class ListEntry:
  username: str
  full_name: str | None = None
  profile_pic: str | None = None
  is_verified: bool = False
  user_id: str | None = None

  @property
  def has_embedded_image(self) -> bool:
    return is_embedded_image(self.profile_pic)

  @property
  def profile_url(self) -> str:
    return f"https://instagram.com/{self.username}"

  def to_dict(self) -> dict[str, object]:
    return {
      "username": self.username,
      "full_name": self.full_name,
      "profile_pic": self.profile_pic,
      "is_verified": self.is_verified,
      "user_id": self.user_id,
    }


@dataclass(frozen=True)
class PrimaryCursor:
  max_id: str


@dataclass(frozen=True)
class FallbackCursor:
  end_cursor: str | None
  has_next: bool


Cursor = Union[PrimaryCursor, FallbackCursor]


@dataclass
class Page:
  entries: list[ListEntry]
  next_cursor: Cursor | None
  status_code: int = 200


class CollectionStatus(str, Enum):
  COMPLETE = "complete"
  PARTIAL = "partial"
  EMPTY = "empty"


@dataclass
class CollectionResult:
  relationship: RelationshipType
  entries: list[ListEntry] = field(default_factory=list)
  status: CollectionStatus = CollectionStatus.EMPTY
  transport: str | None = None
  pages: int = 0
  error: str | None = None

  def __len__(self) -> int:
    return len(self.entries)

  @property
  def usernames(self) -> list[str]:
    return [entry.username for entry in self.entries]


class RunStatus(str, Enum):
  IDLE = "idle"
  RUNNING = "running"
  COMPLETE = "complete"
  ERROR = "error"

  @property
  def is_terminal(self) -> bool:
    return self in {RunStatus.COMPLETE, RunStatus.ERROR}


@dataclass
class RunState:
  status: RunStatus = RunStatus.IDLE
  progress: float = 0.0
  message: str = ""
  subject: SubjectIdentity | None = None
  followers: CollectionResult = field(
    default_factory=lambda: CollectionResult(RelationshipType.FOLLOWERS),
  )
  following: CollectionResult = field(
    default_factory=lambda: CollectionResult(RelationshipType.FOLLOWING),
  )
  not_reciprocating: list[ListEntry] = field(default_factory=list)
  admirers: list[ListEntry] = field(default_factory=list)
  started_at: str | None = None
  finished_at: str | None = None
  version: int = 0
