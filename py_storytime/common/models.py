"""Models for the Firestore database."""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from enum import Enum
from typing import Any

from common import utils

# Cover image field names written by different versions of the web client,
# in order of preference.
_COVER_IMAGE_FIELDS = ('coverImageUrl', 'coverImage', 'imageUrl')


class StoryProvenance(Enum):
  """Which query view first supplied a story to a merged result."""
  DIRECT = "direct"
  FAMILY = "family"
  FALLBACK = "fallback"


class StoryStatusFilter(Enum):
  """Status filters offered by the story list screens."""
  ALL = "all"
  FAVORITES = "favorites"
  PUBLISHED = "published"
  DRAFTS = "drafts"

  @classmethod
  def parse(cls, value: StoryStatusFilter | str | None) -> StoryStatusFilter:
    """Parse a filter from its string value. None means ALL.

    Raises:
        ValueError: If the string is not a known filter.
    """
    if value is None:
      return cls.ALL
    if isinstance(value, cls):
      return value
    try:
      return cls(str(value).strip().lower())
    except ValueError as e:
      raise ValueError(f"Unknown story status filter: {value}") from e


class UserRole(Enum):
  """Role of an account within a family."""
  UNKNOWN = "unknown"
  PARENT = "parent"
  CHILD = "child"


@dataclass(kw_only=True)
class Story:
  """A bedtime story stored in the 'stories' collection."""

  key: str | None = None
  title: str = ""
  content: str = ""

  user_id: str | None = None
  family_id: str | None = None
  child_id: str | None = None

  is_published: bool = False
  is_favorite: bool = False

  cover_image_url: str | None = None
  audio_url: str | None = None
  audio_duration: float | None = None

  age_group: str | None = None
  theme: str | None = None

  created_at: datetime.datetime | None = None
  updated_at: datetime.datetime | None = None

  # Set by the reconciling fetch; never stored.
  provenance: StoryProvenance | None = None

  @property
  def created_at_or_epoch(self) -> datetime.datetime:
    """Creation time, with missing timestamps treated as the epoch."""
    return self.created_at or utils.EPOCH

  @classmethod
  def from_firestore_dict(cls, data: dict | None, key: str) -> Story:
    """Create a Story from a Firestore document dictionary.

    This is the one place loosely-shaped story documents are canonicalized:
    camelCase fields are mapped, cover image aliases are collapsed, the
    boolean flags are only true when stored as literal True, and timestamps
    are parsed into aware datetimes.
    """
    data = dict(data or {})

    cover_image_url = None
    for field_name in _COVER_IMAGE_FIELDS:
      value = data.get(field_name)
      if isinstance(value, str) and value:
        cover_image_url = value
        break

    audio_duration = data.get('audioDuration')
    if isinstance(audio_duration, bool) or not isinstance(
        audio_duration, (int, float)):
      audio_duration = None

    return cls(
      key=key,
      title=_str_or_empty(data.get('title')),
      content=_str_or_empty(data.get('content')),
      user_id=_str_or_none(data.get('userId')),
      family_id=_str_or_none(data.get('familyId')),
      child_id=_str_or_none(data.get('childId')),
      is_published=data.get('isPublished') is True,
      is_favorite=data.get('isFavorite') is True,
      cover_image_url=cover_image_url,
      audio_url=_str_or_none(data.get('audioUrl')),
      audio_duration=audio_duration,
      age_group=_str_or_none(data.get('ageGroup')),
      theme=_str_or_none(data.get('theme')),
      created_at=utils.to_datetime(data.get('createdAt')),
      updated_at=utils.to_datetime(data.get('updatedAt')),
      provenance=_parse_enum_value(data.get('source'), StoryProvenance),
    )

  def to_dict(self, include_key: bool = False) -> dict[str, Any]:
    """Convert to a dictionary for Firestore storage.

    Timestamps are omitted; writers set them with server timestamps.
    """
    data = {
      'title': self.title,
      'content': self.content,
      'userId': self.user_id,
      'familyId': self.family_id,
      'childId': self.child_id,
      'isPublished': self.is_published,
      'isFavorite': self.is_favorite,
      'coverImageUrl': self.cover_image_url,
      'audioUrl': self.audio_url,
      'audioDuration': self.audio_duration,
      'ageGroup': self.age_group,
      'theme': self.theme,
    }
    if include_key:
      data['id'] = self.key
    return data

  def to_json_dict(self) -> dict[str, Any]:
    """Convert to a JSON-serializable dictionary for HTTP responses."""
    data = self.to_dict(include_key=True)
    data['createdAt'] = _isoformat(self.created_at)
    data['updatedAt'] = _isoformat(self.updated_at)
    data['source'] = self.provenance.value if self.provenance else None
    return data


@dataclass(kw_only=True)
class UserProfile:
  """A parent or child account stored in the 'users' collection."""

  key: str | None = None
  email: str | None = None
  display_name: str = ""
  role: UserRole = UserRole.UNKNOWN
  family_id: str | None = None
  age: int | None = None
  photo_url: str | None = None
  created_at: datetime.datetime | None = None

  @property
  def is_child(self) -> bool:
    """Whether this profile belongs to a child account."""
    return self.role == UserRole.CHILD

  @classmethod
  def from_firestore_dict(cls, data: dict | None, key: str) -> UserProfile:
    """Create a UserProfile from a Firestore document dictionary."""
    data = dict(data or {})
    age = data.get('age')
    if isinstance(age, bool) or not isinstance(age, int):
      age = None
    return cls(
      key=key,
      email=_str_or_none(data.get('email')),
      display_name=_str_or_empty(
        data.get('displayName') or data.get('name')),
      role=_parse_enum_value(data.get('role'), UserRole) or UserRole.UNKNOWN,
      family_id=_str_or_none(data.get('familyId')),
      age=age,
      photo_url=_str_or_none(data.get('photoURL') or data.get('photoUrl')),
      created_at=utils.to_datetime(data.get('createdAt')),
    )

  def to_dict(self, include_key: bool = False) -> dict[str, Any]:
    """Convert to a dictionary for Firestore storage."""
    data = {
      'email': self.email,
      'displayName': self.display_name,
      'role': self.role.value,
      'familyId': self.family_id,
      'age': self.age,
      'photoURL': self.photo_url,
    }
    if include_key:
      data['id'] = self.key
    return data


def _str_or_none(value: Any) -> str | None:
  if isinstance(value, str) and value:
    return value
  return None


def _str_or_empty(value: Any) -> str:
  return value if isinstance(value, str) else ""


def _isoformat(value: datetime.datetime | None) -> str | None:
  return value.isoformat() if value else None


def _parse_enum_value(value: Any, enum_cls: type[Enum]) -> Any:
  """Coerce a stored string to the given Enum, or None if missing/invalid."""
  if not value:
    return None
  try:
    return enum_cls(value)
  except ValueError:
    return None
