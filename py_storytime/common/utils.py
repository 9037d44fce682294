"""Utility functions"""

import datetime
import os
from typing import Any

EPOCH = datetime.datetime.fromtimestamp(0, tz=datetime.timezone.utc)


def timestamp_ms() -> int:
  """Returns the current time in epoch milliseconds."""
  return int(datetime.datetime.now(datetime.timezone.utc).timestamp() * 1000)


def is_emulator() -> bool:
  """Returns True if the code is running in an emulator."""
  return bool(os.environ.get('FUNCTIONS_EMULATOR'))


def to_datetime(value: Any) -> datetime.datetime | None:
  """Parse a stored timestamp into an aware UTC datetime.

  Handles Firestore timestamps (which are datetime subclasses), objects with
  `to_datetime()`, `{'seconds', 'nanoseconds'}` maps (with or without the
  leading underscore used by JSON exports), epoch milliseconds and ISO 8601
  strings. Returns None for anything else.
  """
  if value is None or isinstance(value, bool):
    return None

  if isinstance(value, datetime.datetime):
    if value.tzinfo is None:
      return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)

  if hasattr(value, 'to_datetime'):
    return to_datetime(value.to_datetime())

  if isinstance(value, dict):
    seconds = value.get('seconds', value.get('_seconds'))
    nanos = value.get('nanoseconds', value.get('_nanoseconds', 0)) or 0
    if not isinstance(seconds, (int, float)):
      return None
    return to_datetime(seconds * 1000 + nanos / 1_000_000)

  if isinstance(value, (int, float)):
    try:
      return datetime.datetime.fromtimestamp(value / 1000,
                                             tz=datetime.timezone.utc)
    except (OverflowError, OSError, ValueError):
      return None

  if isinstance(value, str):
    value = value.strip()
    if not value:
      return None
    try:
      parsed = datetime.datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
      return None
    return to_datetime(parsed)

  return None
