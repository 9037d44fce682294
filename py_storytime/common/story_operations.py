"""Operations for assembling the story lists shown to children and parents."""

from __future__ import annotations

import asyncio
import dataclasses
import enum
from typing import Any, Iterable

from common import config, models
from firebase_functions import logger
from google.api_core.exceptions import GoogleAPICallError, RetryError
from services import firestore
from storage import stories_firestore


class Error(Exception):
  """Base class for exceptions in this module."""


class FetchCancelledError(Error):
  """A story fetch was abandoned because its deadline passed."""


class FetchState(enum.Enum):
  """States a single child story fetch moves through."""
  START = "start"
  RESOLVING_GROUP = "resolving_group"
  NOT_FOUND = "not_found"
  DUAL_QUERYING = "dual_querying"
  MERGING = "merging"
  FALLBACK_QUERYING = "fallback_querying"
  FILTERING = "filtering"
  SORTING = "sorting"
  DONE = "done"
  FAILED = "failed"


@dataclasses.dataclass
class FetchResult:
  """Stories returned by a child story fetch, with how they were obtained."""
  stories: list[models.Story]
  transitions: list[FetchState]
  used_fallback: bool = False

  @property
  def state(self) -> FetchState:
    """The final state of the fetch."""
    return self.transitions[-1]


class _FetchTracker:
  """Records and logs the state transitions of one fetch."""

  def __init__(self, child_id: str):
    self.child_id = child_id
    self.transitions = [FetchState.START]

  def advance(self, state: FetchState) -> None:
    logger.info(
      f"Story fetch for child {self.child_id}: "
      f"{self.transitions[-1].value} -> {state.value}")
    self.transitions.append(state)


def merge_views(
  direct: Iterable[models.Story],
  family: Iterable[models.Story],
) -> list[models.Story]:
  """Merge the direct and family views, keeping the first story seen per ID.

  Direct stories are inserted first, so a story present in both views keeps
  its direct-view copy. Returned stories are copies tagged with the view that
  supplied them.
  """
  merged: dict[str | None, models.Story] = {}
  for provenance, stories in (
    (models.StoryProvenance.DIRECT, direct),
    (models.StoryProvenance.FAMILY, family),
  ):
    for story in stories:
      if story.key in merged:
        continue
      merged[story.key] = dataclasses.replace(story, provenance=provenance)
  return list(merged.values())


def filter_published(stories: Iterable[models.Story]) -> list[models.Story]:
  """Keep only published stories."""
  return [story for story in stories if story.is_published is True]


def sort_by_created_desc(stories: Iterable[models.Story]) -> list[models.Story]:
  """Sort newest first; equal timestamps are ordered by story ID.

  Stories without a creation time sort as if created at the epoch.
  """
  by_key = sorted(stories, key=lambda story: story.key or '')
  return sorted(by_key,
                key=lambda story: story.created_at_or_epoch,
                reverse=True)


def _to_stories(
  records: Iterable[dict[str, Any]],
  provenance: models.StoryProvenance | None = None,
) -> list[models.Story]:
  stories = []
  for record in records:
    story = models.Story.from_firestore_dict(record, key=record.get('id'))
    story.provenance = provenance
    stories.append(story)
  return stories


async def _query_views(
  child_id: str,
  family_id: str | None,
) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
  """Run the direct and family view queries concurrently.

  If either query fails, the other is cancelled before the error propagates.
  """

  async def _no_records() -> list[dict[str, Any]]:
    return []

  direct_query = firestore.query_records(config.STORIES_COLLECTION, [
    ('childId', '==', child_id),
    ('isPublished', '==', True),
  ])
  if family_id:
    family_query = firestore.query_records(config.STORIES_COLLECTION, [
      ('familyId', '==', family_id),
      ('isPublished', '==', True),
    ])
  else:
    family_query = _no_records()

  tasks = [
    asyncio.ensure_future(direct_query),
    asyncio.ensure_future(family_query),
  ]
  try:
    direct_records, family_records = await asyncio.gather(*tasks)
  except BaseException:
    for task in tasks:
      task.cancel()
    raise
  return direct_records, family_records


async def _reconciling_fetch(child_id: str,
                             tracker: _FetchTracker) -> FetchResult:
  used_fallback = False
  tracker.advance(FetchState.RESOLVING_GROUP)
  try:
    profile = await firestore.get_profile(child_id)
    if not profile:
      logger.warn(f"Child profile not found for {child_id}")
      tracker.advance(FetchState.NOT_FOUND)
      tracker.advance(FetchState.DONE)
      return FetchResult(stories=[], transitions=tracker.transitions)
    if not profile.family_id:
      logger.warn(f"Child {child_id} has no family; using direct stories only")

    tracker.advance(FetchState.DUAL_QUERYING)
    direct_records, family_records = await _query_views(
      child_id, profile.family_id)
  except firestore.StoreUnavailableError as e:
    logger.warn(f"Story query for child {child_id} failed, falling back: {e}")
    tracker.advance(FetchState.FALLBACK_QUERYING)
    records = await firestore.query_records(config.STORIES_COLLECTION, [
      ('childId', '==', child_id),
    ])
    stories = _to_stories(records, models.StoryProvenance.FALLBACK)
    used_fallback = True
  else:
    logger.info(f"Child {child_id}: {len(direct_records)} direct stories, "
                f"{len(family_records)} family stories")
    tracker.advance(FetchState.MERGING)
    stories = merge_views(_to_stories(direct_records),
                          _to_stories(family_records))

  tracker.advance(FetchState.FILTERING)
  stories = filter_published(stories)
  tracker.advance(FetchState.SORTING)
  stories = sort_by_created_desc(stories)
  tracker.advance(FetchState.DONE)
  logger.info(f"Child {child_id}: returning {len(stories)} stories")
  return FetchResult(
    stories=stories,
    transitions=tracker.transitions,
    used_fallback=used_fallback,
  )


async def fetch_stories_for_child_with_state(
  child_id: str,
  *,
  timeout_sec: float | None = None,
) -> FetchResult:
  """Fetch the published stories visible to a child.

  A story is visible when it is tagged to the child or published to the
  child's family. Both views are queried concurrently, merged by story ID
  with direct stories taking precedence, re-checked for publication and
  sorted newest first. If either query (or the profile lookup) fails, a
  single query for stories tagged to the child is used instead.

  Args:
      child_id: ID of the child's profile document.
      timeout_sec: Optional deadline for the whole fetch.

  Returns:
      The stories, plus the states the fetch went through. An unknown child
      yields an empty list.

  Raises:
      ValueError: If child_id is blank.
      services.firestore.StoreUnavailableError: If the fallback query also
        failed.
      FetchCancelledError: If the deadline passed. Queries still in flight
        are cancelled.
  """
  child_id = (child_id or '').strip()
  if not child_id:
    raise ValueError("child_id is required")

  tracker = _FetchTracker(child_id)
  try:
    if timeout_sec is None:
      return await _reconciling_fetch(child_id, tracker)
    try:
      return await asyncio.wait_for(_reconciling_fetch(child_id, tracker),
                                    timeout=timeout_sec)
    except asyncio.TimeoutError as e:
      raise FetchCancelledError(
        f"Story fetch for child {child_id} timed out after {timeout_sec}s"
      ) from e
  except (firestore.StoreUnavailableError, FetchCancelledError) as e:
    tracker.advance(FetchState.FAILED)
    logger.error(f"Story fetch for child {child_id} failed: {e}")
    raise


async def fetch_stories_for_child(
  child_id: str,
  *,
  timeout_sec: float | None = None,
) -> list[models.Story]:
  """Fetch the published stories visible to a child, newest first.

  See `fetch_stories_for_child_with_state` for details.
  """
  result = await fetch_stories_for_child_with_state(child_id,
                                                    timeout_sec=timeout_sec)
  return result.stories


async def fetch_parent_stories(
  user_id: str,
  family_id: str | None,
  child_filter: str | None,
  status: models.StoryStatusFilter | str | None = None,
  *,
  timeout_sec: float | None = None,
) -> list[models.Story]:
  """Fetch the stories for a parent's story list.

  Args:
      user_id: The parent's user ID.
      family_id: The parent's family ID.
      child_filter: 'all' for every published family story, 'mine' for the
        parent's own stories, or a child ID for that child's stories.
      status: Status filter; 'mine' narrows drafts/published at query level.
      timeout_sec: Optional deadline for a child story fetch.
  """
  status = models.StoryStatusFilter.parse(status)
  child_filter = (child_filter or 'all').strip() or 'all'

  if child_filter == 'all':
    if not family_id:
      return []
    fetch_fn, owner_id = stories_firestore.get_stories_by_family_id, family_id
  elif child_filter == 'mine':
    if status == models.StoryStatusFilter.DRAFTS:
      fetch_fn = stories_firestore.get_draft_stories
    elif status == models.StoryStatusFilter.PUBLISHED:
      fetch_fn = stories_firestore.get_published_stories
    else:
      fetch_fn = stories_firestore.get_stories_by_user_id
    owner_id = user_id
  else:
    return await fetch_stories_for_child(child_filter, timeout_sec=timeout_sec)

  try:
    return await asyncio.to_thread(fetch_fn, owner_id)
  except (GoogleAPICallError, RetryError) as e:
    logger.warn(f"Parent story list '{child_filter}' for {user_id} failed: {e}")
    raise firestore.StoreUnavailableError(
      f"Story list for {owner_id} failed: {e}") from e
