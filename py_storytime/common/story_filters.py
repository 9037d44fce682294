"""Filters applied to an already-fetched story list."""

from __future__ import annotations

from collections.abc import Iterable

from common import models

StatusArg = models.StoryStatusFilter | str | None


def filter_by_status(
  stories: Iterable[models.Story],
  status: StatusArg,
) -> list[models.Story]:
  """Keep the stories matching a list-screen status filter.

  Raises:
      ValueError: If `status` is not a known filter.
  """
  status = models.StoryStatusFilter.parse(status)
  match status:
    case models.StoryStatusFilter.FAVORITES:
      return [story for story in stories if story.is_favorite]
    case models.StoryStatusFilter.PUBLISHED:
      return [story for story in stories if story.is_published]
    case models.StoryStatusFilter.DRAFTS:
      return [story for story in stories if not story.is_published]
    case _:
      return list(stories)


def filter_by_search_term(
  stories: Iterable[models.Story],
  term: str | None,
) -> list[models.Story]:
  """Keep stories whose title or content contains `term`, ignoring case.

  An empty term keeps every story. The term is matched as typed, so
  surrounding spaces are part of it.
  """
  term = (term or '').lower()
  if not term:
    return list(stories)
  return [
    story for story in stories
    if term in story.title.lower() or term in story.content.lower()
  ]


def apply_filters(
  stories: Iterable[models.Story],
  *,
  status: StatusArg = None,
  term: str | None = None,
) -> list[models.Story]:
  """Apply the status filter and then the search term."""
  return filter_by_search_term(filter_by_status(stories, status), term)
