"""Firestore persistence helpers for stories."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, cast

from common import config, models
from firebase_functions import logger
from google.api_core.exceptions import GoogleAPICallError, RetryError
from google.cloud.firestore import (SERVER_TIMESTAMP, CollectionReference,
                                    DocumentReference, DocumentSnapshot,
                                    FieldFilter, Query)
from services import firestore as firestore_service


def _story_collection() -> CollectionReference:
  return firestore_service.db().collection(config.STORIES_COLLECTION)


def _audio_collection() -> CollectionReference:
  return firestore_service.db().collection(config.AUDIOS_COLLECTION)


def _story_ref(story_id: str) -> DocumentReference:
  return _story_collection().document(story_id)


def _doc_dict(snapshot: DocumentSnapshot) -> dict[str, Any]:
  """Return snapshot data as a plain dict."""
  data = snapshot.to_dict()
  if not isinstance(data, dict):
    return {}
  return data


def _stories_from_docs(docs: Iterable[DocumentSnapshot]) -> list[models.Story]:
  return [
    models.Story.from_firestore_dict(_doc_dict(doc), key=cast(str, doc.id))
    for doc in docs if doc.exists
  ]


def _require_story_id(story_id: str) -> str:
  story_id = (story_id or '').strip()
  if not story_id:
    raise ValueError('story_id is required')
  return story_id


def _user_stories_query(user_id: str) -> Query:
  return _story_collection().where(
    filter=FieldFilter('userId', '==', user_id))


def get_story(story_id: str) -> models.Story | None:
  """Return one story, or None if missing."""
  story_id = (story_id or '').strip()
  if not story_id:
    return None
  try:
    doc = _story_ref(story_id).get()
  except (GoogleAPICallError, RetryError) as e:
    raise firestore_service.StoreUnavailableError(
      f"Story read for {story_id} failed: {e}") from e
  if not doc.exists:
    return None
  return models.Story.from_firestore_dict(_doc_dict(doc), key=doc.id)


def create_story(
  story: models.Story,
  child_id: str | None = None,
) -> models.Story:
  """Create a story document, optionally tagged to a child.

  Firestore assigns the document ID; the creation and modification times are
  server timestamps.
  """
  ref = _story_collection().document()
  if child_id:
    story.child_id = child_id
  data = story.to_dict()
  data['id'] = ref.id
  data['createdAt'] = SERVER_TIMESTAMP
  data['updatedAt'] = SERVER_TIMESTAMP
  _ = ref.set(data)
  story.key = ref.id
  logger.info(f"Created story {ref.id} for user {story.user_id}")
  return story


def update_story(story_id: str, update_data: dict[str, Any]) -> None:
  """Apply a partial update to a story and bump its modification time."""
  story_id = _require_story_id(story_id)
  _ = _story_ref(story_id).update({
    **update_data,
    'updatedAt': SERVER_TIMESTAMP,
  })


def delete_story(story_id: str) -> None:
  """Delete a story document."""
  story_id = _require_story_id(story_id)
  _ = _story_ref(story_id).delete()
  logger.info(f"Deleted story {story_id}")


def set_story_favorite(story_id: str, is_favorite: bool) -> None:
  """Mark or unmark a story as a favorite."""
  update_story(story_id, {'isFavorite': bool(is_favorite)})


def set_story_publish_status(story_id: str, is_published: bool) -> None:
  """Publish a story to the family, or return it to drafts."""
  update_story(story_id, {'isPublished': bool(is_published)})


def get_stories_by_user_id(user_id: str) -> list[models.Story]:
  """All stories written by a user, newest first."""
  docs = _user_stories_query(user_id).order_by(
    'createdAt', direction=Query.DESCENDING).stream()
  return _stories_from_docs(docs)


def get_stories_by_family_id(family_id: str) -> list[models.Story]:
  """All published stories of a family, newest first."""
  docs = (_story_collection().where(
    filter=FieldFilter('familyId', '==', family_id)).where(
      filter=FieldFilter('isPublished', '==', True)).order_by(
        'createdAt', direction=Query.DESCENDING).stream())
  return _stories_from_docs(docs)


def get_favorite_stories(
  user_id: str,
  limit: int = config.FAVORITE_STORIES_LIMIT,
) -> list[models.Story]:
  """A user's favorite stories, most recently modified first."""
  docs = (_user_stories_query(user_id).where(
    filter=FieldFilter('isFavorite', '==', True)).order_by(
      'updatedAt', direction=Query.DESCENDING).limit(limit).stream())
  return _stories_from_docs(docs)


def get_draft_stories(user_id: str) -> list[models.Story]:
  """A user's unpublished stories, most recently modified first."""
  docs = (_user_stories_query(user_id).where(
    filter=FieldFilter('isPublished', '==', False)).order_by(
      'updatedAt', direction=Query.DESCENDING).stream())
  return _stories_from_docs(docs)


def get_published_stories(user_id: str) -> list[models.Story]:
  """A user's published stories, most recently modified first."""
  docs = (_user_stories_query(user_id).where(
    filter=FieldFilter('isPublished', '==', True)).order_by(
      'updatedAt', direction=Query.DESCENDING).stream())
  return _stories_from_docs(docs)


def get_recent_stories(
  user_id: str,
  limit: int = config.RECENT_STORIES_LIMIT,
) -> list[models.Story]:
  """A user's most recently created stories."""
  docs = _user_stories_query(user_id).order_by(
    'createdAt', direction=Query.DESCENDING).limit(limit).stream()
  return _stories_from_docs(docs)


def search_stories_by_title(user_id: str, term: str) -> list[models.Story]:
  """A user's stories whose title contains the term, case-insensitively.

  Firestore has no substring search, so the user's stories are read in title
  order and filtered here.
  """
  docs = _user_stories_query(user_id).order_by('title').stream()
  term = (term or '').strip().lower()
  return [
    story for story in _stories_from_docs(docs)
    if term in story.title.lower()
  ]


def set_story_audio(
  story_id: str,
  audio_url: str,
  duration: float | None = None,
) -> None:
  """Attach narration audio to a story."""
  update_data: dict[str, Any] = {'audioUrl': audio_url}
  if duration is not None:
    update_data['audioDuration'] = duration
  update_story(story_id, update_data)


def create_audio_record(
  *,
  story_id: str,
  audio_url: str,
  user_id: str | None,
  duration: float | None = None,
) -> str:
  """Record an uploaded narration in the 'audios' collection."""
  story_id = _require_story_id(story_id)
  ref = _audio_collection().document()
  _ = ref.set({
    'storyId': story_id,
    'audioUrl': audio_url,
    'duration': duration,
    'userId': user_id,
    'createdAt': SERVER_TIMESTAMP,
  })
  return ref.id


def get_story_with_audio(story_id: str) -> models.Story | None:
  """Return a story with its narration URL filled in, or None if missing.

  Older stories keep their narration only in the 'audios' collection. When
  found there, the URL is copied back onto the story document.
  """
  story = get_story(story_id)
  if not story:
    logger.info(f"Story not found: {story_id}")
    return None
  if story.audio_url:
    return story

  audio_docs = list(_audio_collection().where(
    filter=FieldFilter('storyId', '==', story.key)).limit(1).stream())
  if not audio_docs:
    logger.info(f"No narration found for story {story.key}")
    return story

  audio_data = _doc_dict(audio_docs[0])
  audio_url = audio_data.get('audioUrl')
  if not isinstance(audio_url, str) or not audio_url:
    return story

  story.audio_url = audio_url
  duration = audio_data.get('duration')
  if isinstance(duration, (int, float)) and not isinstance(duration, bool):
    story.audio_duration = duration

  try:
    update_story(story.key, {'audioUrl': audio_url})
  except GoogleAPICallError as e:
    logger.warn(f"Could not back-fill audioUrl on story {story.key}: {e}")
  return story
