"""Tests for stories_firestore storage helpers."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from common import models
from google.api_core.exceptions import ServiceUnavailable
from storage import stories_firestore


class _DummyDoc:

  def __init__(self,
               doc_id: str,
               data: dict[str, object] | None,
               exists: bool = True):
    self.id = doc_id
    self._data = data
    self.exists = exists

  def to_dict(self):
    return self._data


@pytest.fixture(name='collection')
def collection_fixture(monkeypatch):
  collection = MagicMock()
  monkeypatch.setattr(stories_firestore, '_story_collection',
                      lambda: collection)
  monkeypatch.setattr(stories_firestore, 'SERVER_TIMESTAMP', 'TS')
  return collection


def test_get_story_returns_model(collection):
  collection.document.return_value.get.return_value = _DummyDoc(
    's1', {
      'title': 'Moon Boat',
      'imageUrl': 'https://cdn/cover.png'
    })

  story = stories_firestore.get_story(' s1 ')

  collection.document.assert_called_once_with('s1')
  assert story.key == 's1'
  assert story.title == 'Moon Boat'
  assert story.cover_image_url == 'https://cdn/cover.png'


def test_get_story_missing_or_blank_returns_none(collection):
  collection.document.return_value.get.return_value = _DummyDoc('s1',
                                                                None,
                                                                exists=False)

  assert stories_firestore.get_story('s1') is None
  assert stories_firestore.get_story('') is None


def test_create_story_tags_child_and_sets_server_timestamps(collection):
  ref = MagicMock()
  ref.id = 'new-id'
  collection.document.return_value = ref

  story = stories_firestore.create_story(
    models.Story(title='Stars', user_id='p1', family_id='fam-1'),
    child_id='c1',
  )

  data = ref.set.call_args.args[0]
  assert data['id'] == 'new-id'
  assert data['childId'] == 'c1'
  assert data['familyId'] == 'fam-1'
  assert data['createdAt'] == 'TS'
  assert data['updatedAt'] == 'TS'
  assert story.key == 'new-id'
  assert story.child_id == 'c1'


def test_set_story_favorite_updates_flag_and_timestamp(collection):
  ref = collection.document.return_value

  stories_firestore.set_story_favorite('s1', True)

  collection.document.assert_called_once_with('s1')
  ref.update.assert_called_once_with({'isFavorite': True, 'updatedAt': 'TS'})


def test_set_story_publish_status_updates_flag(collection):
  ref = collection.document.return_value

  stories_firestore.set_story_publish_status('s1', False)

  ref.update.assert_called_once_with({
    'isPublished': False,
    'updatedAt': 'TS'
  })


def test_mutations_require_story_id(collection):
  with pytest.raises(ValueError, match='story_id is required'):
    stories_firestore.update_story(' ', {'title': 'x'})
  with pytest.raises(ValueError):
    stories_firestore.delete_story('')
  collection.document.assert_not_called()


def test_get_draft_stories_filters_and_orders(collection):
  query = collection.where.return_value.where.return_value
  query.order_by.return_value.stream.return_value = [
    _DummyDoc('d1', {
      'title': 'Draft',
      'isPublished': False
    }),
    _DummyDoc('gone', {}, exists=False),
  ]

  stories = stories_firestore.get_draft_stories('p1')

  assert [s.key for s in stories] == ['d1']
  first_filter = collection.where.call_args.kwargs['filter']
  second_filter = collection.where.return_value.where.call_args.kwargs[
    'filter']
  assert (first_filter.field_path, first_filter.value) == ('userId', 'p1')
  assert (second_filter.field_path, second_filter.value) == ('isPublished',
                                                             False)
  assert query.order_by.call_args.args == ('updatedAt',)


def test_search_stories_by_title_is_case_insensitive(collection):
  collection.where.return_value.order_by.return_value.stream.return_value = [
    _DummyDoc('s1', {'title': 'The Brave Dragon'}),
    _DummyDoc('s2', {'title': 'Sleepy Cat'}),
    _DummyDoc('s3', {}),
  ]

  stories = stories_firestore.search_stories_by_title('p1', '  DRAGON ')

  assert [s.key for s in stories] == ['s1']


def test_get_story_with_audio_returns_existing_audio(collection,
                                                     monkeypatch):
  collection.document.return_value.get.return_value = _DummyDoc(
    's1', {'audioUrl': 'https://cdn/a.mp3'})
  audio_collection = MagicMock()
  monkeypatch.setattr(stories_firestore, '_audio_collection',
                      lambda: audio_collection)

  story = stories_firestore.get_story_with_audio('s1')

  assert story.audio_url == 'https://cdn/a.mp3'
  audio_collection.where.assert_not_called()


def test_get_story_with_audio_backfills_from_audio_collection(
    collection, monkeypatch):
  ref = collection.document.return_value
  ref.get.return_value = _DummyDoc('s1', {'title': 'Owls'})
  audio_collection = MagicMock()
  audio_collection.where.return_value.limit.return_value.stream.return_value = [
    _DummyDoc('a1', {
      'audioUrl': 'https://cdn/owls.mp3',
      'duration': 61
    })
  ]
  monkeypatch.setattr(stories_firestore, '_audio_collection',
                      lambda: audio_collection)

  story = stories_firestore.get_story_with_audio('s1')

  assert story.audio_url == 'https://cdn/owls.mp3'
  assert story.audio_duration == 61
  ref.update.assert_called_once_with({
    'audioUrl': 'https://cdn/owls.mp3',
    'updatedAt': 'TS'
  })


def test_get_story_with_audio_ignores_backfill_failure(collection,
                                                       monkeypatch):
  ref = collection.document.return_value
  ref.get.return_value = _DummyDoc('s1', {'title': 'Owls'})
  ref.update.side_effect = ServiceUnavailable('down')
  audio_collection = MagicMock()
  audio_collection.where.return_value.limit.return_value.stream.return_value = [
    _DummyDoc('a1', {'audioUrl': 'https://cdn/owls.mp3'})
  ]
  monkeypatch.setattr(stories_firestore, '_audio_collection',
                      lambda: audio_collection)

  story = stories_firestore.get_story_with_audio('s1')

  assert story.audio_url == 'https://cdn/owls.mp3'


def test_get_story_with_audio_without_narration(collection, monkeypatch):
  collection.document.return_value.get.return_value = _DummyDoc(
    's1', {'title': 'Owls'})
  audio_collection = MagicMock()
  audio_collection.where.return_value.limit.return_value.stream.return_value = []
  monkeypatch.setattr(stories_firestore, '_audio_collection',
                      lambda: audio_collection)

  story = stories_firestore.get_story_with_audio('s1')

  assert story.key == 's1'
  assert story.audio_url is None
  collection.document.return_value.update.assert_not_called()


def test_get_favorite_stories_limits_and_orders(collection):
  query = collection.where.return_value.where.return_value
  query.order_by.return_value.limit.return_value.stream.return_value = [
    _DummyDoc('f1', {
      'title': 'Star Song',
      'isFavorite': True
    }),
  ]

  stories = stories_firestore.get_favorite_stories('p1', limit=3)

  assert [s.key for s in stories] == ['f1']
  assert stories[0].is_favorite
  fav_filter = collection.where.return_value.where.call_args.kwargs['filter']
  assert (fav_filter.field_path, fav_filter.value) == ('isFavorite', True)
  assert query.order_by.call_args.args == ('updatedAt',)
  assert query.order_by.call_args.kwargs == {
    'direction': stories_firestore.Query.DESCENDING
  }
  query.order_by.return_value.limit.assert_called_once_with(3)


def test_get_recent_stories_uses_default_limit(collection):
  query = collection.where.return_value
  query.order_by.return_value.limit.return_value.stream.return_value = [
    _DummyDoc('r2', {'title': 'Newer'}),
    _DummyDoc('r1', {'title': 'Older'}),
  ]

  stories = stories_firestore.get_recent_stories('p1')

  assert [s.key for s in stories] == ['r2', 'r1']
  user_filter = collection.where.call_args.kwargs['filter']
  assert (user_filter.field_path, user_filter.value) == ('userId', 'p1')
  assert query.order_by.call_args.args == ('createdAt',)
  query.order_by.return_value.limit.assert_called_once_with(
    stories_firestore.config.RECENT_STORIES_LIMIT)


def test_get_story_wraps_store_errors(collection):
  collection.document.return_value.get.side_effect = ServiceUnavailable(
    'down')

  with pytest.raises(stories_firestore.firestore_service.StoreUnavailableError):
    stories_firestore.get_story('s1')
