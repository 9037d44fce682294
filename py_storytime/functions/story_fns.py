"""Story cloud functions."""

import asyncio
import base64
import binascii

from common import config, models, story_filters, story_operations
from firebase_functions import https_fn, logger, options
from functions.function_utils import (AuthError, error_response,
                                      get_bool_param, get_float_param,
                                      get_param, get_user_id, handle_preamble,
                                      success_response)
from google.api_core.exceptions import GoogleAPICallError, RetryError
from services import cloud_storage, firestore
from storage import family_firestore, stories_firestore

_MAX_AUDIO_BYTES = 20 * 1024 * 1024


def _store_unavailable(req: https_fn.Request,
                      e: Exception) -> https_fn.Response:
  return error_response(f'Stories are unavailable right now: {e}',
                        error_type='store_unavailable',
                        req=req,
                        status=503)


def _can_view_child(caller_id: str, child_id: str) -> bool:
  """A child sees its own stories; a parent sees its family's children."""
  if caller_id == child_id:
    return True
  caller = family_firestore.get_user_profile(caller_id)
  child = family_firestore.get_user_profile(child_id)
  if not caller or not child or caller.is_child:
    return False
  return bool(caller.family_id) and caller.family_id == child.family_id


def _owned_story(req: https_fn.Request, user_id: str,
                 story_id: str) -> models.Story | https_fn.Response:
  story = stories_firestore.get_story(story_id)
  if story is None:
    return error_response(f'Story not found: {story_id}',
                          error_type='not_found',
                          req=req,
                          status=404)
  if story.user_id != user_id:
    return error_response('Not allowed to modify this story',
                          error_type='forbidden',
                          req=req,
                          status=403)
  return story


def _stories_payload(stories: list[models.Story]) -> dict:
  return {"stories": [story.to_json_dict() for story in stories]}


@https_fn.on_request(
  memory=options.MemoryOption.MB_512,
  timeout_sec=60,
)
def get_child_stories(req: https_fn.Request) -> https_fn.Response:
  """List the published stories visible to a child, newest first."""
  try:
    if response := handle_preamble(req, ('GET', 'POST')):
      return response

    user_id = get_user_id(req)
    if not user_id:
      return error_response('User not authenticated', req=req, status=401)

    child_id = get_param(req, 'child_id', required=True)
    status = models.StoryStatusFilter.parse(get_param(req, 'status'))
    term = get_param(req, 'search')

    if not _can_view_child(user_id, child_id):
      return error_response('Not allowed to view these stories',
                            error_type='forbidden',
                            req=req,
                            status=403)

    stories = asyncio.run(
      story_operations.fetch_stories_for_child(
        child_id,
        timeout_sec=config.CHILD_STORIES_FETCH_TIMEOUT_SEC,
      ))
    stories = story_filters.apply_filters(stories, status=status, term=term)

    logger.info(f'Returning {len(stories)} stories for child {child_id}')
    return success_response(_stories_payload(stories), req=req)
  except AuthError as e:
    return error_response(str(e), req=req, status=401)
  except ValueError as e:
    return error_response(str(e), error_type='invalid_request', req=req,
                          status=400)
  except firestore.StoreUnavailableError as e:
    return _store_unavailable(req, e)
  except story_operations.FetchCancelledError as e:
    return error_response(str(e), error_type='cancelled', req=req, status=504)


@https_fn.on_request(
  memory=options.MemoryOption.MB_512,
  timeout_sec=60,
)
def get_my_stories(req: https_fn.Request) -> https_fn.Response:
  """List a parent's stories: their own, the family's, or one child's."""
  try:
    if response := handle_preamble(req, ('GET', 'POST')):
      return response

    user_id = get_user_id(req)
    if not user_id:
      return error_response('User not authenticated', req=req, status=401)

    child_filter = get_param(req, 'child', default='all')
    status = models.StoryStatusFilter.parse(get_param(req, 'status'))
    term = get_param(req, 'search')

    profile = family_firestore.get_user_profile(user_id)
    if profile is None or profile.is_child:
      return error_response('Only parents can list family stories',
                            error_type='forbidden',
                            req=req,
                            status=403)

    if child_filter not in ('all', 'mine') and not _can_view_child(
        user_id, child_filter):
      return error_response('Not allowed to view these stories',
                            error_type='forbidden',
                            req=req,
                            status=403)

    stories = asyncio.run(
      story_operations.fetch_parent_stories(
        user_id,
        profile.family_id,
        child_filter,
        status,
        timeout_sec=config.CHILD_STORIES_FETCH_TIMEOUT_SEC,
      ))
    stories = story_filters.apply_filters(stories, status=status, term=term)
    return success_response(_stories_payload(stories), req=req)
  except AuthError as e:
    return error_response(str(e), req=req, status=401)
  except ValueError as e:
    return error_response(str(e), error_type='invalid_request', req=req,
                          status=400)
  except firestore.StoreUnavailableError as e:
    return _store_unavailable(req, e)
  except story_operations.FetchCancelledError as e:
    return error_response(str(e), error_type='cancelled', req=req, status=504)


@https_fn.on_request(
  memory=options.MemoryOption.MB_256,
  timeout_sec=30,
)
def toggle_story_favorite(req: https_fn.Request) -> https_fn.Response:
  """Mark or unmark one of the caller's stories as a favorite."""
  try:
    if response := handle_preamble(req, ('POST', )):
      return response

    user_id = get_user_id(req)
    if not user_id:
      return error_response('User not authenticated', req=req, status=401)

    story_id = get_param(req, 'story_id', required=True)
    is_favorite = get_bool_param(req, 'is_favorite', required=True)

    story = _owned_story(req, user_id, story_id)
    if isinstance(story, https_fn.Response):
      return story

    stories_firestore.set_story_favorite(story_id, is_favorite)
    return success_response({
      "story_id": story_id,
      "is_favorite": is_favorite
    },
                            req=req)
  except AuthError as e:
    return error_response(str(e), req=req, status=401)
  except ValueError as e:
    return error_response(str(e), error_type='invalid_request', req=req,
                          status=400)
  except (firestore.StoreUnavailableError, GoogleAPICallError, RetryError) as e:
    return _store_unavailable(req, e)


@https_fn.on_request(
  memory=options.MemoryOption.MB_256,
  timeout_sec=30,
)
def set_story_published(req: https_fn.Request) -> https_fn.Response:
  """Publish a story to the family, or take it back to drafts."""
  try:
    if response := handle_preamble(req, ('POST', )):
      return response

    user_id = get_user_id(req)
    if not user_id:
      return error_response('User not authenticated', req=req, status=401)

    story_id = get_param(req, 'story_id', required=True)
    is_published = get_bool_param(req, 'is_published', required=True)

    story = _owned_story(req, user_id, story_id)
    if isinstance(story, https_fn.Response):
      return story

    stories_firestore.set_story_publish_status(story_id, is_published)
    return success_response(
      {
        "story_id": story_id,
        "is_published": is_published
      },
      req=req,
    )
  except AuthError as e:
    return error_response(str(e), req=req, status=401)
  except ValueError as e:
    return error_response(str(e), error_type='invalid_request', req=req,
                          status=400)
  except (firestore.StoreUnavailableError, GoogleAPICallError, RetryError) as e:
    return _store_unavailable(req, e)


@https_fn.on_request(
  memory=options.MemoryOption.GB_1,
  timeout_sec=120,
)
def upload_story_audio(req: https_fn.Request) -> https_fn.Response:
  """Store a recorded narration for a story.

  Expects a base64-encoded MP3 in `audio` and the target `story_id`. The file
  goes to Cloud Storage, an 'audios' record is written and the story's
  `audioUrl` is pointed at the new file.
  """
  try:
    if response := handle_preamble(req, ('POST', )):
      return response

    user_id = get_user_id(req)
    if not user_id:
      return error_response('User not authenticated', req=req, status=401)

    story_id = get_param(req, 'story_id', required=True)
    encoded_audio = get_param(req, 'audio', required=True)
    duration = get_float_param(req, 'duration')

    story = _owned_story(req, user_id, story_id)
    if isinstance(story, https_fn.Response):
      return story

    try:
      audio_bytes = base64.b64decode(encoded_audio, validate=True)
    except (binascii.Error, TypeError) as e:
      raise ValueError(f'audio is not valid base64: {e}') from e
    if not audio_bytes:
      raise ValueError('audio is empty')
    if len(audio_bytes) > _MAX_AUDIO_BYTES:
      return error_response('audio is too large',
                            error_type='invalid_request',
                            req=req,
                            status=413)

    gcs_uri = cloud_storage.story_audio_gcs_uri(story_id)
    cloud_storage.upload_bytes_to_gcs(audio_bytes, gcs_uri, 'audio/mpeg')
    audio_url = cloud_storage.get_public_url(gcs_uri)

    audio_id = stories_firestore.create_audio_record(
      story_id=story_id,
      audio_url=audio_url,
      user_id=user_id,
      duration=duration,
    )
    stories_firestore.set_story_audio(story_id, audio_url, duration)

    logger.info(f'Stored narration {audio_id} for story {story_id}')
    return success_response(
      {
        "story_id": story_id,
        "audio_id": audio_id,
        "audio_url": audio_url,
      },
      req=req,
    )
  except AuthError as e:
    return error_response(str(e), req=req, status=401)
  except ValueError as e:
    return error_response(str(e), error_type='invalid_request', req=req,
                          status=400)
  except (firestore.StoreUnavailableError, GoogleAPICallError, RetryError) as e:
    return _store_unavailable(req, e)
