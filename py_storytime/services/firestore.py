"""Firestore clients and the record-level query adapter."""

from __future__ import annotations

import asyncio
from typing import Any, Sequence

import firebase_admin
from common import config, models
from firebase_admin import firestore
from firebase_functions import logger
from google.api_core.exceptions import GoogleAPICallError, RetryError
from google.cloud.firestore import AsyncClient, FieldFilter

_db = None  # pylint: disable=invalid-name
_async_db = None  # pylint: disable=invalid-name
_async_db_loop = None  # pylint: disable=invalid-name

RecordFilter = tuple[str, str, Any]


class Error(Exception):
  """Base class for exceptions in this module."""


class StoreUnavailableError(Error):
  """A Firestore read failed (network, timeout, permission, missing index)."""


def _new_async_client() -> AsyncClient:
  app = firebase_admin.get_app()
  return AsyncClient(project=app.project_id,
                     credentials=app.credential.get_credential())


def get_async_db() -> AsyncClient:
  """Get the firestore async client for the running event loop.

  The client's channel is bound to the loop it was first used on, and each
  HTTP request runs in its own loop, so a new client is made per loop.
  """
  global _async_db, _async_db_loop  # pylint: disable=global-statement
  try:
    loop = asyncio.get_running_loop()
  except RuntimeError:
    loop = None
  if _async_db is None or _async_db_loop is not loop:
    _async_db = _new_async_client()
    _async_db_loop = loop
  return _async_db


def db() -> firestore.client:
  """Get the firestore client."""
  global _db  # pylint: disable=global-statement
  if _db is None:
    _db = firestore.client()
  return _db


def _prepare_query(collection: str, filters: Sequence[RecordFilter]):
  """Build an async Firestore query with one FieldFilter per filter tuple."""
  query = get_async_db().collection(collection)
  for field_path, op_string, value in filters:
    query = query.where(filter=FieldFilter(field_path, op_string, value))
  return query


async def query_records(
  collection: str,
  filters: Sequence[RecordFilter],
) -> list[dict[str, Any]]:
  """Run an equality/inequality filtered query against a collection.

  Args:
      collection: Name of the Firestore collection.
      filters: (field, operator, value) tuples, combined with AND.

  Returns:
      Matching documents as dicts, each with its document id under 'id'.
      No ordering is guaranteed.

  Raises:
      StoreUnavailableError: If the query could not be completed.
  """
  try:
    docs = _prepare_query(collection, filters).stream()
    return [{
      **(doc.to_dict() or {}), 'id': doc.id
    } async for doc in docs if doc.exists]
  except (GoogleAPICallError, RetryError) as e:
    logger.warn(f"Query on '{collection}' with {list(filters)} failed: {e}")
    raise StoreUnavailableError(
      f"Query on '{collection}' failed: {e}") from e


async def get_profile(user_id: str) -> models.UserProfile | None:
  """Get a user or child profile by ID, or None if it does not exist.

  Raises:
      StoreUnavailableError: If the read could not be completed.
  """
  user_id = (user_id or '').strip()
  if not user_id:
    return None
  try:
    doc = await get_async_db().collection(
      config.USERS_COLLECTION).document(user_id).get()
  except (GoogleAPICallError, RetryError) as e:
    logger.warn(f"Profile read for {user_id} failed: {e}")
    raise StoreUnavailableError(f"Profile read for {user_id} failed: {e}") from e
  if not doc.exists:
    return None
  return models.UserProfile.from_firestore_dict(doc.to_dict(), key=doc.id)
