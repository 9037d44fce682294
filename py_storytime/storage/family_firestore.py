"""Firestore persistence helpers for family accounts."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, cast

from common import config, models
from firebase_functions import logger
from google.api_core.exceptions import GoogleAPICallError, RetryError
from google.cloud.firestore import (SERVER_TIMESTAMP, CollectionReference,
                                    DocumentReference, DocumentSnapshot,
                                    FieldFilter, Transaction, transactional)
from services import firestore as firestore_service


def _user_collection() -> CollectionReference:
  return firestore_service.db().collection(config.USERS_COLLECTION)


def _user_ref(user_id: str) -> DocumentReference:
  return _user_collection().document(user_id)


def _require_id(value: str, name: str) -> str:
  value = (value or '').strip()
  if not value:
    raise ValueError(f'{name} is required')
  return value


def get_user_profile(user_id: str) -> models.UserProfile | None:
  """Return a parent or child profile, or None if missing."""
  user_id = (user_id or '').strip()
  if not user_id:
    return None
  try:
    doc = _user_ref(user_id).get()
  except (GoogleAPICallError, RetryError) as e:
    raise firestore_service.StoreUnavailableError(
      f"Profile read for {user_id} failed: {e}") from e
  if not doc.exists:
    return None
  return models.UserProfile.from_firestore_dict(doc.to_dict(), key=doc.id)


def update_user_profile(user_id: str, update_data: dict[str, Any]) -> None:
  """Apply a partial update to a profile and bump its modification time."""
  user_id = _require_id(user_id, 'user_id')
  _ = _user_ref(user_id).update({
    **update_data,
    'updatedAt': SERVER_TIMESTAMP,
  })


def get_child_accounts(family_id: str) -> list[models.UserProfile]:
  """All child profiles belonging to a family."""
  family_id = (family_id or '').strip()
  if not family_id:
    return []
  docs = cast(
    Iterable[DocumentSnapshot],
    _user_collection().where(
      filter=FieldFilter('familyId', '==', family_id)).where(
        filter=FieldFilter('role', '==', models.UserRole.CHILD.value)).stream())
  return [
    models.UserProfile.from_firestore_dict(doc.to_dict(), key=doc.id)
    for doc in docs if doc.exists
  ]


def create_child_account(child: models.UserProfile) -> models.UserProfile:
  """Create a child profile in the parent's family."""
  family_id = _require_id(child.family_id, 'family_id')
  ref = _user_collection().document()
  child.key = ref.id
  child.family_id = family_id
  child.role = models.UserRole.CHILD
  data = child.to_dict(include_key=True)
  data['createdAt'] = SERVER_TIMESTAMP
  data['updatedAt'] = SERVER_TIMESTAMP
  _ = ref.set(data)
  logger.info(f"Created child account {ref.id} in family {family_id}")
  return child


def update_child_account(child_id: str, update_data: dict[str, Any]) -> None:
  """Apply a partial update to a child profile.

  The role and family of a child cannot be changed here.
  """
  update_data = {
    k: v
    for k, v in update_data.items() if k not in ('role', 'familyId', 'id')
  }
  update_user_profile(child_id, update_data)


def delete_child_account(child_id: str) -> None:
  """Delete a child profile."""
  child_id = _require_id(child_id, 'child_id')
  _ = _user_ref(child_id).delete()
  logger.info(f"Deleted child account {child_id}")


def send_contact_message(*, name: str, email: str, message: str) -> str:
  """Store a contact-form message and return its document ID."""
  if not (message or '').strip():
    raise ValueError('message is required')
  ref = firestore_service.db().collection(
    config.CONTACT_MESSAGES_COLLECTION).document()
  _ = ref.set({
    'name': (name or '').strip(),
    'email': (email or '').strip(),
    'message': message.strip(),
    'status': 'new',
    'createdAt': SERVER_TIMESTAMP,
  })
  return ref.id


@transactional
def _initialize_user_in_transaction(
  transaction: Transaction,
  user_id_internal: str,
  email: str,
  display_name: str,
) -> bool:
  """Create the parent profile inside a transaction.

  Returns:
      bool: True if a new document was created, False otherwise.
  """
  user_ref = _user_ref(user_id_internal)
  snapshot = user_ref.get(transaction=transaction)

  if snapshot.exists:
    logger.info(
      f"User document already exists for {user_id_internal}, skipping creation."
    )
    return False

  # A parent's user ID doubles as the family ID.
  transaction.set(
    user_ref, {
      'email': email,
      'displayName': display_name,
      'role': models.UserRole.PARENT.value,
      'familyId': user_id_internal,
      'createdAt': SERVER_TIMESTAMP,
      'updatedAt': SERVER_TIMESTAMP,
    })
  logger.info(
    f"Created parent profile for user: {user_id_internal} with email: {email}")
  return True


def initialize_user_document(user_id: str,
                             email: str,
                             display_name: str = '') -> bool:
  """Creates the parent profile for a new account if it doesn't exist.

  Args:
      user_id: The Firebase Authentication user ID.
      email: The user's email address.
      display_name: The name shown in the app.

  Returns:
      bool: True if a new document was created, False otherwise.
  """
  user_id = (user_id or '').strip()
  email = (email or '').strip()
  if not user_id or not email:
    logger.warn(
      f"No user ID or email provided for user {user_id}. Skipping initialization."
    )
    return False

  transaction = firestore_service.db().transaction()
  return _initialize_user_in_transaction(transaction,
                                         user_id,
                                         email,
                                         (display_name or '').strip())
