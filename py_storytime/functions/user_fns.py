"""Cloud Functions for family account setup."""

from firebase_functions import https_fn, identity_fn, logger, options
from storage import family_firestore


@identity_fn.before_user_created(
    memory=options.MemoryOption.MB_256,
    timeout_sec=60,
)
def on_user_created(
        event: identity_fn.AuthBlockingEvent) -> identity_fn.BeforeCreateResponse | None:
  """Triggered before a new Firebase Authentication user is created.

  Every self-registered account is a parent; its profile is created
  transactionally with the user ID doubling as the family ID. Child accounts
  are added later by their parent.
  """
  user = event.data
  user_id = user.uid
  email = user.email

  if not email:
    return None  # Anonymous users get no profile

  logger.info(f"User creation event triggered for: {user_id}, Email: {email}")
  try:
    family_firestore.initialize_user_document(
      user_id,
      email=email,
      display_name=user.display_name or '',
    )
  except Exception as e:
    logger.error(f"Failed to initialize profile for {user_id}: {e}")
    # Block account creation rather than leave a user without a profile
    raise https_fn.HttpsError(code=https_fn.FunctionsErrorCode.INTERNAL,
                              message=str(e)) from e
  return None


def _initialize_calling_user(req: https_fn.CallableRequest) -> dict:
  if not req.auth or not req.auth.uid:
    raise https_fn.HttpsError(code=https_fn.FunctionsErrorCode.UNAUTHENTICATED,
                              message="Authentication required to initialize user document.")

  user_id = req.auth.uid
  email = req.auth.token.get('email')
  if not email:
    raise https_fn.HttpsError(code=https_fn.FunctionsErrorCode.INVALID_ARGUMENT,
                              message="Email is required to initialize user document.")

  display_name = req.auth.token.get('name') or ''
  user_created = family_firestore.initialize_user_document(
    user_id, email=email, display_name=display_name)
  if user_created:
    return {"success": True, "message": f"User {user_id} initialized."}
  return {"success": True, "message": f"User {user_id} already exists."}


@https_fn.on_call(
    memory=options.MemoryOption.MB_256,
    timeout_sec=60,
)
def initialize_user_http(req: https_fn.CallableRequest) -> dict:
  """Create the calling user's parent profile if it is missing.

  Used to repair accounts created before the blocking function was deployed.
  """
  return _initialize_calling_user(req)
