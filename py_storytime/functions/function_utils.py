"""Request and response helpers shared by the HTTP functions."""

import json
from typing import Any

from common import config, utils
from firebase_admin import auth
from firebase_functions import https_fn, logger

_ALLOW_HEADERS = {
  "Access-Control-Allow-Methods": "POST, GET, OPTIONS",
  "Access-Control-Allow-Headers": "Content-Type, Authorization",
}
_HEALTH_PATH = "/__/health"


class AuthError(Exception):
  """Raised when a request carries an unusable credential."""


def get_cors_headers(req: https_fn.Request | None) -> dict[str, str]:
  """CORS headers for the request's origin, or {} if it is not a web client."""
  origin = (req.headers.get("Origin") or "") if req else ""
  allowed = set(config.WEB_ORIGINS)
  if utils.is_emulator():
    allowed.update(config.EMULATOR_WEB_ORIGINS)
  if origin.rstrip("/") not in allowed:
    return {}
  return {**_ALLOW_HEADERS, "Access-Control-Allow-Origin": origin}


def handle_preamble(
  req: https_fn.Request,
  methods: tuple[str, ...],
) -> https_fn.Response | None:
  """Answer CORS preflights, health checks and disallowed methods.

  Returns None when the request should be handled by the function itself.
  """
  if req.method == "OPTIONS":
    return https_fn.Response("",
                             status=204,
                             headers=get_cors_headers(req) or _ALLOW_HEADERS)
  if req.path == _HEALTH_PATH:
    return https_fn.Response("OK", status=200, headers=get_cors_headers(req))
  if req.method not in methods:
    return error_response(f"Method not allowed: {req.method}",
                          req=req,
                          status=405)
  return None


def get_user_id(
  req: https_fn.Request,
  allow_unauthenticated: bool = False,
) -> str | None:
  """Get the caller's uid from the request's bearer token.

  Returns None when the token does not verify.

  Raises:
    AuthError: If the header is missing (and unauthenticated calls are not
      allowed) or malformed.
  """
  auth_header = req.headers.get('Authorization')
  if not auth_header:
    if allow_unauthenticated:
      return None
    raise AuthError("Authorization header is missing")

  scheme, _, id_token = auth_header.partition(' ')
  if scheme.lower() != 'bearer' or not id_token.strip():
    raise AuthError("Authorization header must be 'Bearer <token>'")

  try:
    return auth.verify_id_token(id_token.strip())['uid']
  except (ValueError, auth.InvalidIdTokenError, auth.ExpiredIdTokenError,
          auth.RevokedIdTokenError, auth.CertificateFetchError) as e:
    logger.error(f"Error verifying ID token: {e}")
    return None


def _json_response(payload: dict[str, Any], req: https_fn.Request | None,
                   status: int) -> https_fn.Response:
  return https_fn.Response(
    json.dumps({"data": payload}),
    status=status,
    headers=get_cors_headers(req),
    mimetype='application/json',
  )


def success_response(
  data: dict[str, Any],
  req: https_fn.Request | None = None,
  status: int = 200,
) -> https_fn.Response:
  return _json_response(data, req, status)


def error_response(
  message: str,
  *,
  error_type: str | None = None,
  req: https_fn.Request | None = None,
  status: int = 500,
) -> https_fn.Response:
  """JSON error payload with an optional machine-readable `error_type`."""
  logger.error(f"Error response {status}: {message} ({error_type})")
  payload: dict[str, Any] = {"error": message}
  if error_type:
    payload["error_type"] = error_type
  return _json_response(payload, req, status)


def get_param(
  req: https_fn.Request,
  param_name: str,
  default: Any | None = None,
  required: bool = False,
) -> Any | None:
  """Read a parameter from the callable-style JSON body or the query string.

  Raises:
    ValueError: If `required` and the parameter is absent with no default.
  """
  if req.is_json:
    body = req.get_json()
    source = (body.get('data') or {}) if isinstance(body, dict) else {}
  else:
    source = req.args
  value = source.get(param_name, default)
  if value is None and required:
    raise ValueError(f"Missing required parameter '{param_name}'")
  return value


def get_bool_param(
  req: https_fn.Request,
  param_name: str,
  default: bool = False,
  required: bool = False,
) -> bool:
  """Read a boolean; JSON booleans pass through, strings match 'true'."""
  value = get_param(req, param_name, None, required=required)
  if value is None:
    return default
  if isinstance(value, bool):
    return value
  return str(value).lower() == 'true'


def get_float_param(
  req: https_fn.Request,
  param_name: str,
  default: float | None = None,
) -> float | None:
  """Read a float, falling back to `default` when absent or unparseable."""
  value = get_param(req, param_name, default)
  if value is None or isinstance(value, bool):
    return default
  try:
    return float(value)
  except (ValueError, TypeError):
    return default
