"""Tests for function_utils request helpers."""

import json

import pytest
from functions import function_utils


class FakeRequest:

  def __init__(self,
               *,
               json_data: dict | None = None,
               args: dict[str, object] | None = None,
               headers: dict[str, str] | None = None,
               method: str = 'GET',
               path: str = '') -> None:
    self._json_data = json_data
    self.args = args or {}
    self.is_json = json_data is not None
    self.headers = headers or {}
    self.method = method
    self.path = path

  def get_json(self):
    return self._json_data


def _json_request(data: dict | None = None) -> FakeRequest:
  return FakeRequest(json_data={'data': data or {}})


def _query_request(args: dict[str, object] | None = None) -> FakeRequest:
  return FakeRequest(args=args)


def test_get_param_returns_value_from_json_request():
  req = _json_request({'foo': 'bar'})

  assert function_utils.get_param(req, 'foo') == 'bar'


def test_get_param_raises_when_required_missing_json():
  req = _json_request()

  with pytest.raises(ValueError, match="Missing required parameter 'foo'"):
    function_utils.get_param(req, 'foo', required=True)


def test_get_param_raises_when_required_missing_query():
  req = _query_request()

  with pytest.raises(ValueError, match="Missing required parameter 'foo'"):
    function_utils.get_param(req, 'foo', required=True)


def test_get_param_returns_default_when_optional_missing():
  req = _query_request()

  assert function_utils.get_param(req, 'foo', default='fallback') == 'fallback'


@pytest.mark.parametrize("raw, expected", [
  ('true', True),
  ('TRUE', True),
  ('false', False),
  (True, True),
  (False, False),
])
def test_get_bool_param_parses_values(raw, expected):
  req = _json_request({'flag': raw})

  assert function_utils.get_bool_param(req, 'flag') is expected


def test_get_bool_param_returns_default_when_missing():
  req = _query_request()

  assert function_utils.get_bool_param(req, 'flag', default=True) is True


def test_get_bool_param_raises_when_required_missing():
  req = _query_request()

  with pytest.raises(ValueError):
    function_utils.get_bool_param(req, 'flag', required=True)


def test_get_float_param_parses_and_falls_back():
  assert function_utils.get_float_param(_json_request({'d': '12.5'}),
                                        'd') == 12.5
  assert function_utils.get_float_param(_json_request({'d': 'abc'}),
                                        'd') is None
  assert function_utils.get_float_param(_query_request(), 'd', 3.0) == 3.0


def test_get_user_id_verifies_bearer_token(monkeypatch):

  def fake_verify_id_token(token):
    assert token == "id-token-123"
    return {"uid": "bearer-uid"}

  monkeypatch.setattr(function_utils.auth, "verify_id_token",
                      fake_verify_id_token)

  req = FakeRequest(headers={"Authorization": "Bearer id-token-123"})

  assert function_utils.get_user_id(req) == "bearer-uid"


def test_get_user_id_returns_none_for_invalid_token(monkeypatch):

  def fake_verify_id_token(_token):
    raise ValueError("bad token")

  monkeypatch.setattr(function_utils.auth, "verify_id_token",
                      fake_verify_id_token)

  req = FakeRequest(headers={"Authorization": "Bearer nope"})

  assert function_utils.get_user_id(req) is None


def test_get_user_id_missing_header():
  with pytest.raises(function_utils.AuthError):
    function_utils.get_user_id(FakeRequest())

  assert function_utils.get_user_id(FakeRequest(),
                                    allow_unauthenticated=True) is None


def test_get_user_id_rejects_malformed_header():
  req = FakeRequest(headers={"Authorization": "Token abc"})

  with pytest.raises(function_utils.AuthError):
    function_utils.get_user_id(req)


def test_cors_headers_only_for_allowed_origins(monkeypatch):
  monkeypatch.setattr(function_utils.utils, "is_emulator", lambda: False)
  monkeypatch.setattr(function_utils.config, "WEB_ORIGINS",
                      ("https://stories.example.com", ))

  allowed = FakeRequest(headers={"Origin": "https://stories.example.com/"})
  other = FakeRequest(headers={"Origin": "https://evil.example.com"})

  headers = function_utils.get_cors_headers(allowed)
  assert headers["Access-Control-Allow-Origin"] == "https://stories.example.com/"
  assert function_utils.get_cors_headers(other) == {}
  assert function_utils.get_cors_headers(None) == {}


def test_emulator_allows_local_origins(monkeypatch):
  monkeypatch.setattr(function_utils.utils, "is_emulator", lambda: True)
  monkeypatch.setattr(function_utils.config, "EMULATOR_WEB_ORIGINS",
                      ("http://localhost:3000", ))

  req = FakeRequest(headers={"Origin": "http://localhost:3000"})

  assert function_utils.get_cors_headers(req)


def test_handle_preamble_answers_preflight_and_health_check():
  preflight = function_utils.handle_preamble(FakeRequest(method='OPTIONS'),
                                             ('GET', ))
  assert preflight is not None
  assert preflight.status_code == 204

  health = function_utils.handle_preamble(FakeRequest(path='/__/health'),
                                          ('GET', ))
  assert health is not None
  assert health.status_code == 200


def test_handle_preamble_rejects_other_methods():
  resp = function_utils.handle_preamble(FakeRequest(method='GET'),
                                        ('POST', ))

  assert resp is not None
  assert resp.status_code == 405
  assert function_utils.handle_preamble(FakeRequest(method='POST'),
                                        ('POST', )) is None

def test_error_response_payload():
  resp = function_utils.error_response("nope",
                                       error_type="store_unavailable",
                                       status=503)

  assert resp.status_code == 503
  assert json.loads(resp.get_data(as_text=True)) == {
    "data": {
      "error": "nope",
      "error_type": "store_unavailable"
    }
  }


def test_success_response_wraps_data():
  resp = function_utils.success_response({"stories": []})

  assert resp.status_code == 200
  assert json.loads(resp.get_data(as_text=True)) == {"data": {"stories": []}}
