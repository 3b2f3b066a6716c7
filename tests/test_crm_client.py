"""Tests for PipedriveClient request shapes and error reporting."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from pipedrive_sync.crm_client import PipedriveClient, PipedriveConfig
from pipedrive_sync.errors import ConfigurationError, RemoteApiError

BASE = "https://acme.pipedrive.com/v1"
KEY = "secret-token"


def make_response(status_code=200, body=None, reason="OK"):
    resp = MagicMock()
    resp.status_code = status_code
    resp.reason = reason
    resp.text = ""
    if isinstance(body, Exception):
        resp.json.side_effect = body
    else:
        resp.json.return_value = body
    return resp


@pytest.fixture
def client():
    c = PipedriveClient(PipedriveConfig(api_key=KEY, base_url=BASE))
    c.session = MagicMock()
    return c


# ── Config ──────────────────────────────────────────────────────────────────


def test_config_from_company_domain():
    cfg = PipedriveConfig.from_env({"PIPEDRIVE_API_KEY": "k", "PIPEDRIVE_COMPANY_DOMAIN": "acme"})
    assert cfg.base_url == BASE
    assert cfg.api_key == "k"


def test_config_base_url_overrides_domain():
    cfg = PipedriveConfig.from_env({
        "PIPEDRIVE_API_KEY": "k",
        "PIPEDRIVE_COMPANY_DOMAIN": "acme",
        "BASE_URL": "http://localhost:8080/v1/",
    })
    assert cfg.base_url == "http://localhost:8080/v1"


@pytest.mark.parametrize("env", [
    {},
    {"PIPEDRIVE_COMPANY_DOMAIN": "acme"},
    {"PIPEDRIVE_API_KEY": "k"},
    {"PIPEDRIVE_API_KEY": "  ", "PIPEDRIVE_COMPANY_DOMAIN": "acme"},
])
def test_config_missing_credentials(env):
    with pytest.raises(ConfigurationError, match="PIPEDRIVE_API_KEY"):
        PipedriveConfig.from_env(env)


# ── Search ──────────────────────────────────────────────────────────────────


def test_find_person_by_name_returns_first_item(client):
    client.session.request.return_value = make_response(body={
        "success": True,
        "data": {"items": [{"item": {"id": 42, "name": "Jane Doe"}}, {"item": {"id": 43}}]},
    })

    person = client.find_person_by_name("Jane Doe")

    assert person == {"id": 42, "name": "Jane Doe"}
    method, url = client.session.request.call_args.args
    kwargs = client.session.request.call_args.kwargs
    assert method == "GET"
    assert url == f"{BASE}/persons/search"
    assert kwargs["params"] == {
        "term": "Jane Doe",
        "fields": "name",
        "exact_match": "true",
        "api_token": KEY,
    }
    assert kwargs["timeout"] == 30


@pytest.mark.parametrize("body", [
    {"success": True, "data": {"items": []}},
    {"success": True, "data": None},
])
def test_find_person_by_name_no_match(client, body):
    client.session.request.return_value = make_response(body=body)
    assert client.find_person_by_name("Nobody") is None


def test_find_person_by_name_api_error(client):
    client.session.request.return_value = make_response(
        401, {"success": False, "error": "You need to be authorized"}, reason="Unauthorized"
    )

    with pytest.raises(RemoteApiError) as exc:
        client.find_person_by_name("Jane Doe")

    assert exc.value.message == "Failed to search for person: HTTP 401: You need to be authorized"
    assert exc.value.status_code == 401


# ── Create / update ─────────────────────────────────────────────────────────


def test_create_person_posts_payload(client):
    client.session.request.return_value = make_response(201, {"success": True, "data": {"id": 7, "name": "Jane"}})

    person = client.upsert_person({"name": "Jane"})

    assert person == {"id": 7, "name": "Jane"}
    call = client.session.request.call_args
    assert call.args == ("POST", f"{BASE}/persons")
    assert call.kwargs["json"] == {"name": "Jane"}
    assert call.kwargs["params"] == {"api_token": KEY}


def test_update_person_puts_payload(client):
    client.session.request.return_value = make_response(body={"success": True, "data": {"id": 42, "name": "Jane"}})

    person = client.upsert_person({"name": "Jane"}, 42)

    assert person["id"] == 42
    call = client.session.request.call_args
    assert call.args == ("PUT", f"{BASE}/persons/42")
    assert call.kwargs["json"] == {"name": "Jane"}


def test_update_error_names_operation(client):
    client.session.request.return_value = make_response(
        404, {"success": False, "error": "Person not found"}, reason="Not Found"
    )

    with pytest.raises(RemoteApiError, match="^Failed to update person: HTTP 404: Person not found$"):
        client.update_person(42, {"name": "Jane"})


def test_create_error_without_json_body_uses_reason(client):
    client.session.request.return_value = make_response(
        500, ValueError("no json"), reason="Internal Server Error"
    )

    with pytest.raises(RemoteApiError) as exc:
        client.create_person({"name": "Jane"})

    assert exc.value.message == "Failed to create person: HTTP 500: Internal Server Error"
    assert exc.value.status_code == 500


def test_unsuccessful_body_with_ok_status_is_an_error(client):
    client.session.request.return_value = make_response(body={"success": False, "error": "Bad field"})

    with pytest.raises(RemoteApiError, match="Failed to create person: Bad field"):
        client.create_person({"name": "Jane"})


def test_missing_person_data_is_an_error(client):
    client.session.request.return_value = make_response(body={"success": True, "data": None})

    with pytest.raises(RemoteApiError, match="no person data"):
        client.create_person({"name": "Jane"})


def test_network_error_redacts_token(client):
    client.session.request.side_effect = requests.ConnectionError(
        f"Max retries exceeded with url: /v1/persons?api_token={KEY}"
    )

    with pytest.raises(RemoteApiError) as exc:
        client.create_person({"name": "Jane"})

    assert exc.value.message.startswith("Failed to create person: Network error: ")
    assert KEY not in exc.value.message
    assert "***" in exc.value.message
    assert exc.value.status_code is None
    assert isinstance(exc.value.__cause__, requests.ConnectionError)


@pytest.mark.parametrize("body", [
    {"success": True, "data": ["unexpected"]},
    {"success": True, "data": {"items": {"item": {"id": 1}}}},
    {"success": True, "data": {"items": ["not-a-dict"]}},
    {"success": True, "data": {"items": [{"item": None}]}},
])
def test_find_person_by_name_unexpected_shape(client, body):
    client.session.request.return_value = make_response(body=body)

    with pytest.raises(RemoteApiError, match="^Failed to search for person: unexpected response shape$"):
        client.find_person_by_name("Jane Doe")
