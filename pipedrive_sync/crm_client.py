from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

import requests

from pipedrive_sync.errors import ConfigurationError, RemoteApiError

logger = logging.getLogger(__name__)

PersonId = Union[int, str]


@dataclass
class PipedriveConfig:
    api_key: str
    base_url: str

    @classmethod
    def from_env(cls, env: Mapping[str, Optional[str]]) -> "PipedriveConfig":
        """Build the config from .env values; BASE_URL wins over the company domain."""
        api_key = (env.get("PIPEDRIVE_API_KEY") or "").strip()
        domain = (env.get("PIPEDRIVE_COMPANY_DOMAIN") or "").strip()
        base_url = (env.get("BASE_URL") or "").strip()

        if not api_key or not (domain or base_url):
            raise ConfigurationError(
                "Missing PIPEDRIVE_API_KEY or PIPEDRIVE_COMPANY_DOMAIN (or BASE_URL) in .env"
            )
        if not base_url:
            base_url = f"https://{domain}.pipedrive.com/v1"
        return cls(api_key=api_key, base_url=base_url.rstrip("/"))


class PipedriveClient:
    """
    Pipedrive persons API client.
    One request at a time, no retries: a failed call raises RemoteApiError.
    """

    def __init__(self, cfg: PipedriveConfig, timeout: int = 30):
        self.cfg = cfg
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update(
            {
                "Content-Type": "application/json",
                "Accept": "application/json",
            }
        )

    def _redact(self, text: str) -> str:
        if self.cfg.api_key:
            text = text.replace(self.cfg.api_key, "***")
        return text

    def _error_detail(self, resp: requests.Response) -> str:
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
        return resp.reason or resp.text or "Unknown API error"

    def _request(self, method: str, path: str, context: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.cfg.base_url}{path}"
        params = dict(kwargs.pop("params", None) or {})
        params["api_token"] = self.cfg.api_key
        logger.debug("%s %s", method, url)

        try:
            resp = self.session.request(method, url, params=params, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            message = self._redact(f"{context}: Network error: {str(e) or 'Unknown API error'}")
            logger.error(message)
            raise RemoteApiError(message) from e

        if resp.status_code >= 400:
            message = self._redact(f"{context}: HTTP {resp.status_code}: {self._error_detail(resp)}")
            logger.error(message)
            raise RemoteApiError(message, status_code=resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            message = f"{context}: invalid JSON in response"
            logger.error(message)
            raise RemoteApiError(message, status_code=resp.status_code) from e

        if not isinstance(data, dict):
            raise RemoteApiError(f"{context}: unexpected response shape", status_code=resp.status_code)
        if data.get("success") is False:
            message = self._redact(f"{context}: {data.get('error') or 'Unknown API error'}")
            logger.error(message)
            raise RemoteApiError(message, status_code=resp.status_code)
        return data

    def _person(self, data: Dict[str, Any], context: str) -> Dict[str, Any]:
        person = data.get("data")
        if not isinstance(person, dict):
            raise RemoteApiError(f"{context}: response has no person data")
        return person

    def find_person_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        """Exact-match search on the name field; returns the first hit or None."""
        context = "Failed to search for person"
        data = self._request(
            "GET",
            "/persons/search",
            context,
            params={"term": name, "fields": "name", "exact_match": "true"},
        )
        result = data.get("data") or {}
        if not isinstance(result, dict):
            raise RemoteApiError(f"{context}: unexpected response shape")
        items = result.get("items") or []
        if not isinstance(items, list):
            raise RemoteApiError(f"{context}: unexpected response shape")
        if not items:
            logger.info("No person named %r in Pipedrive", name)
            return None

        first = items[0]
        person = first.get("item") if isinstance(first, dict) else None
        if not isinstance(person, dict):
            raise RemoteApiError(f"{context}: unexpected response shape")
        logger.info("Found person %r (id=%s)", name, person.get("id"))
        return person

    def create_person(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = self._request("POST", "/persons", "Failed to create person", json=payload)
        person = self._person(data, "Failed to create person")
        logger.info("Created person id=%s", person.get("id"))
        return person

    def update_person(self, person_id: PersonId, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = self._request("PUT", f"/persons/{person_id}", "Failed to update person", json=payload)
        person = self._person(data, "Failed to update person")
        logger.info("Updated person id=%s", person_id)
        return person

    def upsert_person(self, payload: Dict[str, Any], person_id: Optional[PersonId] = None) -> Dict[str, Any]:
        if person_id is not None:
            return self.update_person(person_id, payload)
        return self.create_person(payload)
