"""HTTP client for the Salesforce REST API with timeout handling and
parameter-bound SOQL queries.

Salesforce REST docs: https://developer.salesforce.com/docs/atlas.en-us.api_rest.meta/api_rest/
All requests carry an OAuth access token as a Bearer token.

External input never reaches a SOQL string unescaped: ``bind_soql``
substitutes ``:name`` placeholders with quoted, escaped literals, and record
ids are checked against the Salesforce id shape before use.
"""

from __future__ import annotations

import logging
import re
import threading
from typing import Any

import httpx

from appointment_assistant.config import (
    SALESFORCE_ACCESS_TOKEN,
    SALESFORCE_API_VERSION,
    SALESFORCE_INSTANCE_URL,
)
from appointment_assistant.errors import AssistantError, ConfigurationError, ErrorKind

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 15.0

# 15-char case-sensitive or 18-char case-insensitive record id
_RECORD_ID_RE = re.compile(r"^[a-zA-Z0-9]{15}(?:[a-zA-Z0-9]{3})?$")
_PLACEHOLDER_RE = re.compile(r":([A-Za-z_][A-Za-z0-9_]*)")


class CRMAPIError(Exception):
    """Raised when a Salesforce API call fails."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


# ── SOQL binding ────────────────────────────────────────────────────

def is_record_id(value: Any) -> bool:
    return isinstance(value, str) and bool(_RECORD_ID_RE.match(value))


def validate_record_id(value: Any) -> str:
    """Return *value* unchanged if it is a well-formed record id."""
    if not is_record_id(value):
        raise AssistantError("Invalid record id", ErrorKind.VALIDATION)
    return value


def _quote(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    text = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{text}'"


def bind_soql(template: str, **params: Any) -> str:
    """Substitute ``:name`` placeholders with escaped SOQL literals.

    >>> bind_soql("SELECT Id FROM Contact WHERE Name = :name", name="O'Brien")
    "SELECT Id FROM Contact WHERE Name = 'O\\\\'Brien'"
    """

    def _sub(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in params:
            raise KeyError(f"Missing SOQL parameter: {key}")
        return _quote(params[key])

    return _PLACEHOLDER_RE.sub(_sub, template)


class CRMClient:
    """Thin wrapper around the Salesforce ``query`` and ``sobjects`` resources.

    There is no retry layer: a failed call raises ``CRMAPIError`` and the
    caller decides whether the failure is fatal for the request.
    """

    def __init__(
        self,
        token: str | None = None,
        instance_url: str | None = None,
        api_version: str | None = None,
    ):
        self._token = token or SALESFORCE_ACCESS_TOKEN
        instance_url = instance_url or SALESFORCE_INSTANCE_URL
        if not self._token or not instance_url:
            raise ConfigurationError(
                "Salesforce is not configured: set SALESFORCE_ACCESS_TOKEN and SALESFORCE_INSTANCE_URL."
            )
        self._base_url = f"{instance_url.rstrip('/')}/services/data/{api_version or SALESFORCE_API_VERSION}"
        self._client = httpx.Client(
            base_url=self._base_url,
            headers={
                "Authorization": f"Bearer {self._token}",
                "Content-Type": "application/json",
            },
            timeout=REQUEST_TIMEOUT_SECONDS,
        )

    # ── Internal helpers ─────────────────────────────────────────────

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        try:
            response = self._client.request(method, path, params=params, json=json_body)
        except httpx.HTTPError as exc:
            raise CRMAPIError(f"Salesforce request failed: {type(exc).__name__}") from exc

        if response.status_code >= 400:
            raise CRMAPIError(
                f"Salesforce error {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        # PATCH answers 204 with no body
        if response.status_code == 204 or not response.text:
            return {}
        return response.json()

    # ── Public API ───────────────────────────────────────────────────

    def query(self, soql: str) -> list[dict[str, Any]]:
        """Run a SOQL query and return its ``records``."""
        logger.debug("SOQL: %s", soql)
        data = self._request("GET", "/query", params={"q": soql})
        return data.get("records", [])

    def create(self, sobject: str, data: dict[str, Any]) -> str:
        """Insert a record and return its new id."""
        result = self._request("POST", f"/sobjects/{sobject}/", json_body=data)
        record_id = result.get("id")
        if not result.get("success", True) or not record_id:
            raise CRMAPIError(f"Salesforce create of {sobject} failed: {result.get('errors')}")
        return record_id

    def update(self, sobject: str, record_id: str, data: dict[str, Any]) -> None:
        """Patch the given fields of an existing record."""
        validate_record_id(record_id)
        self._request("PATCH", f"/sobjects/{sobject}/{record_id}", json_body=data)


# ── Module-level singleton (thread-safe) ────────────────────────────
_client: CRMClient | None = None
_client_lock = threading.Lock()


def get_crm_client() -> CRMClient:
    """Return a module-level CRMClient singleton.

    Uses double-checked locking so that the lock is only acquired during
    the first initialisation, not on every subsequent call.
    """
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = CRMClient()
    return _client
