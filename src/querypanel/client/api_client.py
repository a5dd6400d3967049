"""Signed HTTP client for the remote query service.

Every request carries a fresh RS256 JWT identifying the organization and the
tenant. Calls go through the API circuit breaker and, when a cancellation
token is supplied, through the cancellable runner.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx
import jwt
import pybreaker

from querypanel.common.cancellation import CancellationToken
from querypanel.common.errors import ConfigurationError, TransportError
from querypanel.common.logger import get_logger
from querypanel.common.resilience import API_BREAKER
from querypanel.common.sandbox import run_cancellable

logger = get_logger("api_client")


class ApiClient:
    """Client for the generation, chart and ingest endpoints.

    Args:
        base_url (str): Service root; trailing slashes are stripped.
        private_key (str): PEM encoded RSA private key used to sign tokens.
        organization_id (str): Organization claim of every token.
        default_tenant_id (Optional[str]): Tenant used when a call names none.
        additional_headers (Optional[Dict[str, str]]): Extra headers sent on every request.
        timeout (float): Transport timeout in seconds.
        http_client (Optional[httpx.Client]): Pre-built client, mainly for tests.
    """

    def __init__(
        self,
        base_url: str,
        private_key: str,
        organization_id: str,
        default_tenant_id: Optional[str] = None,
        additional_headers: Optional[Dict[str, str]] = None,
        timeout: float = 30.0,
        http_client: Optional[httpx.Client] = None,
        breaker: Optional[pybreaker.CircuitBreaker] = None,
    ):
        if not base_url:
            raise ConfigurationError("Base URL is required")
        if not private_key:
            raise ConfigurationError("Private key is required")
        if not organization_id:
            raise ConfigurationError("Organization ID is required")

        self.base_url = base_url.rstrip("/")
        self.private_key = private_key
        self.organization_id = organization_id
        self.default_tenant_id = default_tenant_id
        self.additional_headers = dict(additional_headers or {})
        self.breaker = breaker or API_BREAKER
        self._http = http_client or httpx.Client(timeout=timeout)

    def resolve_tenant_id(self, tenant_id: Optional[str] = None) -> str:
        resolved = tenant_id or self.default_tenant_id
        if not resolved:
            raise ConfigurationError(
                "tenantId is required. Provide it per request or via the default_tenant_id option."
            )
        return resolved

    def get(self, path: str, tenant_id: str, **kwargs) -> Any:
        return self.request("GET", path, tenant_id, **kwargs)

    def post(self, path: str, body: Any, tenant_id: str, **kwargs) -> Any:
        return self.request("POST", path, tenant_id, body=body, **kwargs)

    def put(self, path: str, body: Any, tenant_id: str, **kwargs) -> Any:
        return self.request("PUT", path, tenant_id, body=body, **kwargs)

    def delete(self, path: str, tenant_id: str, **kwargs) -> Any:
        return self.request("DELETE", path, tenant_id, **kwargs)

    def request(
        self,
        method: str,
        path: str,
        tenant_id: str,
        body: Any = None,
        user_id: Optional[str] = None,
        scopes: Optional[List[str]] = None,
        session_id: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Any:
        """Sends one signed request and returns the decoded JSON body.

        Raises:
            TransportError: Non-2xx response (with ``status_code``), network failure
                or an open circuit breaker.
            OperationCancelled: ``cancel_token`` fired while the request was in flight.
        """
        has_body = method in ("POST", "PUT")
        headers = self.build_headers(tenant_id, user_id, scopes, include_json=has_body, session_id=session_id)
        url = f"{self.base_url}{path}"
        payload = (body if body is not None else {}) if has_body else None

        def _send():
            return self.breaker.call(self._send, method, url, headers, payload)

        try:
            return run_cancellable(_send, cancel_token, f"{method} {path}")
        except pybreaker.CircuitBreakerError as e:
            raise TransportError(f"Query service unavailable (circuit open): {e}") from e

    def _send(self, method: str, url: str, headers: Dict[str, str], payload: Any) -> Any:
        try:
            response = self._http.request(method, url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"{method} {url} failed: {e}")
            raise TransportError(f"Request to {url} failed: {e}") from e

        data = _decode_json(response)
        if not response.is_success:
            message = None
            details = None
            if isinstance(data, dict):
                message = data.get("error")
                details = data.get("details")
            raise TransportError(
                message or response.reason_phrase or "Request failed",
                status_code=response.status_code,
                details=details,
            )
        return data

    def build_headers(
        self,
        tenant_id: str,
        user_id: Optional[str] = None,
        scopes: Optional[List[str]] = None,
        include_json: bool = True,
        session_id: Optional[str] = None,
    ) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.generate_jwt(tenant_id, user_id, scopes)}",
            "Accept": "application/json",
        }
        if include_json:
            headers["Content-Type"] = "application/json"
        if session_id:
            headers["x-session-id"] = session_id
        headers.update(self.additional_headers)
        return headers

    def generate_jwt(
        self,
        tenant_id: str,
        user_id: Optional[str] = None,
        scopes: Optional[List[str]] = None,
    ) -> str:
        payload: Dict[str, Any] = {
            "organizationId": self.organization_id,
            "tenantId": tenant_id,
        }
        if user_id:
            payload["userId"] = user_id
        if scopes:
            payload["scopes"] = scopes
        try:
            return jwt.encode(payload, self.private_key, algorithm="RS256")
        except (ValueError, TypeError, jwt.PyJWTError) as e:
            raise ConfigurationError(f"Unable to sign service token: {e}") from e

    def close(self) -> None:
        self._http.close()


def _decode_json(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None
