"""HTTP client for the storefront REST backend."""

import logging
from typing import Any, Optional

import httpx

from .auth import AuthManager
from .errors import AuthError, NetworkError, NotFoundError, ServerError

logger = logging.getLogger(__name__)

NETWORK_ERROR_MESSAGE = "Network error. Please check your connection."


class ApiClient:
    """Thin JSON wrapper around httpx that maps failures to the error taxonomy."""

    def __init__(
        self,
        auth_manager: AuthManager,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        """
        Initialize the API client.

        Args:
            auth_manager: Source of the bearer token; cleared on 401/403
            base_url: Backend base URL, e.g. http://localhost:8080/api
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.auth_manager = auth_manager
        self.client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )

    def _auth_headers(self) -> dict[str, str]:
        token = self.auth_manager.token
        if token:
            return {"Authorization": f"Bearer {token}"}
        return {}

    def request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        """
        Send a request and return the decoded JSON body.

        Raises:
            NetworkError: No response (connection failure or timeout)
            NotFoundError: 404
            AuthError: 401/403; the persisted session is cleared first
            ServerError: Any other non-2xx answer
        """
        logger.debug(f"{method} {path}")
        try:
            response = self.client.request(
                method, path, json=json, params=params, headers=self._auth_headers()
            )
        except httpx.TimeoutException as e:
            logger.error(f"{method} {path} timed out: {e}")
            raise NetworkError(NETWORK_ERROR_MESSAGE)
        except httpx.RequestError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise NetworkError(NETWORK_ERROR_MESSAGE)

        logger.info(f"{method} {path} -> {response.status_code}")

        if response.is_success:
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError:
                raise ServerError("Backend returned a non-JSON response", response.status_code)

        message = self._error_message(response)
        status = response.status_code
        if status == 404:
            raise NotFoundError(message if message != "An error occurred" else "Not Found", status)
        if status in (401, 403):
            logger.warning(f"Authorization failed ({status}) - clearing session")
            self.auth_manager.clear_session()
            raise AuthError(message, status)
        raise ServerError(message, status)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        """Extract the error message from the payload, if any."""
        try:
            data = response.json()
        except ValueError:
            return "An error occurred"
        if isinstance(data, dict):
            return data.get("message") or data.get("error") or "An error occurred"
        return "An error occurred"

    def get(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, json: Any = None) -> Any:
        return self.request("POST", path, json=json)

    def put(self, path: str, json: Any = None) -> Any:
        return self.request("PUT", path, json=json)

    def patch(self, path: str, json: Any = None, params: Optional[dict[str, Any]] = None) -> Any:
        return self.request("PATCH", path, json=json, params=params)

    def delete(self, path: str) -> Any:
        return self.request("DELETE", path)

    def get_collection(self, path: str, params: Optional[dict[str, Any]] = None) -> list[dict]:
        """GET an endpoint that answers with a list, bare or wrapped in {"data": [...]}."""
        return unwrap_collection(self.get(path, params=params))

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()


def unwrap_collection(payload: Any) -> list[dict]:
    """Normalize a collection response to a list of objects."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        return payload["data"]
    raise ServerError("Unexpected response shape: expected a list of records")


def unwrap_record(payload: Any) -> dict:
    """Normalize a single-record response, bare or wrapped in {"data": {...}}."""
    if isinstance(payload, dict):
        inner = payload.get("data")
        if isinstance(inner, dict):
            return inner
        return payload
    raise ServerError("Unexpected response shape: expected an object")
