"""HTTP client for the configuration (profile) API."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from gridloss.errors import ProfileClientError

logger = logging.getLogger(__name__)

API_LOGIN = "/api/login"


class ProfileClient:
    """
    Session against one configuration API host.

    Logon keeps the session cookies and, when the host returns one, a bearer
    token; both are replayed on every profile request.
    """

    def __init__(
        self,
        base_url: str,
        host_virtual_name: str = "",
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.strip().rstrip("/")
        self.host_virtual_name = host_virtual_name
        self.timeout = timeout
        self.session = session or requests.Session()
        if host_virtual_name:
            self.session.headers["Host"] = host_virtual_name

    def logon(self, username: str, password: str) -> Dict[str, Any]:
        """
        Authenticate against the host.

        Args:
            username: Stored user name
            password: Stored password

        Returns:
            Decoded logon response (empty dict when the body is not JSON)

        Raises:
            ProfileClientError: On transport failure or non-2xx status
        """
        url = f"{self.base_url}{API_LOGIN}"
        response = self._request("POST", url, json={"login": username, "password": password})

        try:
            body = response.json()
        except ValueError:
            body = {}

        token = None
        if isinstance(body, dict):
            token = body.get("token") or body.get("access_token")
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"
        return body if isinstance(body, dict) else {}

    def get_profile(self, path: str) -> bytes:
        """Fetch a profile document and return the raw response body."""
        url = f"{self.base_url}{path}"
        response = self._request("GET", url)
        return response.content

    def close(self) -> None:
        self.session.close()

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            raise ProfileClientError(f"{method} {url}: request timeout", url) from e
        except requests.exceptions.RequestException as e:
            raise ProfileClientError(f"{method} {url}: {e}", url) from e

        if not 200 <= response.status_code < 300:
            raise ProfileClientError(
                f"{method} {url}: unexpected status {response.status_code}",
                url,
                response.status_code,
            )
        return response
