"""HTTP client that attaches the managed credential to outbound requests."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from token_keeper.auth import AuthManager

logger = logging.getLogger(__name__)


class AuthorizedClient:
    """httpx client for calls to the wrapped API.

    Every request carries a credential from ``AuthManager``. A 401 forces one
    refresh and one retry; anything further is the caller's policy.
    """

    def __init__(
        self,
        auth: AuthManager,
        base_url: str = "",
        timeout: float = 60.0,
    ) -> None:
        self._auth = auth
        self._http = httpx.Client(base_url=base_url, timeout=timeout)

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Make an authenticated request.

        Raises:
            CredentialError: If no valid credential can be obtained; no
                request is sent in that case.
        """
        creds = self._auth.get_valid_credential(allow_interactive=False)
        response = self._http.request(
            method, url, headers=self._build_headers(creds.authorization_header(), headers), **kwargs
        )

        if response.status_code == 401:
            logger.warning("Got 401, refreshing token and retrying...")
            creds = self._auth.force_refresh()
            response = self._http.request(
                method, url, headers=self._build_headers(creds.authorization_header(), headers), **kwargs
            )

        return response

    def get(self, url: str, **kwargs: Any) -> httpx.Response:
        """Convenience method for GET requests."""
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> httpx.Response:
        """Convenience method for POST requests."""
        return self.request("POST", url, **kwargs)

    def put(self, url: str, **kwargs: Any) -> httpx.Response:
        """Convenience method for PUT requests."""
        return self.request("PUT", url, **kwargs)

    def delete(self, url: str, **kwargs: Any) -> httpx.Response:
        """Convenience method for DELETE requests."""
        return self.request("DELETE", url, **kwargs)

    @staticmethod
    def _build_headers(authorization: str, extra: dict[str, str] | None) -> dict[str, str]:
        headers = {"Authorization": authorization}
        if extra:
            headers.update(extra)
        return headers

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._http.close()
