"""
Remote Gateway

Thin authenticated request/response wrapper around the remote storefront's
REST API (the ShipStream sync extension endpoints). No business logic and no
retries: callers decide what a failure means.
"""

import base64
import logging
from typing import Any, Dict, Optional

import requests

from .errors import AuthError, TransportError, ValidationError

lgr = logging.getLogger(__name__)

API_NAMESPACE = "shipstream/v1/"


class RemoteGateway:
    """
    Remote storefront API client.

    Configuration Requirements:
        - base_url: storefront REST root, e.g. https://shop.example.com/wp-json/
        - consumer_key / consumer_secret: API credentials (Basic auth)
    """

    def __init__(
        self,
        base_url: str,
        consumer_key: str,
        consumer_secret: str,
        timeout: float = 30,
        verify_ssl: bool = True,
    ):
        for name, value in (
            ("base_url", base_url),
            ("consumer_key", consumer_key),
            ("consumer_secret", consumer_secret),
        ):
            if not value:
                raise ValidationError(f"Configuration parameter '{name}' is required.")

        self._base_url = base_url if base_url.endswith("/") else base_url + "/"
        self._timeout = timeout
        self._verify_ssl = verify_ssl
        credentials = f"{consumer_key}:{consumer_secret}".encode()
        self._token = base64.b64encode(credentials).decode()

    @classmethod
    def from_config(cls, config) -> "RemoteGateway":
        return cls(
            base_url=config.get("api_url"),
            consumer_key=config.get("api_login"),
            consumer_secret=config.get("api_password"),
            timeout=float(config.get("api_timeout", 30)),
            verify_ssl=bool(config.get("api_verify_ssl", True)),
        )

    def __repr__(self):
        return f"<RemoteGateway(base_url={self._base_url})>"

    @property
    def base_url(self) -> str:
        return self._base_url

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Basic {self._token}",
            "Content-Type": "application/json",
        }

    def request(self, endpoint: str, method: str = "POST", params: Optional[Any] = None) -> Any:
        """
        Make a request to the remote API and return the decoded JSON body.

        POST and PUT send ``params`` as the JSON body, DELETE sends nothing,
        any other method sends ``params`` as the query string.

        Raises:
            AuthError: credentials were rejected (401/403)
            TransportError: network failure, other HTTP error or non-JSON body
        """
        url = self._base_url + endpoint.lstrip("/")
        method = method.upper()
        kwargs = {
            "headers": self._headers(),
            "timeout": self._timeout,
            "verify": self._verify_ssl,
        }
        if method in ("POST", "PUT"):
            kwargs["json"] = params if params is not None else []
        elif method != "DELETE" and params:
            kwargs["params"] = params

        lgr.debug(f"{method} {url}")
        try:
            response = requests.request(method, url, **kwargs)
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else None
            if status_code in (401, 403):
                raise AuthError(f"Remote API rejected the credentials ({status_code})") from e
            raise TransportError(f"Request Error: {e}") from e
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Request Error: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON response from {endpoint}") from e

    def api(self, path: str, method: str = "POST", params: Optional[Any] = None) -> Any:
        """Call an endpoint of the ShipStream sync extension."""
        return self.request(API_NAMESPACE + path, method, params)
