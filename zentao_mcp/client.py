"""
ZenTao RESTful API client.

Owns the session state (base URL, credentials and the cached token) and the
single request primitive every other component goes through.

ZenTao API notes:
- Authentication is a one-time credential exchange against /api.php/v1/tokens.
  The returned token is sent as a ``Token`` header on every later request.
- Failures are reported in the JSON body as an ``error`` field; the HTTP
  status code is not reliable, so it is not interpreted here.
"""

import json
import logging
from typing import Optional

import requests

from .errors import (
    AuthError,
    TransportError,
    TransportParseError,
    ValidationError,
)

logger = logging.getLogger(__name__)

TOKEN_PATH = "/api.php/v1/tokens"
PRODUCTS_PATH = "/api.php/v1/products"
BUGS_PATH = "/api.php/v1/bugs"

# Raw bodies are truncated to this many characters in error messages
SNIPPET_LENGTH = 200

DEFAULT_TIMEOUT = 30


def normalize_base_url(url: str) -> str:
    """Strip trailing slashes so paths can be appended directly."""
    return url.rstrip("/")


def to_int(value, fallback: Optional[int]) -> Optional[int]:
    """
    Coerce an upstream or user supplied value to an int.

    None, empty strings and unparsable values yield ``fallback``.
    """
    if value is None or value == "" or isinstance(value, bool):
        return fallback
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return fallback


def normalize_result(payload) -> dict:
    """Wrap a successful payload in the uniform tool envelope."""
    return {"status": 1, "msg": "success", "result": payload}


def normalize_error(message, payload=None) -> dict:
    """Wrap an upstream-reported failure in the uniform tool envelope."""
    return {"status": 0, "msg": message or "error", "result": payload if payload is not None else []}


class ZentaoClient:
    """
    Session against one ZenTao instance.

    The token is fetched lazily on the first request and reused for the
    lifetime of the object. There is no refresh: a token invalidated by the
    server surfaces as an upstream ``error`` on the next call.
    """

    def __init__(self, base_url: str, account: str, password: str,
                 http: Optional[requests.Session] = None, timeout: float = DEFAULT_TIMEOUT):
        self.base_url = normalize_base_url(base_url)
        self.account = account
        self.password = password
        self.token = None
        self.timeout = timeout
        self.http = http or requests.Session()
        self._auth_error = None

    def ensure_token(self) -> None:
        """Obtain the token once; later calls are no-ops."""
        if self.token:
            return
        # A failed exchange is fatal for the session
        if self._auth_error is not None:
            raise self._auth_error
        try:
            self.token = self.get_token()
        except AuthError as e:
            self._auth_error = e
            raise

    def get_token(self) -> str:
        """Exchange account and password for a token."""
        url = f"{self.base_url}{TOKEN_PATH}"
        logger.info(f"Token request for account '{self.account}'")

        response = self._send("POST", url, json={
            "account": self.account,
            "password": self.password,
        }, headers={"Content-Type": "application/json"})
        text = response.text or ""

        try:
            payload = json.loads(text)
        except ValueError:
            logger.error(f"Token response is not JSON (HTTP {response.status_code})")
            raise AuthError(f"Token response parse failed: {text[:SNIPPET_LENGTH]}")

        if not isinstance(payload, dict):
            raise AuthError(f"Token missing in response: {text[:SNIPPET_LENGTH]}")

        if payload.get("error"):
            logger.error(f"Token request rejected: {payload['error']}")
            raise AuthError(f"Token request failed: {payload['error']}")

        token = payload.get("token")
        if not token:
            raise AuthError(f"Token missing in response: {text[:SNIPPET_LENGTH]}")

        logger.info("Token obtained")
        logger.debug(f"Token hint: {str(token)[:4]}...")
        return token

    def request(self, method: str, path: str, query: Optional[dict] = None, body=None):
        """
        Send an authenticated request and return the parsed JSON body.

        Query values that are None are dropped. ``body`` is JSON encoded when
        given. Raises TransportParseError when the body is not JSON and
        TransportError on network failures.
        """
        self.ensure_token()

        url = f"{self.base_url}{path}"
        params = {k: str(v) for k, v in (query or {}).items() if v is not None}
        headers = {"Token": self.token}
        kwargs = {"params": params, "headers": headers}
        if body is not None:
            headers["Content-Type"] = "application/json"
            kwargs["data"] = json.dumps(body)

        logger.info(f"API Request: {method} {path}")
        logger.debug(f"Request params: {params}")

        response = self._send(method, url, **kwargs)
        logger.info(f"API Response: {method} {path} - Status {response.status_code}")

        text = response.text or ""
        try:
            return json.loads(text)
        except ValueError:
            snippet = text[:SNIPPET_LENGTH]
            logger.error(f"Response parse failed: {method} {path} - HTTP {response.status_code}")
            raise TransportParseError(f"Response parse failed: {snippet}", snippet=snippet)

    def _send(self, method: str, url: str, **kwargs):
        try:
            return self.http.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            logger.error(f"Timeout Error: {method} {url} - {e}")
            raise TransportError(f"Request to ZenTao timed out: {method} {url}")
        except requests.exceptions.ConnectionError as e:
            logger.error(f"Connection Error: {method} {url} - {e}")
            raise TransportError(f"Failed to connect to ZenTao at {self.base_url}: {e}")
        except requests.exceptions.RequestException as e:
            logger.error(f"Request Exception: {method} {url} - {type(e).__name__}: {e}")
            raise TransportError(f"Request failed: {type(e).__name__}: {e}")

    # ------------------------------------------------------------------
    # Listing operations
    # ------------------------------------------------------------------

    def fetch_products_page(self, page: int, limit: int) -> dict:
        return self.request("GET", PRODUCTS_PATH, query={"page": page, "limit": limit})

    def fetch_bugs_page(self, product: int, page: int, limit: int) -> dict:
        return self.request("GET", BUGS_PATH, query={"product": product, "page": page, "limit": limit})

    def list_products(self, page=None, limit=None) -> dict:
        """One page of products, wrapped in the tool envelope."""
        payload = self.fetch_products_page(to_int(page, 1), to_int(limit, 1000))
        if isinstance(payload, dict) and payload.get("error"):
            return normalize_error(payload["error"], payload)
        return normalize_result(payload)

    def list_bugs(self, product=None, page=None, limit=None) -> dict:
        """One page of bugs for a product, wrapped in the tool envelope."""
        if not product:
            raise ValidationError("product is required")

        payload = self.fetch_bugs_page(product, to_int(page, 1), to_int(limit, 20))
        if isinstance(payload, dict) and payload.get("error"):
            return normalize_error(payload["error"], payload)
        return normalize_result(payload)
