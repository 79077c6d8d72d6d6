"""
Base API Client
Reusable helper for talking to the TradeHub REST API.
The escrow client and the CLI import this to avoid boilerplate.
"""

import logging

import httpx

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """A request failed: non-2xx reply (status set) or transport error (status None).

    ``message`` is the server's own message when it sent one, verbatim.
    """

    def __init__(self, message, status=None, method=None, path=None):
        self.message = message
        self.status = status
        self.method = method
        self.path = path
        super().__init__(message)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("message", "error"):
            if body.get(key):
                return str(body[key])
    text = response.text.strip()
    return text or f"HTTP {response.status_code}"


class ApiClient:
    """Lightweight wrapper around httpx.AsyncClient with bearer auth."""

    def __init__(self, base_url="http://localhost:5000/api", token=None, transport=None, timeout=None):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            transport=transport,
            timeout=timeout,
            headers={"Accept": "application/json"},
        )

    async def request(self, method, path, *, json=None, params=None, auth=True):
        """Send a request and return the decoded JSON body ({} when empty)."""
        headers = {}
        if auth and self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            response = await self._http.request(
                method, path, json=json, params=params, headers=headers,
            )
        except httpx.HTTPError as e:
            logger.debug("%s %s transport failure: %s", method, path, e)
            raise ApiError(str(e) or type(e).__name__, method=method, path=path) from e

        if response.is_error:
            raise ApiError(_error_message(response), status=response.status_code,
                           method=method, path=path)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}

    async def get(self, path, **kwargs):
        return await self.request("GET", path, **kwargs)

    async def post(self, path, **kwargs):
        return await self.request("POST", path, **kwargs)

    async def close(self):
        """Close the underlying connection pool. Safe to call twice."""
        if not self._http.is_closed:
            await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()
