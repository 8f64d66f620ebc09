"""Token providers issuing short-lived storage credentials."""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from resumable_multipart.exceptions import TokenRequestError
from resumable_multipart.models import Token, UploadParams

logger = logging.getLogger(__name__)


def join_url(base: str, path: str) -> str:
    """Join a base URL and a path with exactly one slash between them."""
    base = (base or "").rstrip("/")
    path = (path or "").lstrip("/")
    if not base:
        return f"/{path}"
    if not path:
        return base
    return f"{base}/{path}"


class TokenProvider(ABC):
    """Abstract interface for obtaining upload credentials."""

    @abstractmethod
    async def get_token(self, params: UploadParams, url: str) -> Token:
        """
        Obtain a token for an upload.

        Args:
            params: Upload parameters describing the intent
            url: Token endpoint URL

        Returns:
            Token with credentials and the assigned remote file name
        """
        pass


class HttpTokenProvider(TokenProvider):
    """Fetches tokens with ``GET url?fileType=..&subCategory=..&fileExtension=..``.

    The endpoint answers ``{"data": {"region": ..., "bucket": ...,
    "securityToken": ..., "accessKeyId": ..., "accessKeySecret": ...,
    "fileName": ...}}``.
    """

    def __init__(self, headers: Optional[dict[str, str]] = None, timeout: float = 30.0):
        """Initialize the provider.

        Args:
            headers: Optional custom headers to include in every request
            timeout: Socket timeout in seconds (default: 30)
        """
        self.headers = headers or {}
        self.timeout = timeout

    async def get_token(self, params: UploadParams, url: str) -> Token:
        return await asyncio.to_thread(self._fetch, params, url)

    def _fetch(self, params: UploadParams, url: str) -> Token:
        separator = "&" if "?" in url else "?"
        full_url = f"{url}{separator}{urlencode(params.to_query())}"
        headers = {"Accept": "application/json", **self.headers}

        logger.debug(f"Requesting upload token from {full_url}")
        try:
            req = Request(full_url, headers=headers, method="GET")
            with urlopen(req, timeout=self.timeout) as response:
                body = response.read()
        except HTTPError as e:
            raise TokenRequestError(
                f"Token request failed: {str(e)}",
                status_code=e.code,
                response_content=e.read(),
            ) from e
        except URLError as e:
            raise TokenRequestError(f"Token endpoint unreachable: {e.reason}") from e

        try:
            payload = json.loads(body)
            return Token.from_response(payload["data"])
        except (ValueError, KeyError, TypeError) as e:
            raise TokenRequestError(
                f"Malformed token response: {e}",
                status_code=200,
                response_content=body,
            ) from e
