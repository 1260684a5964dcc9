"""Thin aiohttp client for the theatre management REST API."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from aiohttp import ClientError, ClientResponseError, ClientSession, ClientTimeout

from .exceptions import NetworkError

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ApiResponse:
    status: int
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)


class ApiClient:
    """Send ``(method, path, json)`` to the API and return ``(status, json)``.

    Every HTTP status is returned as a response. Only the absence of a
    response (refused connection, DNS failure, timeout, dropped socket)
    raises :class:`NetworkError`. Session cookies carry authentication.
    """

    def __init__(
        self,
        session: ClientSession,
        base_url: str,
        *,
        timeout: float = 15.0,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = dict(headers or {})

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{self.base_url}{path}"

    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        headers: dict[str, str] | None = None,
    ) -> ApiResponse:
        request_headers = {"Content-Type": "application/json", **self.headers, **(headers or {})}
        payload = None if body is None else json.dumps(body)
        try:
            async with self.session.request(
                method.upper(),
                self.url_for(path),
                data=payload,
                headers=request_headers,
                timeout=ClientTimeout(total=self.timeout),
            ) as resp:
                try:
                    raw = await resp.read()
                except (TimeoutError, ClientError) as err:
                    # The status line arrived, so the server has already acted on the request.
                    _LOGGER.warning(
                        "%s %s answered %s but the body could not be read: %s",
                        method.upper(),
                        path,
                        resp.status,
                        str(err) or type(err).__name__,
                    )
                    raw = b""
                return ApiResponse(
                    status=resp.status,
                    body=self._decode(raw),
                    headers=dict(resp.headers),
                )
        except ClientResponseError as err:
            # A status line arrived, so the server answered.
            return ApiResponse(status=err.status or 502, body={"error": err.message})
        except (TimeoutError, ClientError) as err:
            _LOGGER.debug("%s %s unreachable: %s", method.upper(), path, err)
            raise NetworkError(f"{method.upper()} {path} unreachable: {str(err) or type(err).__name__}") from err

    @staticmethod
    def _decode(raw: bytes) -> Any:
        if not raw or not raw.strip():
            return None
        text = raw.decode("utf-8", "replace")
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text
