"""
Vault Transport — aiohttp JSON client with request interceptors.

Interceptors observe every outbound call (request, response, error). The
bundled :class:`NetworkLogger` keeps a troubleshooting trail of vault calls
and can export a summary of status codes and errors.

Security Note:
    Interceptors never receive the Authorization header.
"""
import time
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import aiohttp
import orjson

from ..exceptions import (
    SubscriptionExpiredError,
    VaultRequestError,
    is_subscription_expired,
)
from .crypto import serialize_value

logger = logging.getLogger("secretvault.network")


@dataclass
class RequestInfo:
    """Outbound request as seen by interceptors."""
    method: str
    url: str
    body: Any = None
    started: float = field(default_factory=time.monotonic)

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started) * 1000


class RequestInterceptor:
    """Hook points around each transport call. Override what you need."""

    async def on_request(self, request: RequestInfo) -> None:
        pass

    async def on_response(self, request: RequestInfo, status: int, body: Any) -> None:
        pass

    async def on_error(self, request: RequestInfo, error: BaseException) -> None:
        pass


class NetworkLogger(RequestInterceptor):
    """Record and log every vault request for later inspection."""

    def __init__(self, max_entries: int = 500):
        self.max_entries = max_entries
        self.entries: list[dict[str, Any]] = []

    def _append(self, entry: dict[str, Any]) -> None:
        entry["timestamp"] = datetime.now(timezone.utc).isoformat()
        self.entries.append(entry)
        if len(self.entries) > self.max_entries:
            del self.entries[: len(self.entries) - self.max_entries]

    async def on_request(self, request: RequestInfo) -> None:
        self._append({"type": "request", "method": request.method, "url": request.url})
        logger.debug("Network request: %s %s", request.method, request.url)

    async def on_response(self, request: RequestInfo, status: int, body: Any) -> None:
        duration = round(request.elapsed_ms, 1)
        self._append({
            "type": "response",
            "method": request.method,
            "url": request.url,
            "status": status,
            "duration": duration,
        })
        logger.debug(
            "Network response (%sms): %s %s -> %d",
            duration, request.method, request.url, status,
        )

    async def on_error(self, request: RequestInfo, error: BaseException) -> None:
        duration = round(request.elapsed_ms, 1)
        self._append({
            "type": "error",
            "method": request.method,
            "url": request.url,
            "error": str(error),
            "duration": duration,
        })
        logger.warning(
            "Network error (%sms): %s %s: %s",
            duration, request.method, request.url, error,
        )

    def export(self) -> dict[str, Any]:
        """Logged entries plus a per-type and per-status summary."""
        status_codes: dict[int, int] = {}
        for entry in self.entries:
            if entry["type"] == "response":
                status_codes[entry["status"]] = status_codes.get(entry["status"], 0) + 1
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "logs": list(self.entries),
            "summary": {
                "totalRequests": sum(1 for e in self.entries if e["type"] == "request"),
                "totalResponses": sum(1 for e in self.entries if e["type"] == "response"),
                "totalErrors": sum(1 for e in self.entries if e["type"] == "error"),
                "statusCodes": status_codes,
            },
        }

    def save(self, path: str) -> None:
        with open(path, "wb") as fp:
            fp.write(orjson.dumps(
                self.export(),
                option=orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS,
            ))
        logger.info("Network logs saved to %s", path)

    def clear(self) -> None:
        self.entries = []


def _parse_body(raw: bytes) -> Any:
    if not raw:
        return None
    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError:
        return raw.decode("utf-8", errors="replace")


def _error_message(status: int, body: Any) -> str:
    if isinstance(body, dict):
        for key in ("error", "message", "detail"):
            if body.get(key):
                return str(body[key])
        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            return "; ".join(str(e) for e in errors)
    if isinstance(body, str) and body:
        return body[:200]
    return f"HTTP {status}"


class VaultTransport:
    """Shared aiohttp session used by every vault client of an orchestrator."""

    def __init__(
        self,
        timeout: Optional[float] = None,
        interceptors: Optional[list[RequestInterceptor]] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self._timeout = timeout
        self._session = session
        self._owns_session = session is None
        self.interceptors: list[RequestInterceptor] = list(interceptors or [])

    def add_interceptor(self, interceptor: RequestInterceptor) -> None:
        self.interceptors.append(interceptor)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            kwargs: dict[str, Any] = {}
            if self._timeout is not None:
                kwargs["timeout"] = aiohttp.ClientTimeout(total=self._timeout)
            self._session = aiohttp.ClientSession(**kwargs)
            self._owns_session = True
        return self._session

    async def _notify(self, hook: str, *args: Any) -> None:
        for interceptor in self.interceptors:
            try:
                await getattr(interceptor, hook)(*args)
            except Exception:
                logger.exception(
                    "Interceptor %s.%s failed", type(interceptor).__name__, hook
                )

    async def request(
        self,
        method: str,
        url: str,
        token: Optional[str] = None,
        payload: Any = None,
    ) -> Any:
        """Send a JSON request and return the decoded response body.

        Raises:
            SubscriptionExpiredError: The node reports an expired subscription.
            VaultRequestError: Connection failure or HTTP status >= 400.
        """
        info = RequestInfo(method=method, url=url, body=payload)
        await self._notify("on_request", info)
        headers = {"Accept": "application/json"}
        data = None
        if payload is not None:
            headers["Content-Type"] = "application/json"
            data = serialize_value(payload)
        if token:
            headers["Authorization"] = f"Bearer {token}"
        session = self._get_session()
        try:
            async with session.request(method, url, data=data, headers=headers) as response:
                status = response.status
                raw = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            await self._notify("on_error", info, err)
            raise VaultRequestError(
                f"{method} {url} failed: {err or type(err).__name__}", url=url
            ) from err
        body = _parse_body(raw)
        await self._notify("on_response", info, status, body)
        if status >= 400:
            if is_subscription_expired(status, body):
                raise SubscriptionExpiredError()
            raise VaultRequestError(
                _error_message(status, body), status=status, body=body, url=url
            )
        return body

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "VaultTransport":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
