from __future__ import annotations

import math
import time
from dataclasses import dataclass
from urllib.parse import urlsplit

import httpx

from tidymarks.errors import ScanCancelled, TransportError, ValidationError

DEFAULT_HEADERS = {
    "User-Agent": "Tidymarks/1.0 (bookmark cleanup)",
    "Accept": "text/html,application/xhtml+xml",
}

DEFAULT_TIMEOUT_MS = 8000
MIN_TIMEOUT_MS = 1500
MAX_TIMEOUT_MS = 20000

GET_RETRY_STATUSES = {403, 405}


@dataclass(frozen=True)
class LinkProbeResult:
    ok: bool
    method: str
    duration_ms: int
    status: int | None = None
    error: str | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> LinkProbeResult:
        status = payload.get("status")
        duration = payload.get("durationMs")
        return cls(
            ok=bool(payload.get("ok")),
            method=str(payload.get("method") or "HEAD"),
            duration_ms=int(duration) if isinstance(duration, (int, float)) else 0,
            status=status if isinstance(status, int) and not isinstance(status, bool) else None,
            error=payload.get("error") or None,
        )

    def as_payload(self):
        payload = {"ok": self.ok, "durationMs": self.duration_ms, "method": self.method}
        if self.ok:
            payload["status"] = self.status
        else:
            payload["error"] = self.error
        return payload


def clamp_timeout(value) -> int:
    """Per-request timeout in milliseconds, clamped to the supported window."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_TIMEOUT_MS
    if math.isnan(value):
        return DEFAULT_TIMEOUT_MS
    return int(min(max(value, MIN_TIMEOUT_MS), MAX_TIMEOUT_MS))


def is_http_url(value: str) -> bool:
    try:
        parsed = urlsplit(value)
    except ValueError:
        return False
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def _normalize_error(exc: Exception | None) -> str:
    if exc is None:
        return "Unknown error"
    if isinstance(exc, httpx.TimeoutException):
        return "Timeout"
    message = str(exc).strip()
    if message:
        return message
    return exc.__class__.__name__


def _attempt(client: httpx.Client, url: httpx.URL, method: str):
    try:
        with client.stream(method, url) as response:
            return response.status_code, None
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        return None, exc


def _raise_if_cancelled(cancel_token) -> None:
    if cancel_token is not None and cancel_token.is_cancelled():
        raise ScanCancelled("Scan cancelled")


def probe_link(
    url: str,
    timeout_ms=DEFAULT_TIMEOUT_MS,
    cancel_token=None,
    transport: httpx.BaseTransport | None = None,
) -> LinkProbeResult:
    """Check ``url`` with HEAD, falling back to GET once when HEAD is refused or fails."""
    if not isinstance(url, str) or not url.strip():
        raise ValidationError("Missing url")
    url = url.strip()
    if not is_http_url(url):
        raise ValidationError("Only http/https URLs are supported")
    try:
        request_url = httpx.URL(url)
    except httpx.InvalidURL as exc:
        raise ValidationError(f"Invalid url: {exc}") from exc

    timeout = clamp_timeout(timeout_ms) / 1000
    started = time.monotonic()
    _raise_if_cancelled(cancel_token)

    with httpx.Client(
        follow_redirects=True,
        timeout=timeout,
        headers=DEFAULT_HEADERS,
        transport=transport,
    ) as client:
        method = "HEAD"
        status_code, error = _attempt(client, request_url, method)
        _raise_if_cancelled(cancel_token)

        if status_code in GET_RETRY_STATUSES:
            method = "GET"
            status_code, error = _attempt(client, request_url, method)
        elif error is not None:
            fallback_status, _ = _attempt(client, request_url, "GET")
            if fallback_status is not None:
                method = "GET"
                status_code, error = fallback_status, None
        _raise_if_cancelled(cancel_token)

    duration_ms = int((time.monotonic() - started) * 1000)
    if error is not None or status_code is None:
        return LinkProbeResult(
            ok=False,
            method=method,
            duration_ms=duration_ms,
            error=_normalize_error(error),
        )
    return LinkProbeResult(
        ok=True, method=method, duration_ms=duration_ms, status=status_code
    )


class RemoteLinkProber:
    """Client for a link prober reachable over HTTP (``POST <base>/api/check``)."""

    def __init__(self, base_url: str, transport: httpx.BaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.transport = transport

    def __call__(self, url: str, timeout_ms, cancel_token=None) -> LinkProbeResult:
        _raise_if_cancelled(cancel_token)
        timeout = clamp_timeout(timeout_ms)
        try:
            with httpx.Client(
                timeout=(timeout + MIN_TIMEOUT_MS) / 1000, transport=self.transport
            ) as client:
                response = client.post(
                    f"{self.base_url}/api/check",
                    json={"url": url, "timeoutMs": timeout},
                )
        except httpx.TimeoutException as exc:
            raise TimeoutError("Timeout") from exc
        except httpx.HTTPError as exc:
            raise TransportError(_normalize_error(exc)) from exc
        _raise_if_cancelled(cancel_token)

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        if response.is_error:
            return LinkProbeResult(
                ok=False,
                method=str(payload.get("method") or "HEAD"),
                duration_ms=0,
                error=payload.get("error") or f"Request failed ({response.status_code})",
            )
        return LinkProbeResult.from_payload(payload)
