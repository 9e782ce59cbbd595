"""Subscription usage snapshots from the Anthropic OAuth usage endpoint."""

from __future__ import annotations

import asyncio
import json
import logging
import platform
import subprocess
from collections.abc import Awaitable, Callable
from datetime import datetime
from pathlib import Path
from typing import Any

import httpx

from ralph.providers.claude.constants import (
    CREDENTIALS_FILE,
    KEYCHAIN_SERVICE,
    MAX_RETRIES,
    MAX_RETRY_DELAY,
    OAUTH_BETA_HEADER,
    REQUEST_TIMEOUT,
    RETRY_BASE_DELAY,
    RETRYABLE_STATUS_CODES,
    USAGE_URL,
)
from ralph.session.models import UsageSnapshot, UsageWindow

logger = logging.getLogger(__name__)


# ── Credentials ────────────────────────────────────────────────────────


def _token_from_json(raw: str) -> str | None:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None
    oauth = data.get("claudeAiOauth") if isinstance(data, dict) else None
    token = oauth.get("accessToken") if isinstance(oauth, dict) else None
    return token if isinstance(token, str) and token else None


def _token_from_keychain() -> str | None:
    try:
        proc = subprocess.run(
            ["security", "find-generic-password", "-s", KEYCHAIN_SERVICE, "-w"],
            capture_output=True,
            text=True,
            timeout=5,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug("Keychain lookup failed: %s", e)
        return None
    if proc.returncode != 0:
        return None
    return _token_from_json(proc.stdout.strip())


def load_oauth_token(credentials_path: Path | None = None) -> str | None:
    """Claude Code OAuth access token from the credentials file, else the macOS keychain."""
    path = credentials_path or Path.home() / CREDENTIALS_FILE
    if path.exists():
        try:
            token = _token_from_json(path.read_text())
        except OSError as e:
            logger.debug("Could not read %s: %s", path, e)
            token = None
        if token:
            return token
    if platform.system() == "Darwin":
        return _token_from_keychain()
    return None


# ── Payload parsing ────────────────────────────────────────────────────


def _parse_reset(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def parse_window(data: Any) -> UsageWindow | None:
    if not isinstance(data, dict):
        return None
    utilization = data.get("utilization")
    if not isinstance(utilization, (int, float)) or isinstance(utilization, bool):
        return None
    return UsageWindow(utilization=float(utilization), resets_at=_parse_reset(data.get("resets_at")))


def parse_usage(data: Any) -> UsageSnapshot | None:
    """Snapshot from the endpoint payload; ``None`` unless both main windows are valid."""
    if not isinstance(data, dict):
        return None
    five_hour = parse_window(data.get("five_hour"))
    seven_day = parse_window(data.get("seven_day"))
    if five_hour is None or seven_day is None:
        return None
    return UsageSnapshot(
        five_hour=five_hour,
        seven_day=seven_day,
        seven_day_sonnet=parse_window(data.get("seven_day_sonnet")),
    )


def format_usage(snapshot: UsageSnapshot) -> str:
    return (
        f"5h: {round(snapshot.five_hour.utilization)}% · "
        f"7d: {round(snapshot.seven_day.utilization)}%"
    )


# ── Provider ───────────────────────────────────────────────────────────


class SubscriptionUsageProvider:
    """Fetches the five-hour / seven-day subscription utilisation.

    ``refresh()`` never raises: missing credentials, HTTP failures and
    malformed payloads are logged and reported as ``None``.  Retries
    429/5xx with exponential backoff.
    """

    def __init__(
        self,
        token_loader: Callable[[], str | None] = load_oauth_token,
        *,
        client: httpx.AsyncClient | None = None,
        url: str = USAGE_URL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._token_loader = token_loader
        self._client = client
        self._url = url
        self._sleep = sleep

    # ── HTTP client ────────────────────────────────────────────────────

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=REQUEST_TIMEOUT)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    # ── Retry / resilience ─────────────────────────────────────────────

    @staticmethod
    def _get_retry_delay(response: httpx.Response, attempt: int) -> float:
        """Respect Retry-After, else exponential backoff."""
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                return min(float(retry_after), MAX_RETRY_DELAY)
            except ValueError:
                pass
        return RETRY_BASE_DELAY * (2**attempt)

    async def _request_with_retry(self, token: str) -> httpx.Response:
        client = await self._get_client()
        headers = {
            "Authorization": f"Bearer {token}",
            "anthropic-beta": OAUTH_BETA_HEADER,
        }

        for attempt in range(MAX_RETRIES):
            response = await client.get(self._url, headers=headers)
            if response.status_code not in RETRYABLE_STATUS_CODES or attempt == MAX_RETRIES - 1:
                break
            delay = self._get_retry_delay(response, attempt)
            logger.debug(
                "Usage retry %d/%d after %.1fs (status %d)",
                attempt + 1,
                MAX_RETRIES,
                delay,
                response.status_code,
            )
            await self._sleep(delay)

        response.raise_for_status()
        return response

    # ── UsageProvider interface ────────────────────────────────────────

    async def refresh(self) -> UsageSnapshot | None:
        token = await asyncio.to_thread(self._token_loader)
        if not token:
            logger.debug("No Claude Code OAuth credentials; usage unavailable")
            return None

        try:
            response = await self._request_with_retry(token)
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning("Usage API error %d", e.response.status_code)
            return None
        except httpx.HTTPError as e:
            logger.warning("Usage request failed: %s", e)
            return None
        except ValueError:
            logger.warning("Usage API returned invalid JSON")
            return None

        snapshot = parse_usage(data)
        if snapshot is None:
            logger.warning("Usage API returned an unexpected payload")
        return snapshot
