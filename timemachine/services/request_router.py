"""Issues YouTube Data API calls, rotating across the credential pool on failure."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

import httpx

from timemachine.core.config import Settings, settings as default_settings
from timemachine.services.credential_pool import CredentialPool, mask_token
from timemachine.services.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class RouterError(RuntimeError):
    """Base class for terminal request failures."""


class NoCredentialsAvailable(RouterError):
    """Raised when the pool holds no credentials at all."""

    def __init__(self) -> None:
        super().__init__("No API keys available")


class AllCredentialsExhausted(RouterError):
    """Raised when the retry budget is spent without a successful response."""

    def __init__(self, attempts: int) -> None:
        super().__init__(f"All API keys exhausted after {attempts} attempts")
        self.attempts = attempts


class HttpError(RouterError):
    """Non-200 response from the API."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"API Error: {message}")
        self.status = status
        self.message = message


class NetworkError(RouterError):
    def __init__(self, message: str = "Network error") -> None:
        super().__init__(message)
        self.message = message


class RequestTimeoutError(RouterError):
    def __init__(self, message: str = "Request timeout") -> None:
        super().__init__(message)
        self.message = message


class InvalidResponseError(RouterError):
    """A 200 response whose body was not valid JSON."""


@dataclass(slots=True)
class _AttemptFailure:
    error: RouterError
    reason: str
    backoff_seconds: float


@dataclass(slots=True)
class CredentialCheck:
    """Outcome of probing a single credential."""

    position: int
    masked: str
    status: str
    message: str


def _error_message(response: httpx.Response) -> str:
    fallback = f"HTTP {response.status_code}"
    try:
        payload = response.json()
    except ValueError:
        return fallback
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return fallback


class RequestRouter:
    """Makes one logical GET request look like it has unlimited quota.

    Each attempt takes the pool's current credential, records the outcome on
    it and persists the pool. Failures rotate to the next clean credential and
    retry after a short backoff; the loop is bounded by
    ``min(len(pool), max_request_attempts)``.
    """

    def __init__(
        self,
        pool: CredentialPool,
        store: KeyValueStore,
        client: httpx.AsyncClient,
        *,
        config: Settings = default_settings,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._pool = pool
        self._store = store
        self._client = client
        self._config = config
        self._sleep = sleep

    @property
    def base_url(self) -> str:
        return self._config.youtube_api_base.rstrip("/")

    def endpoint(self, resource: str) -> str:
        return f"{self.base_url}/{resource.lstrip('/')}"

    async def execute(self, endpoint: str, params: Mapping[str, Any]) -> dict[str, Any]:
        if len(self._pool) == 0:
            raise NoCredentialsAvailable()

        max_attempts = min(len(self._pool), self._config.max_request_attempts)
        attempt = 0

        while attempt < max_attempts:
            async with self._pool.lock:
                token = self._pool.current()
                if token is None:
                    raise NoCredentialsAvailable()

                logger.debug(
                    "Request attempt %s with key %s",
                    attempt + 1,
                    (self._pool.current_index or 0) + 1,
                )
                outcome = await self._attempt(endpoint, params, token)

                if isinstance(outcome, dict):
                    self._pool.mark_success(token)
                    await self._pool.save(self._store)
                    return outcome

                self._pool.mark_failed(token, outcome.reason)
                rotated = self._pool.rotate()
                await self._pool.save(self._store)

            if not rotated:
                logger.warning("Request to %s failed, no usable key left: %s", endpoint, outcome.reason)
                raise outcome.error

            logger.info(
                "Retrying request to %s after %s",
                endpoint,
                outcome.reason,
                extra={"attempt": attempt + 1},
            )
            await self._sleep(outcome.backoff_seconds)
            attempt += 1

        raise AllCredentialsExhausted(max_attempts)

    async def _attempt(
        self,
        endpoint: str,
        params: Mapping[str, Any],
        token: str,
    ) -> dict[str, Any] | _AttemptFailure:
        http_backoff = self._config.http_backoff_ms / 1000.0
        query = {**_stringify(params), "key": token}
        try:
            response = await self._client.get(
                endpoint,
                params=query,
                headers={"Accept": "application/json"},
                timeout=self._config.request_timeout_seconds,
            )
        except httpx.TimeoutException:
            return _AttemptFailure(RequestTimeoutError(), "Request timeout", http_backoff)
        except httpx.RequestError:
            return _AttemptFailure(
                NetworkError(), "Network error", self._config.network_backoff_ms / 1000.0
            )

        if response.status_code == 200:
            try:
                payload = response.json()
            except ValueError as exc:
                raise InvalidResponseError("Invalid JSON response") from exc
            if not isinstance(payload, dict):
                raise InvalidResponseError("Invalid JSON response")
            return payload

        message = _error_message(response)
        return _AttemptFailure(HttpError(response.status_code, message), message, http_backoff)

    async def check_all(self) -> list[CredentialCheck]:
        """Probe every credential once without touching rotation or health."""

        results: list[CredentialCheck] = []
        endpoint = self.endpoint("search")
        for position, token in enumerate(list(self._pool.tokens)):
            params = {"part": "snippet", "q": "test", "maxResults": "1", "type": "video", "key": token}
            masked = mask_token(token)
            try:
                response = await self._client.get(
                    endpoint, params=params, timeout=self._config.check_timeout_seconds
                )
            except httpx.TimeoutException:
                results.append(CredentialCheck(position, masked, "error", "Request timeout"))
            except httpx.RequestError:
                results.append(CredentialCheck(position, masked, "error", "Network error"))
            else:
                results.append(_classify_check(position, masked, response))

            await self._sleep(self._config.check_delay_ms / 1000.0)

        return results


def _classify_check(position: int, masked: str, response: httpx.Response) -> CredentialCheck:
    if response.status_code != 200:
        return CredentialCheck(position, masked, "error", _error_message(response))
    try:
        payload = response.json()
    except ValueError:
        return CredentialCheck(position, masked, "error", "Invalid JSON response")
    items = payload.get("items") if isinstance(payload, dict) else None
    if items:
        return CredentialCheck(position, masked, "ok", "Working")
    return CredentialCheck(position, masked, "empty", "Valid but no results")


def _stringify(params: Mapping[str, Any]) -> dict[str, str]:
    return {name: str(value) for name, value in params.items() if value is not None}
