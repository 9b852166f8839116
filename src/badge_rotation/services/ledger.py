"""Clients for the immutable ledger and the token-transfer service.

Both collaborators sit behind small protocols so the rotation services can be
exercised with in-memory fakes. The shipped HTTP clients share:

- an httpx ``AsyncClient`` created lazily per client
- short-lived HS256 bearer tokens signed with a shared secret
- a circuit breaker that stops calling a failing service for a while
- per-client outcome counters

Ledger writes are best-effort: callers record the returned reference when one
comes back and log any failure without rolling back their own committed
state.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from collections import Counter
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

import httpx
from jose import jwt
from sqlalchemy.orm import Session

from badge_rotation.core.settings import settings
from badge_rotation.utils.hash import idempotency_key

logger = logging.getLogger(__name__)

HTTP_INTERNAL_SERVER_ERROR = 500
HTTP_SUCCESS_CODES = (200, 201, 202)


class LedgerError(RuntimeError):
    """Base exception raised when an outbound collaborator call fails."""


class LedgerDisabledError(LedgerError):
    """Raised when a collaborator is called while its integration is disabled."""


class Ledger(Protocol):
    """Append-only audit ledger."""

    async def record_event(self, kind: str, payload: Mapping[str, Any]) -> str | None: ...


class TokenTransfer(Protocol):
    """Moves reward tokens between wallets."""

    async def transfer(
        self,
        from_wallet: str,
        to_wallet: str,
        amount: float,
        memo: str,
    ) -> str: ...


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreaker:
    """Fails fast after ``failure_threshold`` consecutive failures.

    Once ``cooldown_seconds`` have passed the circuit lets trial calls
    through. ``recovery_successes`` clean trials close it again; a failed
    trial reopens it at once.
    """

    failure_threshold: int = 5
    cooldown_seconds: float = 60.0
    recovery_successes: int = 3
    clock: Callable[[], float] = time.monotonic

    state: CircuitState = CircuitState.CLOSED
    _failures: int = 0
    _trial_successes: int = 0
    _opened_at: float = 0.0

    def allow(self) -> bool:
        """Return whether a call may be attempted now."""
        if (
            self.state is CircuitState.OPEN
            and self.clock() - self._opened_at >= self.cooldown_seconds
        ):
            self.state = CircuitState.HALF_OPEN
            self._trial_successes = 0
        return self.state is not CircuitState.OPEN

    def record_success(self) -> None:
        self._failures = 0
        if self.state is CircuitState.HALF_OPEN:
            self._trial_successes += 1
            if self._trial_successes >= self.recovery_successes:
                self.state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failures += 1
        if self.state is CircuitState.HALF_OPEN or self._failures >= self.failure_threshold:
            self.state = CircuitState.OPEN
            self._opened_at = self.clock()


@dataclass
class ClientMetrics:
    """Outcome counters for one outbound client, keyed by failure kind."""

    requests: int = 0
    failures: Counter[str] = field(default_factory=Counter)

    @property
    def failed(self) -> int:
        return sum(self.failures.values())

    @property
    def succeeded(self) -> int:
        return self.requests - self.failed

    def record(self, error_type: str | None) -> None:
        self.requests += 1
        if error_type:
            self.failures[error_type] += 1

    def success_rate(self) -> float:
        """Share of requests that succeeded, as a percentage."""
        return self.succeeded / self.requests * 100 if self.requests else 0.0


@dataclass(frozen=True)
class LedgerConfig:
    """Immutable connection settings for an outbound collaborator."""

    enabled: bool
    base_url: str | None
    instance_id: str
    shared_secret: str | None
    audience: str
    token_ttl_seconds: int
    timeout_seconds: float


def load_ledger_config() -> LedgerConfig:
    """Build the ledger configuration from global settings."""
    return LedgerConfig(
        enabled=bool(settings.ledger_enabled and settings.ledger_base_url),
        base_url=settings.ledger_base_url,
        instance_id=settings.ledger_instance_id,
        shared_secret=settings.ledger_shared_secret,
        audience=settings.ledger_audience,
        token_ttl_seconds=settings.ledger_token_ttl_seconds,
        timeout_seconds=float(settings.ledger_http_timeout_seconds),
    )


def load_token_transfer_config() -> LedgerConfig:
    """Build the token-transfer configuration; it shares the ledger credentials."""
    return LedgerConfig(
        enabled=bool(settings.token_transfer_enabled and settings.token_transfer_base_url),
        base_url=settings.token_transfer_base_url,
        instance_id=settings.ledger_instance_id,
        shared_secret=settings.ledger_shared_secret,
        audience=settings.ledger_audience,
        token_ttl_seconds=settings.ledger_token_ttl_seconds,
        timeout_seconds=float(settings.ledger_http_timeout_seconds),
    )


class _ServiceClient:
    """Shared HTTP plumbing for the ledger and token-transfer clients."""

    service_name = "service"

    def __init__(self, config: LedgerConfig) -> None:
        self.config = config
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        self._circuit_breaker = CircuitBreaker()
        self.metrics = ClientMetrics()

    @property
    def enabled(self) -> bool:
        return self.config.enabled and bool(self.config.base_url)

    async def _ensure_client(self) -> httpx.AsyncClient:
        if not self.enabled:
            raise LedgerDisabledError(f"{self.service_name} integration is not enabled")

        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.base_url or "",
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                )
        return self._client

    def _build_auth_headers(self, *, idempotency_key: str | None = None) -> dict[str, str]:
        headers = {"X-Instance-Id": self.config.instance_id}

        if self.config.shared_secret:
            now = int(time.time())
            payload = {
                "iss": self.config.instance_id,
                "aud": self.config.audience,
                "iat": now,
                "exp": now + max(1, self.config.token_ttl_seconds),
                "jti": secrets.token_hex(8),
            }
            token = jwt.encode(payload, self.config.shared_secret, algorithm="HS256")
            headers["Authorization"] = f"Bearer {token}"

        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    async def _post(
        self,
        path: str,
        payload: Mapping[str, Any],
        *,
        key: str | None = None,
    ) -> dict[str, Any]:
        if not self._circuit_breaker.allow():
            raise LedgerError(f"{self.service_name} circuit breaker is open")

        client = await self._ensure_client()
        headers = self._build_auth_headers(idempotency_key=key)
        error_type: str | None = "unexpected_error"

        try:
            response = await client.post(path, json=dict(payload), headers=headers)
            if response.status_code >= HTTP_INTERNAL_SERVER_ERROR:
                self._circuit_breaker.record_failure()
                error_type = f"http_{response.status_code}"
                raise LedgerError(f"{self.service_name} responded with {response.status_code}")

            self._circuit_breaker.record_success()
            if response.status_code not in HTTP_SUCCESS_CODES:
                error_type = f"http_{response.status_code}"
                raise LedgerError(
                    f"Unexpected {self.service_name} response ({response.status_code}) for {path}"
                )
            body = response.json()
            error_type = None
        except httpx.HTTPError as exc:
            self._circuit_breaker.record_failure()
            error_type = "network_error"
            raise LedgerError(f"{self.service_name} request failed: {exc}") from exc
        except ValueError as exc:
            error_type = "decode_error"
            raise LedgerError(f"{self.service_name} returned invalid JSON") from exc
        finally:
            self.metrics.record(error_type)

        return body if isinstance(body, dict) else {}

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            if self.metrics.requests:
                logger.info(
                    "%s client closed after %d request(s), %.1f%% successful",
                    self.service_name,
                    self.metrics.requests,
                    self.metrics.success_rate(),
                )


class LedgerClient(_ServiceClient):
    """HTTP client writing rotation events to the immutable ledger."""

    service_name = "ledger"

    def __init__(self, config: LedgerConfig | None = None) -> None:
        super().__init__(config or load_ledger_config())

    async def record_event(self, kind: str, payload: Mapping[str, Any]) -> str | None:
        """Append one event; return the ledger reference if the ledger issued one."""
        body = await self._post(
            "/api/ledger/events",
            {"kind": kind, "payload": dict(payload)},
            key=idempotency_key(kind, payload),
        )
        ref = body.get("ref") or body.get("id")
        return str(ref) if ref else None


class TokenTransferClient(_ServiceClient):
    """HTTP client moving reward tokens out of the system wallet."""

    service_name = "token transfer"

    def __init__(self, config: LedgerConfig | None = None, token: str | None = None) -> None:
        super().__init__(config or load_token_transfer_config())
        self.token = token or settings.reward_token

    async def transfer(self, from_wallet: str, to_wallet: str, amount: float, memo: str) -> str:
        payload = {
            "from": from_wallet,
            "to": to_wallet,
            "amount": amount,
            "token": self.token,
            "memo": memo,
        }
        body = await self._post("/api/transfers", payload, key=idempotency_key("transfer", payload))
        ref = body.get("tx_hash") or body.get("ref")
        if not ref:
            raise LedgerError("Token transfer response did not include a reference")
        return str(ref)


async def record_best_effort(
    ledger: Ledger | None,
    kind: str,
    payload: Mapping[str, Any],
) -> str | None:
    """Record ``kind`` on the ledger, logging instead of raising on failure."""
    if ledger is None:
        return None
    try:
        return await ledger.record_event(kind, payload)
    except LedgerDisabledError:
        logger.debug("Ledger disabled; skipping %s", kind)
    except LedgerError as exc:
        logger.warning("Ledger write for %s failed: %s", kind, exc)
    except Exception:
        logger.exception("Ledger write for %s failed unexpectedly", kind)
    return None


def store_ledger_ref(db: Session, row: Any, ref: str | None) -> None:
    """Attach ``ref`` to a row whose own change has already committed.

    A failed write is rolled back and logged; the committed change stands.
    """
    if not ref:
        return
    try:
        row.ledger_ref = ref
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Could not store ledger reference %s on %r", ref, row)
