"""
Credential storage and role logins.

Every authenticated call goes through a :class:`TokenStore`.  Two
implementations share one interface:

- :class:`SharedTokenStore` (default) keeps **one** credential per
  actor kind.  Thousands of virtual users of the same kind read and
  refresh the same token; the last writer wins.
- :class:`PerUserTokenStore` keys credentials by ``(kind, slot)`` so
  each credential slot logs in and refreshes on its own.

Both guard their state with a lock, so concurrent readers never see a
half-written credential.

:class:`AuthClient` performs the HTTP side: ``POST /auth/{kind}/login``
with an account from the pool, ``POST /auth/refresh`` with the current
bearer token, and logout (clearing the slot).

Key Concepts Demonstrated:
- Strategy pattern: shared vs. per-VU credentials behind one interface
- JWT ``exp`` decoding with PyJWT (signature not verified; the harness
  is a client, not a verifier)
- Probabilistic refresh to exercise the refresh endpoint under load
"""

from __future__ import annotations

import logging
import random
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable, Hashable

import jwt

from deliveryload import kpis
from deliveryload.data import Account, AccountPool
from deliveryload.exceptions import ConfigurationError, StepFailure, TransportFailure
from deliveryload.models import ActorKind

if TYPE_CHECKING:
    from deliveryload.http_client import ApiClient

logger = logging.getLogger(__name__)

# Tokens this close to expiry are treated as already expired.
EXPIRY_LEEWAY = timedelta(seconds=5)

SHARED = "shared"
PER_VU = "per_vu"

RefreshCallback = Callable[[str | None], str | None]


def decode_expiry(token: str) -> datetime | None:
    """
    Return the ``exp`` claim of a JWT as an aware UTC datetime.

    Returns ``None`` for opaque (non-JWT) tokens and for JWTs without
    an ``exp`` claim.
    """
    try:
        claims = jwt.decode(token, options={"verify_signature": False, "verify_exp": False})
    except jwt.PyJWTError:
        return None
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc)


@dataclass(frozen=True)
class Credential:
    """
    A bearer token held for one actor kind (or one slot).

    Attributes:
        actor_kind: Kind the token was issued for.
        token: Opaque bearer string.
        acquired_at: When the harness stored it.
        expires_at: Decoded JWT expiry, if any.
    """

    actor_kind: ActorKind
    token: str
    acquired_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime | None = None

    @classmethod
    def issue(cls, actor_kind: ActorKind, token: str) -> Credential:
        return cls(actor_kind, token, expires_at=decode_expiry(token))

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at - EXPIRY_LEEWAY


class TokenStore(ABC):
    """
    Thread-safe credential storage.

    Args:
        refresh_probability: Chance in ``[0, 1]`` that
            :meth:`ensure_valid` refreshes a still-valid token.
        rng: Random source for the refresh draw.
    """

    def __init__(self, refresh_probability: float = 0.1, rng: random.Random | None = None) -> None:
        if not 0 <= refresh_probability <= 1:
            raise ConfigurationError(f"Refresh probability must be within [0, 1], got {refresh_probability}")
        self.refresh_probability = refresh_probability
        self._rng = rng or random.Random()
        self._credentials: dict[Hashable, Credential] = {}
        self._lock = threading.Lock()

    @abstractmethod
    def _key(self, kind: ActorKind, slot: int | None) -> Hashable:
        """Map a kind (and slot) to the storage key."""

    def credential(self, kind: ActorKind, slot: int | None = None) -> Credential | None:
        with self._lock:
            return self._credentials.get(self._key(kind, slot))

    def get_token(self, kind: ActorKind, slot: int | None = None) -> str | None:
        credential = self.credential(kind, slot)
        return credential.token if credential else None

    def set_token(self, kind: ActorKind, token: str, slot: int | None = None) -> Credential:
        credential = Credential.issue(kind, token)
        with self._lock:
            self._credentials[self._key(kind, slot)] = credential
        return credential

    def clear(self, kind: ActorKind, slot: int | None = None) -> None:
        with self._lock:
            self._credentials.pop(self._key(kind, slot), None)

    def ensure_valid(self, kind: ActorKind, refresh: RefreshCallback, slot: int | None = None) -> bool:
        """
        Make sure a usable token is cached, refreshing when needed.

        Returns ``True`` straight away when a non-expired token is
        cached and the random refresh draw does not fire.  Otherwise
        ``refresh`` is called with the current token (``None`` when
        there is none).  A returned token replaces the cached one; a
        ``None`` result leaves any stale token in place and returns
        ``False``.

        The refresh call runs outside the lock, so concurrent refreshes
        of a shared token are allowed and the last writer wins.
        """
        credential = self.credential(kind, slot)
        if credential is not None and not credential.is_expired():
            with self._lock:
                draw = self._rng.random()
            if draw >= self.refresh_probability:
                return True

        new_token = refresh(credential.token if credential else None)
        if not new_token:
            return False
        self.set_token(kind, new_token, slot)
        return True


class SharedTokenStore(TokenStore):
    """One credential per actor kind; the slot is ignored."""

    def _key(self, kind: ActorKind, slot: int | None) -> Hashable:
        return kind


class PerUserTokenStore(TokenStore):
    """One credential per ``(kind, slot)``."""

    def _key(self, kind: ActorKind, slot: int | None) -> Hashable:
        return (kind, slot)


_STORES: dict[str, type[TokenStore]] = {
    SHARED: SharedTokenStore,
    PER_VU: PerUserTokenStore,
}


def create_token_store(
    mode: str = SHARED,
    refresh_probability: float = 0.1,
    rng: random.Random | None = None,
) -> TokenStore:
    """
    Build the token store for *mode* (``"shared"`` or ``"per_vu"``).

    Raises:
        ConfigurationError: If *mode* is unknown.
    """
    try:
        store_type = _STORES[mode]
    except KeyError:
        raise ConfigurationError(f"Unknown token mode '{mode}' (expected 'shared' or 'per_vu')") from None
    return store_type(refresh_probability, rng)


# =====================================================================
# HTTP authentication
# =====================================================================


class AuthClient:
    """
    Role login, refresh and logout for one virtual user.

    Registers itself as the API client's refresher so that
    :meth:`TokenStore.ensure_valid` can renew tokens transparently
    before any authenticated call.

    Args:
        api: The virtual user's API client (fixes actor kind and slot).
        accounts: Pool to draw login accounts from.
        rng: Random source for account selection.
    """

    LOGIN_PATH = "/auth/{kind}/login"
    REFRESH_PATH = "/auth/refresh"

    def __init__(self, api: ApiClient, accounts: AccountPool, rng: random.Random | None = None) -> None:
        if api.actor_kind is None or api.tokens is None:
            raise ConfigurationError("AuthClient needs an API client with an actor kind and a token store")
        self.api = api
        self.accounts = accounts
        self._rng = rng
        api.refresher = self.refresh

    @property
    def kind(self) -> ActorKind:
        return self.api.actor_kind

    def login(self, account: Account | None = None) -> dict[str, Any]:
        """
        Log in with *account* (or a random pool account) and store the token.

        Returns:
            The ``user`` object from the login response (``{}`` if the
            API omitted it).

        Raises:
            StepFailure: If the login was rejected or returned no token.
            TransportFailure: If the request never got a response.
        """
        account = account or self.accounts.pick(self.kind, self._rng)
        path = self.LOGIN_PATH.format(kind=self.kind.value)
        try:
            response = self.api.post(
                path,
                json={"email": account.email, "password": account.password},
                authenticated=False,
            )
        except TransportFailure:
            kpis.record_auth(self.api.aggregator, False, 0.0)
            raise

        token = response.get("token")
        has_token = isinstance(token, str) and bool(token)
        success = response.ok and has_token
        kpis.record_auth(self.api.aggregator, success, response.duration_ms)

        self.api.check(f"{self.kind.value} login successful", response.status == 200)
        self.api.check(f"{self.kind.value} login has token", has_token)
        self.api.check(f"{self.kind.value} login response time < 2000ms", response.duration_ms < 2000)

        if not success:
            raise StepFailure(f"{self.kind.value} login failed with status {response.status}")

        self.api.tokens.set_token(self.kind, token, self.api.slot)
        user = response.get("user")
        return user if isinstance(user, dict) else {}

    def refresh(self, current_token: str | None) -> str | None:
        """
        Exchange *current_token* for a new one.

        With no current token the user simply logs in again.  Any
        failure returns ``None`` so the caller keeps the stale token.
        """
        if current_token is None:
            try:
                self.login()
            except StepFailure as exc:
                logger.warning("Re-login for %s failed: %s", self.kind.value, exc)
                return None
            return self.api.tokens.get_token(self.kind, self.api.slot)

        try:
            response = self.api.post(self.REFRESH_PATH, token=current_token)
        except TransportFailure as exc:
            logger.warning("Token refresh for %s failed: %s", self.kind.value, exc)
            return None

        token = response.get("token")
        has_token = isinstance(token, str) and bool(token)
        self.api.check("token refresh successful", response.status == 200)
        self.api.check("token refresh has new token", has_token)
        if response.ok and has_token:
            return token
        logger.warning("Token refresh for %s rejected with status %d", self.kind.value, response.status)
        return None

    def logout(self) -> None:
        self.api.tokens.clear(self.kind, self.api.slot)
