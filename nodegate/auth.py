"""
NodeGate - Wallet Session Authentication
==========================================
Owns the session lifecycle for human operators.

Security model:
- Operators log in by signing a message with a Polkadot wallet
- The address must pass the allow-list (ALLOWED_WALLETS, empty = public mode)
- A JWT (HS256) is issued and a matching session record is stored
- Every authenticated request resolves the bearer token to a Principal,
  consulting the in-memory TokenCache before the session store
- Logout deletes the session record and clears the cache entry

Token states:
    unknown -> pending-validation -> valid | invalid

A token is valid only while both hold:
    1. the JWT signature and "exp" claim verify
    2. a session record exists for it and has not expired
Once the record is gone the token never becomes valid again.

Login flow:
    1. Client signs a message with its wallet extension
    2. POST /api/wallet {address, signature, message}
    3. Address format + allow-list checked, signature verified
    4. User fetched or created, JWT + session record issued
    5. Client sends "Authorization: Bearer <token>" from then on
"""

import hashlib
import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError

from nodegate.allowlist import AllowList
from nodegate.errors import (
    AddressNotAllowed,
    AdminRequired,
    AuthError,
    InvalidAddress,
    InvalidationFailed,
    MissingFields,
    PersistenceError,
    RefreshFailed,
    SessionExpired,
    SignatureInvalid,
    TokenInvalid,
    TokenMissing,
)
from nodegate.models import Principal, SessionRecord, User, utcnow
from nodegate.stores import SessionStore, UserStore
from nodegate.token_cache import TokenCache
from nodegate.wallet import WalletVerifier, is_valid_address_format

logger = logging.getLogger(__name__)

# JWT configuration
JWT_ALGORITHM = "HS256"
JWT_EXPIRATION_HOURS = 24

# Security scheme for FastAPI dependency injection
security = HTTPBearer(auto_error=False)


def user_id_for(address: str) -> str:
    """
    Derive a stable, readable user id from a wallet address.

    Format: first six characters of the address, a dash, eight hex digits
    of the address's SHA-256 digest.
    """
    digest = hashlib.sha256(address.encode("utf-8")).hexdigest()
    return f"{address[:6]}-{digest[:8]}"


def short_token(token: str) -> str:
    """Token fragment safe to put in logs."""
    return f"{token[:8]}..." if token else "<none>"


class SessionManager:
    """
    Issues, resolves, refreshes and invalidates wallet sessions.

    Attributes:
        allow_list:  Wallet allow-list consulted on login and on every
                     resolution that misses the cache.
        sessions:    Session record store.
        users:       Operator account store.
        cache:       Token resolution cache (injected, replaceable).
        verifier:    Wallet signature verifier.
        secret:      JWT signing secret.
        expiration:  Lifetime of a token and its session record.
    """

    def __init__(
        self,
        secret: str,
        allow_list: AllowList,
        sessions: SessionStore,
        users: UserStore,
        cache: TokenCache,
        verifier: WalletVerifier | None = None,
        expiration_hours: float = JWT_EXPIRATION_HOURS,
        now: Callable[[], datetime] = utcnow,
    ):
        if not secret:
            raise ValueError("JWT secret must not be empty")
        self.secret = secret
        self.allow_list = allow_list
        self.sessions = sessions
        self.users = users
        self.cache = cache
        self.verifier = verifier or WalletVerifier()
        self.expiration = timedelta(hours=expiration_hours)
        self._now = now

    # -- Issue -----------------------------------------------------------------

    async def login(self, address: str, signature: str, message: str) -> tuple[str, User]:
        """
        Authenticate a wallet signature and open a session.

        Args:
            address:   SS58 wallet address of the signer.
            signature: Hex signature produced by the wallet extension.
            message:   The message that was signed.

        Returns:
            (token, user) for the freshly opened session.

        Raises:
            MissingFields:     A field is empty.
            InvalidAddress:    The address is not a 48-character SS58 string.
            AddressNotAllowed: The allow-list rejects the address.
            SignatureInvalid:  No supported scheme verifies the signature.
            PersistenceError:  A store failed.
        """
        if not address or not signature or not message:
            raise MissingFields()

        if not is_valid_address_format(address):
            raise InvalidAddress()

        if not self.allow_list.is_address_allowed(address):
            logger.warning("Login refused for non-allowed wallet %s", address)
            raise AddressNotAllowed()

        result = self.verifier.verify(message, signature, address)
        if not result.is_valid:
            raise SignatureInvalid()

        user = await self._get_or_create_user(address)
        token = await self.issue(user)
        logger.info("Session opened for %s (user %s)", address, user.id)
        return token, user

    async def issue(self, user: User) -> str:
        """Sign a JWT for a user and persist its session record."""
        now = self._now()
        token = self._create_token(user.id, user.address, user.is_admin, now)
        record = SessionRecord(
            token=token,
            user_id=user.id,
            address=user.address,
            is_admin=user.is_admin,
            expires_at=now + self.expiration,
            created_at=now,
        )
        return await self.sessions.create(record)

    async def _get_or_create_user(self, address: str) -> User:
        is_admin = self.allow_list.is_address_admin(address)
        now = self._now()

        user = await self.users.find_by_address(address)
        if user is None:
            logger.info("Creating user for %s", address)
            user = User(
                id=user_id_for(address),
                address=address,
                name=f"User {address[:6]}...",
                is_admin=is_admin,
                created_at=now,
                last_login_at=now,
            )
            return await self.users.create(user)

        updated = await self.users.update_login(user.id, is_admin, now)
        return updated or user

    # -- Resolve ---------------------------------------------------------------

    async def resolve(self, token: str | None) -> Principal:
        """
        Resolve a bearer token to a Principal.

        A fresh cache hit answers without touching the session store.
        On a miss the JWT is decoded, the session record is looked up, the
        allow-list is re-evaluated and the result is cached.

        Raises:
            TokenMissing:     No token supplied.
            TokenInvalid:     Bad JWT, or no session record for it.
            SessionExpired:   The session record has expired.
            PersistenceError: The session store failed.
        """
        if not token:
            raise TokenMissing()

        cached = self.cache.get(token)
        if cached is not None and cached.valid:
            return Principal(
                address=cached.address,
                user_id=cached.user_id,
                is_admin=cached.is_admin,
                allowed=cached.allowed,
            )

        payload = self._decode_token(token)

        # A logout landing while the store is read must win over this set().
        seq = self.cache.snapshot()
        record = await self.sessions.find(token)
        if record is None:
            raise TokenInvalid()
        if record.is_expired(self._now()):
            raise SessionExpired()

        address = record.address or payload.get("address", "")
        principal = Principal(
            address=address,
            user_id=record.user_id or payload.get("sub", ""),
            is_admin=bool(record.is_admin or payload.get("isAdmin")),
            allowed=self.allow_list.is_address_allowed(address),
        )
        self.cache.set(
            token,
            valid=True,
            address=principal.address,
            user_id=principal.user_id,
            allowed=principal.allowed,
            is_admin=principal.is_admin,
            since=seq,
        )
        return principal

    # -- Refresh ---------------------------------------------------------------

    async def refresh(self, token: str | None) -> str:
        """
        Exchange a valid token for a new one with a fresh expiry.

        The old token's session record is replaced and its cache entry
        cleared, so the old token stops resolving.

        Raises:
            TokenMissing:      No token supplied.
            AddressNotAllowed: The address left the allow-list.
            RefreshFailed:     The token could not be resolved or replaced.
        """
        if not token:
            raise TokenMissing()

        try:
            principal = await self.resolve(token)
        except TokenInvalid as e:
            raise RefreshFailed() from e

        if not principal.allowed:
            raise AddressNotAllowed()

        now = self._now()
        new_token = self._create_token(principal.user_id, principal.address, principal.is_admin, now)
        record = SessionRecord(
            token=new_token,
            user_id=principal.user_id,
            address=principal.address,
            is_admin=principal.is_admin,
            expires_at=now + self.expiration,
            created_at=now,
        )
        try:
            await self.sessions.replace(token, record)
        except PersistenceError as e:
            logger.error("Token refresh failed for %s: %s", short_token(token), e)
            raise RefreshFailed() from e
        finally:
            self.cache.clear(token)

        return new_token

    # -- Invalidate ------------------------------------------------------------

    async def logout(self, token: str | None) -> None:
        """
        Invalidate a session.

        The session record is deleted first; the cache entry is cleared
        whatever the store did. Logging out a token that is already gone is
        a no-op success.

        Raises:
            TokenMissing:       No token supplied.
            InvalidationFailed: The store could not delete the record. The
                                cache entry is cleared anyway.
        """
        if not token:
            raise TokenMissing()

        try:
            removed = await self.sessions.delete(token)
        except PersistenceError as e:
            logger.error("Session invalidation failed for %s: %s", short_token(token), e)
            raise InvalidationFailed() from e
        finally:
            self.cache.clear(token)

        if not removed:
            logger.info("Logout for unknown session %s", short_token(token))

    # -- Internal helpers ------------------------------------------------------

    def _create_token(self, user_id: str, address: str, is_admin: bool, now: datetime) -> str:
        """Generate a JWT with the session claims."""
        payload = {
            "sub": user_id,
            "address": address,
            "isAdmin": bool(is_admin),
            "iat": now,
            "exp": now + self.expiration,
            "jti": secrets.token_hex(8),
        }
        return jwt.encode(payload, self.secret, algorithm=JWT_ALGORITHM)

    def _decode_token(self, token: str) -> dict:
        if token.count(".") != 2:
            raise TokenInvalid()
        try:
            payload = jwt.decode(token, self.secret, algorithms=[JWT_ALGORITHM])
        except JWTError as e:
            logger.debug("JWT rejected for %s: %s", short_token(token), e)
            raise TokenInvalid() from e
        if not payload.get("sub"):
            raise TokenInvalid()
        return payload


# =============================================================================
# FastAPI dependencies
# =============================================================================

def bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> str | None:
    """The raw bearer token of the request, if any."""
    return credentials.credentials if credentials else None


def require_principal(session_manager: SessionManager, require_admin: bool = False):
    """
    Create a FastAPI dependency that resolves the caller's principal.

    In public mode, routes that do not need admin rights never reject a
    caller: a missing, stale or unknown token yields an anonymous admin
    principal. Admin routes always need a valid token whose principal is
    admin.

    Usage in routes:
        principal = Depends(require_principal(session_manager))

    Args:
        session_manager: The SessionManager used to resolve tokens.
        require_admin:   Reject non-admin principals with 403.

    Returns:
        A FastAPI dependency function returning a Principal.
    """
    async def _resolve(
        request: Request,
        token: str | None = Depends(bearer_token),
    ) -> Principal:
        allow_list = session_manager.allow_list

        anonymous = Principal(address="", user_id="", is_admin=True, allowed=True)
        public = allow_list.is_public_mode() and not require_admin

        if public and not token:
            return anonymous

        try:
            principal = await session_manager.resolve(token)
        except AuthError:
            if not public:
                raise
            logger.debug("Ignoring unusable token on public route %s", request.url.path)
            return anonymous

        if not principal.allowed:
            raise AddressNotAllowed()
        if require_admin and not principal.is_admin:
            raise AdminRequired()

        request.state.principal = principal
        return principal

    return _resolve
