import hashlib
import re
import secrets

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

import statuspage.core.database as db_module
from statuspage.core.database import ApiKey
from statuspage.core.exceptions import ConflictError, ValidationError

API_KEY_PREFIX = "sp_sk_"
DISPLAY_PREFIX_LENGTH = len(API_KEY_PREFIX) + 4
KEY_SCOPES = ("user", "admin")

_KEY_PATTERN = re.compile(rf"^{API_KEY_PREFIX}[0-9a-f]{{48}}$")


def generate_api_key() -> str:
    return API_KEY_PREFIX + secrets.token_hex(24)


def is_well_formed(token: str) -> bool:
    """True for ``sp_sk_`` followed by exactly 48 lowercase hex chars."""
    return bool(_KEY_PATTERN.match(token))


def hash_api_key(key: str) -> str:
    return hashlib.sha256(key.encode()).hexdigest()


def display_prefix(key: str) -> str:
    """Stored alongside the hash so operators can tell keys apart, e.g. ``sp_sk_3f9a``."""
    return key[:DISPLAY_PREFIX_LENGTH]


class AuthService:
    """API key management. Only the SHA-256 hash of a key is ever stored."""

    def __init__(self, session_factory: async_sessionmaker | None = None):
        self._session_factory_override = session_factory

    @property
    def _session_factory(self) -> async_sessionmaker:
        return self._session_factory_override or db_module.async_session

    async def create_key(self, label: str, scope: str = "user", notes: str | None = None) -> tuple[str, ApiKey]:
        """Create a new API key. Returns (raw_key, key_row); the raw key is not recoverable later."""
        if scope not in KEY_SCOPES:
            raise ValidationError(f"Scope must be one of: {', '.join(KEY_SCOPES)}.")
        raw_key = generate_api_key()
        key_row = ApiKey(
            key_hash=hash_api_key(raw_key),
            key_prefix=display_prefix(raw_key),
            label=label,
            scope=scope,
            notes=notes,
            is_active=True,
        )
        async with self._session_factory() as session:
            session.add(key_row)
            await session.commit()
            await session.refresh(key_row)
        return raw_key, key_row

    async def find_active_key(self, token: str) -> ApiKey | None:
        """The active key row for a presented token, or None."""
        if not is_well_formed(token):
            return None
        async with self._session_factory() as session:
            result = await session.execute(
                select(ApiKey).where(ApiKey.key_hash == hash_api_key(token), ApiKey.is_active == True)  # noqa: E712
            )
            return result.scalar_one_or_none()

    async def list_keys(self) -> list[ApiKey]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ApiKey).where(ApiKey.is_active == True).order_by(ApiKey.created_at.desc())  # noqa: E712
            )
            return list(result.scalars().all())

    async def revoke_key(self, key_identifier: str) -> bool:
        """Revoke a key by its full value or display prefix. Returns True if a key was revoked.

        A display prefix shared by several active keys is refused with a
        ConflictError; the full key is needed to pick one.
        """
        async with self._session_factory() as session:
            if is_well_formed(key_identifier):
                condition = ApiKey.key_hash == hash_api_key(key_identifier)
            else:
                condition = ApiKey.key_prefix == key_identifier
            result = await session.execute(
                select(ApiKey).where(condition, ApiKey.is_active == True)  # noqa: E712
            )
            matches = list(result.scalars().all())
            if not matches:
                return False
            if len(matches) > 1:
                raise ConflictError(
                    f"Prefix '{key_identifier}' matches {len(matches)} active keys. Revoke by full key.",
                    details={"labels": sorted(k.label for k in matches)},
                )

            matches[0].is_active = False
            await session.commit()
            return True
