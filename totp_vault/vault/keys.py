"""
Master key sources and the bounded-lifetime key cache.

The master key is never persisted by the vault. It is fetched from a
``MasterKeyService`` and memoized by ``MasterKeyCache`` for a fixed TTL,
so steady-state code generation never waits on the key service.

Security Note:
    Never log key material. Only log the cache key and key versions.
"""
import os
import re
import time
import base64
import binascii
import logging
import secrets
import threading
from typing import Callable, Optional, Protocol

from ..exceptions import UpstreamUnavailableError
from .config import DEFAULT_MASTER_KEY_TTL, MASTER_KEY_CACHE_KEY

logger = logging.getLogger("totp_vault")


class MasterKeyService(Protocol):
    """Anything able to hand out the current master key."""

    def fetch_master_key(self) -> bytes:
        ...


class EnvKeyService:
    """Master key service backed by ``{prefix}{N}`` environment variables.

    Each variable holds a base64 key that must decode to exactly 32 bytes.
    The version handed out is ``key_id`` when given (used when rotating to
    a new key version), otherwise the one named by VAULT_ACTIVE_KEY_ID.

    Every configuration problem surfaces as ``UpstreamUnavailableError``,
    the same way an unreachable remote key service would.
    """

    KEY_LENGTH = 32

    def __init__(
        self,
        key_id: Optional[int] = None,
        prefix: str = "VAULT_MASTER_KEY_v",
        environ: Optional[dict] = None,
    ):
        self._key_id = key_id
        self._pattern = re.compile(rf"^{re.escape(prefix)}(\d+)$")
        self._environ = os.environ if environ is None else environ

    def versions(self) -> dict[int, bytes]:
        """Every key version found in the environment."""
        keys: dict[int, bytes] = {}
        for name, value in self._environ.items():
            match = self._pattern.match(name)
            if not match:
                continue
            try:
                key = base64.b64decode(value, validate=True)
            except binascii.Error as err:
                raise UpstreamUnavailableError(f"{name} is not valid base64") from err
            if len(key) != self.KEY_LENGTH:
                raise UpstreamUnavailableError(
                    f"{name} must decode to exactly {self.KEY_LENGTH} bytes, got {len(key)}"
                )
            keys[int(match.group(1))] = key
        if not keys:
            raise UpstreamUnavailableError("No vault master keys found in environment")
        logger.debug("Found master key version(s) %s", sorted(keys))
        return keys

    def active_key_id(self) -> int:
        if self._key_id is not None:
            return self._key_id
        raw = self._environ.get("VAULT_ACTIVE_KEY_ID")
        if not raw:
            raise UpstreamUnavailableError("VAULT_ACTIVE_KEY_ID is not set")
        try:
            return int(raw)
        except ValueError as err:
            raise UpstreamUnavailableError("VAULT_ACTIVE_KEY_ID is not an integer") from err

    def fetch_master_key(self) -> bytes:
        key_id = self.active_key_id()
        master_keys = self.versions()
        if key_id not in master_keys:
            raise UpstreamUnavailableError(
                f"Master key version {key_id} not found in environment"
            )
        return master_keys[key_id]

    @classmethod
    def new_key(cls) -> str:
        """A fresh random key, base64 encoded, ready for ``{prefix}{N}``."""
        return base64.b64encode(secrets.token_bytes(cls.KEY_LENGTH)).decode("ascii")


class StaticKeyService:
    """Master key service returning a fixed key."""

    def __init__(self, master_key: bytes):
        if not master_key:
            raise ValueError("master_key cannot be empty")
        self._master_key = master_key

    def fetch_master_key(self) -> bytes:
        return self._master_key


class MasterKeyCache:
    """Memoizes the master key for ``ttl`` seconds.

    Absence or expiry forces a re-fetch. Fetch failures are surfaced as
    ``UpstreamUnavailableError`` and never cached.
    """

    def __init__(
        self,
        service: MasterKeyService,
        ttl: int = DEFAULT_MASTER_KEY_TTL,
        cache_key: str = MASTER_KEY_CACHE_KEY,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl <= 0:
            raise ValueError("ttl must be a positive number of seconds")
        self._service = service
        self._ttl = ttl
        self._clock = clock
        self.cache_key = cache_key
        self._lock = threading.Lock()
        self._cache: dict[str, tuple[bytes, float]] = {}

    @property
    def ttl(self) -> int:
        return self._ttl

    def get(self) -> bytes:
        """Return the cached master key, fetching it when absent or expired.

        Raises:
            UpstreamUnavailableError: If the key service cannot deliver a key.
        """
        with self._lock:
            entry = self._cache.get(self.cache_key)
            now = self._clock()
            if entry is not None and entry[1] > now:
                return entry[0]
            logger.debug("Master key cache miss for %s, fetching", self.cache_key)
            try:
                master_key = self._service.fetch_master_key()
            except UpstreamUnavailableError:
                logger.error("Master key service is unavailable")
                raise
            except Exception as err:
                logger.error("Master key fetch failed: %s", type(err).__name__)
                raise UpstreamUnavailableError(
                    "Failed to fetch the master key"
                ) from err
            if not master_key:
                raise UpstreamUnavailableError("Master key service returned no key")
            self._cache[self.cache_key] = (master_key, now + self._ttl)
            logger.info(
                "Master key cached under %s for %d seconds", self.cache_key, self._ttl,
            )
            return master_key

    def invalidate(self) -> None:
        """Drop the cached key so the next ``get`` re-fetches it."""
        with self._lock:
            self._cache.pop(self.cache_key, None)
