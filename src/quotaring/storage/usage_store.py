"""Typed access to the persisted records.

Four keys live in the backing :class:`~quotaring.storage.base.KeyValueStore`:
the usage snapshot, the settings, the organization identity and the
timestamp of the last acquisition attempt (the throttle guard).
"""

from __future__ import annotations

from typing import Any

import structlog
from pydantic import ValidationError

from quotaring.core.config import Settings
from quotaring.core.constants import StoreKey
from quotaring.core.types import OrganizationIdentity, UsageSnapshot, now_ms
from quotaring.storage.base import KeyValueStore

logger = structlog.get_logger(__name__)


class UsageStore:
    """Cache/throttle store.

    Only :class:`~quotaring.fetch.chain.FetchStrategyChain` calls
    :meth:`write_usage`; every other component reads.
    """

    def __init__(self, backend: KeyValueStore) -> None:
        self._backend = backend

    @property
    def backend(self) -> KeyValueStore:
        return self._backend

    # ------------------------------------------------------------------ #
    # Usage snapshot
    # ------------------------------------------------------------------ #

    @staticmethod
    def _parse_usage(raw: Any) -> UsageSnapshot:
        if not raw:
            return UsageSnapshot()
        try:
            return UsageSnapshot.model_validate(raw)
        except ValidationError as exc:
            logger.warning("stored_usage_invalid", error=str(exc))
            return UsageSnapshot()

    async def get_usage(self) -> UsageSnapshot:
        """Return the stored snapshot, or an empty default record."""
        return self._parse_usage(await self._backend.get(StoreKey.USAGE))

    async def write_usage(self, snapshot: UsageSnapshot) -> UsageSnapshot:
        """Replace the stored snapshot wholesale.

        ``fetched_at`` never moves backwards: a value older than the stored
        one (clock skew) is raised to the stored value.

        Returns:
            The snapshot as written.
        """
        async with self._backend.transaction() as txn:
            current = self._parse_usage(txn.get(StoreKey.USAGE))
            if (
                snapshot.fetched_at is not None
                and current.fetched_at is not None
                and snapshot.fetched_at < current.fetched_at
            ):
                snapshot = snapshot.model_copy(update={"fetched_at": current.fetched_at})
            txn.set(StoreKey.USAGE, snapshot.model_dump(mode="json"))
        logger.debug(
            "usage_written",
            source=snapshot.source,
            error=snapshot.error,
            session=snapshot.session_percentage,
            weekly=snapshot.weekly_all_models_percentage,
        )
        return snapshot

    # ------------------------------------------------------------------ #
    # Throttle guard
    # ------------------------------------------------------------------ #

    async def last_attempt_at(self) -> int | None:
        value = await self._backend.get(StoreKey.LAST_ATTEMPT)
        return int(value) if value is not None else None

    async def mark_attempt(self, at: int | None = None) -> int:
        stamp = at if at is not None else now_ms()
        await self._backend.set(StoreKey.LAST_ATTEMPT, stamp)
        return stamp

    async def throttle_remaining_ms(self, min_interval_ms: int, now: int | None = None) -> int:
        """Milliseconds until another attempt is allowed (0 when allowed now)."""
        last = await self.last_attempt_at()
        if last is None:
            return 0
        elapsed = (now if now is not None else now_ms()) - last
        return max(0, min_interval_ms - elapsed)

    # ------------------------------------------------------------------ #
    # Settings
    # ------------------------------------------------------------------ #

    async def get_settings(self) -> Settings:
        raw = await self._backend.get(StoreKey.SETTINGS) or {}
        try:
            return Settings.model_validate(raw)
        except ValidationError as exc:
            logger.warning("stored_settings_invalid", error=str(exc))
            return Settings()

    async def ensure_settings(self) -> Settings:
        """Persist default settings on first run; return what is stored."""
        async with self._backend.transaction() as txn:
            raw = txn.get(StoreKey.SETTINGS)
            if raw is None:
                settings = Settings()
                txn.set(StoreKey.SETTINGS, settings.model_dump(mode="json"))
                logger.info("settings_initialized")
                return settings
        return await self.get_settings()

    async def merge_settings(self, patch: dict[str, Any]) -> Settings:
        """Overlay *patch* onto the stored settings.

        The merged result is validated before it is committed; an invalid
        patch raises :class:`pydantic.ValidationError` and changes nothing.
        """
        async with self._backend.transaction() as txn:
            current = txn.get(StoreKey.SETTINGS) or {}
            merged = Settings.model_validate({**current, **patch})
            txn.set(StoreKey.SETTINGS, merged.model_dump(mode="json"))
        logger.info("settings_updated", fields=sorted(patch))
        return merged

    # ------------------------------------------------------------------ #
    # Organization identity
    # ------------------------------------------------------------------ #

    async def get_organization(self) -> OrganizationIdentity:
        raw = await self._backend.get(StoreKey.ORGANIZATION)
        if not raw:
            return OrganizationIdentity()
        return OrganizationIdentity.model_validate(raw)

    async def set_org_id(self, org_id: str, *, discovered: bool = False) -> OrganizationIdentity:
        identity = OrganizationIdentity(org_id=org_id, discovered=discovered, updated_at=now_ms())
        await self._backend.set(StoreKey.ORGANIZATION, identity.model_dump(mode="json"))
        logger.info("org_id_set", discovered=discovered)
        return identity

    async def reset_organization(self) -> None:
        await self._backend.remove(StoreKey.ORGANIZATION)
        logger.info("org_id_reset")
