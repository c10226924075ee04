"""
Sensitivity policies and capacity overrides as one owned configuration object.

The document lives at ``config/policy.json`` in the DataStore::

    {"meta": {...}, "data": {"version": 3, "policies": {...}, "overrides": {...}}}

``load()`` runs once at start-up. Every mutation happens under a lock, bumps
``version`` and saves the whole document. A corrupt document never stops the
service: defaults are used and the problem is logged once.
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from eco_capacity.errors import ConfigError
from eco_capacity.schemas import AlertLevel, CapacityOverride, SensitivityLevel, SensitivityPolicy

if TYPE_CHECKING:
    from eco_capacity.store import DataStore

logger = logging.getLogger(__name__)

CONFIG_PATH = Path("config/policy.json")

DEFAULT_POLICIES: dict[SensitivityLevel, SensitivityPolicy] = {
    SensitivityLevel.LOW: SensitivityPolicy(
        sensitivity=SensitivityLevel.LOW,
        capacity_multiplier=1.0,
        alert_severity=AlertLevel.NONE,
    ),
    SensitivityLevel.MEDIUM: SensitivityPolicy(
        sensitivity=SensitivityLevel.MEDIUM,
        capacity_multiplier=0.8,
        requires_eco_briefing=True,
        alert_severity=AlertLevel.LOW,
        restriction_message="Please review ecological guidelines before visiting.",
    ),
    SensitivityLevel.HIGH: SensitivityPolicy(
        sensitivity=SensitivityLevel.HIGH,
        capacity_multiplier=0.5,
        requires_permit=True,
        requires_eco_briefing=True,
        alert_severity=AlertLevel.HIGH,
        restriction_message=(
            "This is a high-sensitivity area. Special permits are required for entry."
        ),
    ),
    SensitivityLevel.CRITICAL: SensitivityPolicy(
        sensitivity=SensitivityLevel.CRITICAL,
        capacity_multiplier=0.2,
        requires_permit=True,
        requires_eco_briefing=True,
        alert_severity=AlertLevel.CRITICAL,
        restriction_message=(
            "Access is strictly limited to authorized research and conservation personnel only."
        ),
    ),
}


def _defaults() -> dict[SensitivityLevel, SensitivityPolicy]:
    return {level: policy.model_copy() for level, policy in DEFAULT_POLICIES.items()}


class PolicyConfigService:
    """Process-wide owner of sensitivity policies and capacity overrides."""

    def __init__(self, store: DataStore | None = None) -> None:
        self.store = store
        self._lock = threading.RLock()
        self._policies = _defaults()
        self._overrides: dict[str, CapacityOverride] = {}
        self._version = 0
        self._corruption_logged = False

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def load(self) -> None:
        """Load the stored document, falling back to defaults if it is unusable."""
        if self.store is None:
            return
        try:
            document = self.store.read(CONFIG_PATH)
            if document is None:
                logger.info("No stored policy configuration; using defaults")
                return
            policies, overrides, version = self._parse(document)
        except (ConfigError, ValidationError, ValueError, TypeError, OSError) as exc:
            self._reset_to_defaults(exc)
            return

        with self._lock:
            self._policies = policies
            self._overrides = overrides
            self._version = version
        logger.info(
            "Loaded policy configuration v%d (%d overrides)", version, len(overrides)
        )

    def save(self) -> bool:
        """Persist the current document. Failures are logged and reported as False."""
        if self.store is None:
            return True
        with self._lock:
            document = self._document()
            version = self._version
        try:
            self.store.write(CONFIG_PATH, document, source="admin", version=version)
        except (OSError, TypeError, ValueError):
            logger.exception("Failed to save policy configuration v%d", version)
            return False
        return True

    def _parse(
        self, document: Any
    ) -> tuple[dict[SensitivityLevel, SensitivityPolicy], dict[str, CapacityOverride], int]:
        if not isinstance(document, dict):
            raise ConfigError("policy document is not an object")

        policies = _defaults()
        for key, raw in (document.get("policies") or {}).items():
            level = SensitivityLevel(key)
            policies[level] = SensitivityPolicy.model_validate({**raw, "sensitivity": level})

        overrides = {
            site_id: CapacityOverride.model_validate(raw)
            for site_id, raw in (document.get("overrides") or {}).items()
        }
        return policies, overrides, int(document.get("version", 0))

    def _reset_to_defaults(self, exc: Exception) -> None:
        with self._lock:
            self._policies = _defaults()
            self._overrides = {}
            self._version = 0
            already_logged = self._corruption_logged
            self._corruption_logged = True
        if not already_logged:
            logger.error("Stored policy configuration is corrupt, using defaults: %s", exc)

    def _document(self) -> dict[str, Any]:
        return {
            "version": self._version,
            "policies": {
                level.value: policy.model_dump(mode="json", exclude={"sensitivity"})
                for level, policy in self._policies.items()
            },
            "overrides": {
                site_id: override.model_dump(mode="json")
                for site_id, override in self._overrides.items()
            },
        }

    def _commit(self) -> None:
        # Caller holds the lock.
        self._version += 1

    # -------------------------------------------------------------------------
    # Policies
    # -------------------------------------------------------------------------

    def get_policy(self, level: SensitivityLevel | str) -> SensitivityPolicy:
        """Policy for a level. Unknown levels get the ``low`` policy."""
        try:
            key = SensitivityLevel(level)
        except ValueError:
            key = SensitivityLevel.LOW
        with self._lock:
            return self._policies[key].model_copy()

    def all_policies(self) -> dict[SensitivityLevel, SensitivityPolicy]:
        with self._lock:
            return {level: policy.model_copy() for level, policy in self._policies.items()}

    def update_policy(self, level: SensitivityLevel, **updates: Any) -> SensitivityPolicy:
        """
        Change fields of one policy and save.

        Raises:
            pydantic.ValidationError: If the result is not a valid policy
                (e.g. a multiplier outside (0, 1]).
        """
        with self._lock:
            current = self._policies[level].model_dump()
            policy = SensitivityPolicy.model_validate({**current, **updates, "sensitivity": level})
            self._policies[level] = policy
            self._commit()
        self.save()
        return policy.model_copy()

    def reset_policies(self) -> None:
        with self._lock:
            self._policies = _defaults()
            self._commit()
        self.save()

    # -------------------------------------------------------------------------
    # Overrides
    # -------------------------------------------------------------------------

    def set_override(
        self,
        site_id: str,
        multiplier: float,
        active: bool = True,
        expires_at: datetime | None = None,
        reason: str | None = None,
        author: str | None = None,
    ) -> CapacityOverride:
        """Install (or replace) the override for a site and save."""
        override = CapacityOverride(
            site_id=site_id,
            multiplier=multiplier,
            active=active,
            expires_at=expires_at,
            reason=reason,
            author=author,
        )
        with self._lock:
            self._overrides[site_id] = override
            self._commit()
        self.save()
        logger.info("Capacity override for %s set to %.2f (active=%s)", site_id, multiplier, active)
        return override

    def clear_override(self, site_id: str) -> bool:
        with self._lock:
            removed = self._overrides.pop(site_id, None) is not None
            if removed:
                self._commit()
        if removed:
            self.save()
            logger.info("Capacity override for %s cleared", site_id)
        return removed

    def get_override(self, site_id: str) -> CapacityOverride | None:
        with self._lock:
            return self._overrides.get(site_id)

    def active_override(self, site_id: str, now: datetime | None = None) -> CapacityOverride | None:
        """The site's override if it is active and unexpired at ``now``."""
        override = self.get_override(site_id)
        if override is None:
            return None
        return override if override.is_effective(now or datetime.now(UTC)) else None

    def overrides(self) -> dict[str, CapacityOverride]:
        with self._lock:
            return dict(self._overrides)
