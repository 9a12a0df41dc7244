"""
Archiver configuration.

ArchiverConfig is an immutable value passed explicitly into every operation; there is
no module-level configuration state. Build it directly or from a plain dict (e.g. a
parsed app.yaml section) with ArchiverConfig.from_dict().

Invariants:
    - purge_enabled requires upload_enabled: originals are only deleted once a remote copy exists
    - Tenant overrides (org.config["archive"]) only narrow embargo and granularity
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Mapping

from record_archiver.periods import Granularity, get_zone
from record_archiver.tasks import RecordCategory

DEFAULT_EMBARGO_DAYS = 89


@dataclass(frozen=True)
class ArchiverConfig:
    """Archiver settings.

    Attributes:
        upload_enabled: Upload artifacts to long-term storage (False keeps them local, e.g. for verification)
        scratch_dir: Directory where artifacts are built
        embargo_window: Trailing window never archived so late writes can settle
        purge_enabled: Delete archived originals from the hot store
        granularity: Per-category granularity override
        categories: Record categories processed for every organization
        timezone: Zone whose wall clock defines day and month boundaries
        page_size: Rows fetched per hot-store page while streaming
        purge_batch_size: Rows deleted per statement while purging
        compress_level: gzip compression level
        max_workers: Organizations processed concurrently
    """

    upload_enabled: bool = True
    scratch_dir: str = "/tmp/archiver"
    embargo_window: timedelta = timedelta(days=DEFAULT_EMBARGO_DAYS)
    purge_enabled: bool = False
    granularity: Mapping[RecordCategory, Granularity] = field(default_factory=dict)
    categories: tuple[RecordCategory, ...] = (RecordCategory.MESSAGE, RecordCategory.RUN)
    timezone: str = "UTC"
    page_size: int = 1000
    purge_batch_size: int = 500
    compress_level: int = 9
    max_workers: int = 4

    def __post_init__(self) -> None:
        if self.purge_enabled and not self.upload_enabled:
            raise ValueError("purge_enabled requires upload_enabled: refusing to delete originals without a remote copy")
        if self.embargo_window < timedelta(0):
            raise ValueError("embargo_window must not be negative")
        if self.page_size <= 0 or self.purge_batch_size <= 0:
            raise ValueError("page_size and purge_batch_size must be positive")
        if self.max_workers <= 0:
            raise ValueError("max_workers must be positive")
        if not 0 <= self.compress_level <= 9:
            raise ValueError("compress_level must be between 0 and 9")
        get_zone(self.timezone)  # fail fast on unknown zones

    @property
    def tz(self):
        return get_zone(self.timezone)

    def granularity_for(self, category: RecordCategory, org_config: Mapping[str, Any] | None = None) -> Granularity:
        """Effective granularity: tenant override, then config override, then category default."""
        override = _archive_overrides(org_config).get("granularity") or {}
        if category.value in override:
            return Granularity.parse(override[category.value])
        return self.granularity.get(category, category.default_granularity)

    def embargo_for(self, org_config: Mapping[str, Any] | None = None) -> timedelta:
        """Effective embargo: tenant embargo_days if set, else the configured window."""
        days = _archive_overrides(org_config).get("embargo_days")
        if days is None:
            return self.embargo_window
        return timedelta(days=int(days))

    @classmethod
    def from_dict(cls, config: Mapping[str, Any]) -> ArchiverConfig:
        """
        Build from a plain dict. Unknown keys are ignored; missing keys keep defaults.

        Recognised keys: upload_enabled, scratch_dir, embargo_days, purge_enabled,
        granularity ({"message": "day"}), categories (["message", "run"]), timezone,
        page_size, purge_batch_size, compress_level, max_workers.
        """
        kwargs: dict[str, Any] = {}
        for key in ("upload_enabled", "purge_enabled"):
            if key in config:
                kwargs[key] = _as_bool(config[key])
        for key in ("page_size", "purge_batch_size", "compress_level", "max_workers"):
            if key in config:
                kwargs[key] = int(config[key])
        if config.get("scratch_dir"):
            kwargs["scratch_dir"] = str(config["scratch_dir"])
        if config.get("timezone"):
            kwargs["timezone"] = str(config["timezone"])
        if config.get("embargo_days") is not None:
            kwargs["embargo_window"] = timedelta(days=int(config["embargo_days"]))
        if config.get("granularity"):
            kwargs["granularity"] = {
                RecordCategory.parse(k): Granularity.parse(v) for k, v in config["granularity"].items()
            }
        if config.get("categories"):
            kwargs["categories"] = tuple(RecordCategory.parse(c) for c in config["categories"])
        return cls(**kwargs)


def _archive_overrides(org_config: Mapping[str, Any] | None) -> Mapping[str, Any]:
    if not org_config:
        return {}
    return org_config.get("archive") or {}


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)
