"""Configuration for the grantsnap state layer."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlparse

from grantsnap.exceptions import GrantSnapConfigError

#: Default trailing-edge debounce for durable writes.
DEFAULT_DEBOUNCE_MS: int = 500

#: Default freshness window shared by component snapshots and the auth cache (5 minutes).
DEFAULT_MAX_AGE_MS: int = 5 * 60 * 1000


def _env_int(env: Mapping[str, str], name: str) -> int | None:
    value = env.get(name)
    if value is None or not value.strip():
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise GrantSnapConfigError(f"{name} must be an integer, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class SupabaseSettings:
    """Connection settings for the hosted Supabase project.

    Parameters
    ----------
    url : str
        Project URL, e.g. ``https://<ref>.supabase.co``.
    anon_key : str
        Public anonymous API key sent as ``apikey`` on every auth call.
    """

    url: str = ""
    anon_key: str = ""

    @property
    def project_ref(self) -> str:
        """Subdomain of the project URL (``<ref>`` in ``<ref>.supabase.co``)."""
        host = urlparse(self.url).hostname or ""
        return host.split(".", 1)[0]

    @property
    def storage_key(self) -> str:
        """Storage key under which the signed-in session is kept."""
        return f"sb-{self.project_ref}-auth-token"

    @property
    def configured(self) -> bool:
        return bool(self.url and self.anon_key)


@dataclasses.dataclass(frozen=True)
class GrantSnapConfig:
    """Library configuration.

    Parameters
    ----------
    storage_path : str or None
        File backing the durable storage.  ``None`` keeps durable state in
        memory only (useful for tests and short-lived tools).
    debounce_ms : int
        Default quiet period before a :class:`PersistedValueStore` write.
    state_version : int
        Default schema version stamped on persisted entries.
    component_max_age_ms : int
        Default age after which a component snapshot is discarded.
    auth_cache_ttl_ms : int
        Age after which the cached auth answer is considered cold.
    storage_quota_bytes : int or None
        Optional cap on each storage's serialized size.
    supabase : SupabaseSettings
        Auth provider connection settings.
    """

    storage_path: str | None = None
    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    state_version: int = 1
    component_max_age_ms: int = DEFAULT_MAX_AGE_MS
    auth_cache_ttl_ms: int = DEFAULT_MAX_AGE_MS
    storage_quota_bytes: int | None = None
    supabase: SupabaseSettings = dataclasses.field(default_factory=SupabaseSettings)

    def validate(self) -> None:
        """Raise :class:`GrantSnapConfigError` when a value is out of range."""
        if self.debounce_ms < 0:
            raise GrantSnapConfigError("debounce_ms must be >= 0")
        if self.component_max_age_ms <= 0:
            raise GrantSnapConfigError("component_max_age_ms must be > 0")
        if self.auth_cache_ttl_ms <= 0:
            raise GrantSnapConfigError("auth_cache_ttl_ms must be > 0")
        if self.storage_quota_bytes is not None and self.storage_quota_bytes <= 0:
            raise GrantSnapConfigError("storage_quota_bytes must be > 0 when set")
        if self.supabase.url:
            parsed = urlparse(self.supabase.url)
            if parsed.scheme not in {"http", "https"} or not parsed.hostname:
                raise GrantSnapConfigError(f"Invalid Supabase URL: {self.supabase.url!r}")

    @classmethod
    def from_env(cls, **overrides: Any) -> GrantSnapConfig:
        """Create configuration from ``GRANTSNAP_*`` environment variables.

        Explicit keyword arguments override environment values.  A
        ``supabase`` override may be a :class:`SupabaseSettings` or a dict of
        its fields.
        """
        env = os.environ

        supabase_kwargs: dict[str, str] = {}
        for env_key, field_name in (
            ("GRANTSNAP_SUPABASE_URL", "url"),
            ("GRANTSNAP_SUPABASE_ANON_KEY", "anon_key"),
        ):
            val = env.get(env_key)
            if val is not None:
                supabase_kwargs[field_name] = val.strip()

        supabase_overrides = overrides.pop("supabase", None)
        if isinstance(supabase_overrides, dict):
            supabase_kwargs.update(supabase_overrides)
        elif isinstance(supabase_overrides, SupabaseSettings):
            supabase_kwargs = dataclasses.asdict(supabase_overrides)

        config_kwargs: dict[str, Any] = {"supabase": SupabaseSettings(**supabase_kwargs)}

        storage_path = env.get("GRANTSNAP_STORAGE_PATH")
        if storage_path:
            config_kwargs["storage_path"] = storage_path

        _ENV_INT_MAP = {
            "GRANTSNAP_DEBOUNCE_MS": "debounce_ms",
            "GRANTSNAP_STATE_VERSION": "state_version",
            "GRANTSNAP_COMPONENT_MAX_AGE_MS": "component_max_age_ms",
            "GRANTSNAP_AUTH_CACHE_TTL_MS": "auth_cache_ttl_ms",
            "GRANTSNAP_STORAGE_QUOTA_BYTES": "storage_quota_bytes",
        }
        for env_key, field_name in _ENV_INT_MAP.items():
            if field_name in overrides:
                continue
            parsed = _env_int(env, env_key)
            if parsed is not None:
                config_kwargs[field_name] = parsed

        config_kwargs.update(overrides)

        config = cls(**config_kwargs)
        config.validate()
        return config
