"""Base model for payloads returned by the auth provider.

Provider payloads are snake_case JSON with many optional fields.  Models
inheriting from :class:`ProviderModel` ignore unknown keys, drop ``None``
values so field defaults apply, and keep the original payload in ``raw``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ProviderModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    raw: dict[str, Any] = Field(default_factory=dict, exclude=True, repr=False)
    """Original provider payload."""

    @model_validator(mode="before")
    @classmethod
    def _stash_raw(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        cleaned = {key: value for key, value in values.items() if value is not None}
        # Keep an explicitly passed raw= untouched.
        if "raw" not in values:
            cleaned["raw"] = dict(values)
        return cleaned
