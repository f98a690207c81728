"""Records written to the durable and session storages.

Both are stored as JSON strings::

    PersistedEntry = {"data": ..., "timestamp": <ms>, "version": <int>}
    EphemeralEntry = {"data": ..., "timestamp": <ms>, "componentId": "<id>"}
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictInt
from pydantic.alias_generators import to_camel


class PersistedEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: Any = None
    timestamp: StrictInt = Field(..., description="Epoch milliseconds of the write")
    version: StrictInt


class EphemeralEntry(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, alias_generator=to_camel)

    data: Any = None
    timestamp: StrictInt
    component_id: str

    def is_expired(self, now_ms: int, max_age_ms: int) -> bool:
        return now_ms - self.timestamp >= max_age_ms
