from __future__ import annotations
from typing import FrozenSet
from pydantic import BaseModel, Field
from .engine import resolve_capabilities


class OpsContext(BaseModel):
    """Request-scoped identity handed to every operation.

    Identity fields are read-only for the core; ``warnings`` collects soft
    notification failures for the caller to show.
    """

    correlation_id: str
    tenant_id: str
    actor_id: str
    actor_role: str | None = None
    warnings: list[str] = Field(default_factory=list)

    def capabilities(self) -> FrozenSet[str]:
        return resolve_capabilities(self.actor_role)

    def warn(self, message: str):
        self.warnings.append(message)
