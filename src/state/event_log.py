from __future__ import annotations
from typing import Optional, Dict, Any
from .models import EventLogEntry, new_id
from datetime import datetime, timezone
from observability.logging import structured_log


def log(db, kind: str, ctx, entity: Optional[str], data: Dict[str, Any]) -> EventLogEntry:
    """Append an audit entry for a lifecycle transition and echo it to the log stream."""
    entry = EventLogEntry(
        id=new_id(),
        timestamp=datetime.now(timezone.utc),
        correlation_id=ctx.correlation_id,
        actor=ctx.actor_id,
        tenant_id=ctx.tenant_id,
        entity=entity,
        kind=kind,
        data=data,
    )
    db.append_event(entry)
    structured_log(kind, ctx.correlation_id, {"entity": entity, "tenant_id": ctx.tenant_id, **data})
    return entry
