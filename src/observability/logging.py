from __future__ import annotations
from typing import Any, Dict
from datetime import datetime, timezone
import json
import logging

_LOGGER = logging.getLogger("ministry_ops.events")


def structured_log(event: str, correlation_id: str, data: Dict[str, Any], *, level: int = logging.INFO):
    """One JSON line per business event, keyed by correlation id."""
    record = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "event": event,
        "cid": correlation_id,
        "data": data,
    }
    _LOGGER.log(level, json.dumps(record, default=str))
