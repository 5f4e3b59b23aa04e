from __future__ import annotations
from datetime import datetime, timedelta, date, time, timezone
import json
import os
from hashlib import sha256
from .repository import GLOBAL_DB, TABLES
from authz.engine import Role


ANCHOR_ENV_VAR = "MINISTRY_OPS_ANCHOR_DATE"  # YYYY-MM-DD
SCALE_ENV_VAR = "MINISTRY_OPS_SEED_SCALE"    # Int multiplier (default 1)

DEV_CHURCH_ID = "church_dev"

def _anchor_date() -> date:
    val = os.getenv(ANCHOR_ENV_VAR, "2025-01-05")  # pick a fixed Sunday
    return datetime.strptime(val, "%Y-%m-%d").date()

def _dt(d: date, h: int, m: int = 0) -> str:
    return datetime.combine(d, time(hour=h, minute=m), tzinfo=timezone.utc).isoformat()

def _scale() -> int:
    try:
        return max(1, int(os.getenv(SCALE_ENV_VAR, "1")))
    except ValueError:
        return 1

def reset_db_state(db=None):
    """Clear every collection and the event log for a reproducible reseed (tests)."""
    db = db or GLOBAL_DB
    db.clear()
    if hasattr(db, "_dev_seed_loaded"):
        delattr(db, "_dev_seed_loaded")

def load_dev_seed(db=None):
    """Load a deterministic church with ministries, members, services, demands and rosters.

    Determinism principles:
    - All dates anchored to ANCHOR_DATE + fixed offsets (no clock reads)
    - No random module usage
    - Stable, predictable IDs
    - Reseeding is idempotent (second call no-ops)
    Rows go straight into the store, so no notifications are sent.
    """
    db = db or GLOBAL_DB
    if getattr(db, "_dev_seed_loaded", False):
        return
    if db.query("churches", {"id": DEV_CHURCH_ID}, projection=["id"]):
        db._dev_seed_loaded = True
        return

    anchor = _anchor_date()  # e.g., 2025-01-05 (a Sunday)
    created = _dt(anchor - timedelta(days=30), 9)

    db.insert("churches", {"id": DEV_CHURCH_ID, "name": "Connect Vida Church"})

    ministries = [
        {"id": "min_worship", "name": "Worship"},
        {"id": "min_media", "name": "Media & Tech"},
        {"id": "min_kids", "name": "Kids"},
        {"id": "min_hospitality", "name": "Hospitality"},
    ]
    for m in ministries:
        db.insert("ministries", {**m, "church_id": DEV_CHURCH_ID})

    # Members: fixed leadership then volunteers cycling through the operational roles
    leadership = [
        ("mem_admin", "Ana Admin", Role.ADMIN),
        ("mem_pastor", "Paulo Pastor", Role.PASTOR),
        ("mem_leader_worship", "Lia Worship", Role.MINISTRY_LEADER),
        ("mem_leader_media", "Marcos Media", Role.MINISTRY_LEADER),
        ("mem_finance", "Fabio Finance", Role.FINANCE),
        ("mem_kids", "Karen Kids", Role.KIDS_COORDINATOR),
    ]
    for mid, name, role in leadership:
        db.insert("members", {
            "id": mid,
            "church_id": DEV_CHURCH_ID,
            "name": name,
            "email": f"{mid.replace('mem_', '')}@connectvida.example",
            "role": role.value,
        })
    volunteer_roles = [Role.VOLUNTEER, Role.MEMBER, Role.SMALL_GROUP_MEMBER, Role.SMALL_GROUP_LEADER, Role.MEDIA_TECH]
    volunteer_total = 24 * _scale()
    for i in range(1, volunteer_total + 1):
        role = volunteer_roles[(i - 1) % len(volunteer_roles)]
        db.insert("members", {
            "id": f"vol_{i:03d}",
            "church_id": DEV_CHURCH_ID,
            "name": f"Volunteer {i:03d}",
            # every 6th volunteer has no email on file
            "email": None if i % 6 == 0 else f"volunteer{i:03d}@connectvida.example",
            "role": role.value,
        })

    # Sunday services for the next six weeks
    services = []
    for week in range(6):
        day = anchor + timedelta(days=7 * week)
        sid = f"evt_sunday_{week + 1:02d}"
        db.insert("events", {"id": sid, "church_id": DEV_CHURCH_ID, "name": f"Sunday Service {day.isoformat()}", "starts_at": _dt(day, 10)})
        services.append((sid, day))

    # Demands: a spread of statuses and priorities per ministry
    statuses = ["pending", "in_progress", "done"]
    titles = ["Prepare slides", "Rehearse set", "Check sound", "Print schedules", "Welcome team brief"]
    for m_idx, m in enumerate(ministries):
        for d_idx in range(5):
            n = m_idx * 5 + d_idx
            event_id, day = services[n % len(services)]
            db.insert("demands", {
                "id": f"dem_{m['id'][4:]}_{d_idx + 1:02d}",
                "ministry_id": m["id"],
                "event_id": event_id if d_idx % 2 == 0 else None,
                "responsible_id": f"vol_{(n % volunteer_total) + 1:03d}" if d_idx != 4 else None,
                "title": titles[d_idx],
                "description": f"{titles[d_idx]} for {m['name']}",
                "deadline": (day - timedelta(days=1)).isoformat(),
                "status": statuses[n % 3],
                "priority": (d_idx % 5) + 1 if d_idx % 2 == 1 else None,
                "created_at": _dt(anchor - timedelta(days=20 - n), 9),
            })

    # Rosters: worship and media serve the first four Sundays, two volunteers each
    for m in ministries[:2]:
        for week, (event_id, day) in enumerate(services[:4]):
            sched_id = f"esc_{m['id'][4:]}_{week + 1:02d}"
            db.insert("schedules", {
                "id": sched_id,
                "church_id": DEV_CHURCH_ID,
                "ministry_id": m["id"],
                "event_id": event_id,
                "service_date": day.isoformat(),
                "notes": None,
                "status": "published" if week < 2 else "draft",
                "created_at": created,
                "updated_at": created,
            })
            for slot in range(2):
                vol = f"vol_{((week * 2 + slot) % volunteer_total) + 1:03d}"
                db.insert("schedule_assignments", {
                    "id": f"{sched_id}_{vol}",
                    "schedule_id": sched_id,
                    "member_id": vol,
                    "church_id": DEV_CHURCH_ID,
                    "confirmation_status": "confirmed" if week == 0 else "pending",
                    "created_at": created,
                })

    db._dev_seed_loaded = True

def snapshot_hash(db=None) -> str:
    """Produce a stable hash of seeded state for reproducibility tests."""
    db = db or GLOBAL_DB
    payload = {name: db.query(name) for name in TABLES}
    payload["scale"] = _scale()
    # Sort for deterministic ordering
    def _sort(obj):
        if isinstance(obj, list):
            return sorted((_sort(o) for o in obj), key=lambda x: str(x))
        if isinstance(obj, dict):
            return {k: _sort(obj[k]) for k in sorted(obj.keys())}
        return obj
    normalized = _sort(payload)
    ser = json.dumps(normalized, separators=(",", ":"), sort_keys=True, default=str)
    return sha256(ser.encode()).hexdigest()
