from __future__ import annotations
from typing import Dict, List, Optional, Any, Iterable, Tuple
from contextlib import contextmanager
import os
import logging
from .models import EventLogEntry, new_id
from .errors import ConstraintViolationError, NotFoundError, StoreUnavailableError
from datetime import datetime, date
import threading
import psycopg
from psycopg import errors as pg_errors, sql
from psycopg_pool import ConnectionPool, PoolTimeout
from psycopg.types.json import Json
from psycopg.rows import dict_row
from dotenv import load_dotenv

load_dotenv()

Filter = Optional[Dict[str, Any]]
Order = Optional[List[Tuple[str, bool]]]  # (field, ascending)

# collection -> columns, in the canonical field order
TABLES: Dict[str, Tuple[str, ...]] = {
    "churches": ("id", "name"),
    "members": ("id", "church_id", "name", "email", "role"),
    "ministries": ("id", "church_id", "name"),
    "events": ("id", "church_id", "name", "starts_at"),
    "demands": (
        "id", "ministry_id", "event_id", "responsible_id", "title", "description",
        "deadline", "status", "priority", "created_at",
    ),
    "schedules": (
        "id", "church_id", "ministry_id", "event_id", "service_date", "notes",
        "status", "created_at", "updated_at",
    ),
    "schedule_assignments": ("id", "schedule_id", "member_id", "church_id", "confirmation_status", "created_at"),
    "notifications": ("id", "church_id", "member_id", "title", "description", "link", "type", "read", "created_at"),
}

UNIQUE_KEYS: Dict[str, List[Tuple[str, ...]]] = {
    "schedule_assignments": [("schedule_id", "member_id")],
}

# parent collection -> (child collection, foreign key); mirrors "on delete cascade" in SCHEMA_DDL
CASCADES: Dict[str, List[Tuple[str, str]]] = {
    "schedules": [("schedule_assignments", "schedule_id")],
}


def _matches(row: Dict[str, Any], flt: Filter) -> bool:
    if not flt:
        return True
    for key, expected in flt.items():
        value = row.get(key)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


def _sort_key(value: Any):
    # None last on ascending sorts
    return (value is None, value if value is not None else "")


class InMemoryDB:
    def __init__(self):
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {name: {} for name in TABLES}
        self.event_log: List[EventLogEntry] = []
        self._lock = threading.RLock()

    def _collection(self, name: str) -> Dict[str, Dict[str, Any]]:
        try:
            return self.collections[name]
        except KeyError:
            raise ValueError(f"Unknown collection {name}") from None

    def _check_unique(self, collection: str, record: Dict[str, Any], exclude_id: Optional[str] = None):
        rows = self._collection(collection)
        if record["id"] in rows and record["id"] != exclude_id:
            raise ConstraintViolationError(collection, ("id",))
        for key in UNIQUE_KEYS.get(collection, []):
            wanted = tuple(record.get(k) for k in key)
            for row in rows.values():
                if row["id"] == exclude_id or row["id"] == record["id"]:
                    continue
                if tuple(row.get(k) for k in key) == wanted:
                    raise ConstraintViolationError(collection, key)

    # Store contract
    def query(
        self,
        collection: str,
        filter: Filter = None,
        projection: Optional[Iterable[str]] = None,
        order: Order = None,
    ) -> List[Dict[str, Any]]:
        with self._lock:
            rows = [dict(r) for r in self._collection(collection).values() if _matches(r, filter)]
        # stable multi-key sort: apply the least significant key first
        for field, ascending in reversed(order or []):
            rows.sort(key=lambda r: _sort_key(r.get(field)), reverse=not ascending)
        if projection:
            fields = list(projection)
            rows = [{k: r.get(k) for k in fields} for r in rows]
        return rows

    def insert(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            row = dict(record)
            row.setdefault("id", new_id())
            self._check_unique(collection, row)
            self._collection(collection)[row["id"]] = row
            return dict(row)

    def update(self, collection: str, id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            rows = self._collection(collection)
            current = rows.get(id)
            if current is None:
                raise NotFoundError(f"{collection} {id} not found")
            updated = {**current, **{k: v for k, v in patch.items() if k != "id"}}
            self._check_unique(collection, updated, exclude_id=id)
            rows[id] = updated
            return dict(updated)

    def delete(self, collection: str, id: str) -> None:
        with self._lock:
            rows = self._collection(collection)
            if id not in rows:
                raise NotFoundError(f"{collection} {id} not found")
            del rows[id]
            for child, key in CASCADES.get(collection, []):
                children = self._collection(child)
                for child_id in [cid for cid, row in children.items() if row.get(key) == id]:
                    del children[child_id]

    # Event log
    def append_event(self, entry: EventLogEntry):
        with self._lock:
            self.event_log.append(entry)

    def list_events(self, kind: Optional[str] = None, entity: Optional[str] = None) -> List[EventLogEntry]:
        with self._lock:
            return [
                e for e in self.event_log
                if (kind is None or e.kind == kind) and (entity is None or e.entity == entity)
            ]

    def clear(self):
        with self._lock:
            for rows in self.collections.values():
                rows.clear()
            self.event_log.clear()


SCHEMA_DDL = """
create table if not exists churches (id text primary key, name text not null);
create table if not exists members (
    id text primary key,
    church_id text not null,
    name text not null,
    email text,
    role text
);
create table if not exists ministries (id text primary key, church_id text not null, name text not null);
create table if not exists events (id text primary key, church_id text not null, name text not null, starts_at timestamptz);
create table if not exists demands (
    id text primary key,
    ministry_id text not null,
    event_id text,
    responsible_id text,
    title text not null,
    description text,
    deadline date,
    status text not null default 'pending',
    priority integer,
    created_at timestamptz not null default now()
);
create table if not exists schedules (
    id text primary key,
    church_id text not null,
    ministry_id text not null,
    event_id text,
    service_date date not null,
    notes text,
    status text not null default 'draft',
    created_at timestamptz not null default now(),
    updated_at timestamptz not null default now()
);
create table if not exists schedule_assignments (
    id text primary key,
    schedule_id text not null references schedules (id) on delete cascade,
    member_id text not null,
    church_id text not null,
    confirmation_status text not null default 'pending',
    created_at timestamptz not null default now(),
    unique (schedule_id, member_id)
);
create table if not exists notifications (
    id text primary key,
    church_id text not null,
    member_id text not null,
    title text not null,
    description text not null,
    link text,
    type text,
    read boolean not null default false,
    created_at timestamptz not null default now()
);
create table if not exists ops_event_log (
    id text primary key,
    ts timestamptz not null,
    correlation_id text not null,
    actor text not null,
    tenant_id text not null,
    entity text,
    kind text not null,
    data jsonb not null
);
"""


class PostgresBackedDB:
    """Store backed by Postgres. Every failure surfaces as a store error;
    nothing falls back to memory so callers see outages."""

    def __init__(self, conninfo: str):
        self._logger = logging.getLogger("state.postgres")
        if not self._logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
            self._logger.addHandler(handler)
        self._logger.setLevel(logging.INFO)
        self._pool = ConnectionPool(
            conninfo,
            min_size=1,
            max_size=5,
            kwargs={"autocommit": True},
        )
        self.ensure_schema()

    def ensure_schema(self):
        with self._cursor("schema") as cur:
            cur.execute(SCHEMA_DDL)

    @contextmanager
    def _cursor(self, collection: str):
        try:
            with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
                yield cur
        except pg_errors.UniqueViolation as exc:
            constraint = exc.diag.constraint_name or "unique"
            raise ConstraintViolationError(collection, (constraint,), str(exc)) from exc
        except pg_errors.ForeignKeyViolation as exc:
            raise ConstraintViolationError(collection, (exc.diag.constraint_name or "foreign_key",), str(exc)) from exc
        except (psycopg.Error, PoolTimeout) as exc:
            self._logger.exception("Store call on %s failed", collection)
            raise StoreUnavailableError(f"{collection}: {exc}") from exc

    @staticmethod
    def _columns(collection: str, fields: Optional[Iterable[str]] = None) -> List[str]:
        try:
            known = TABLES[collection]
        except KeyError:
            raise ValueError(f"Unknown collection {collection}") from None
        if fields is None:
            return list(known)
        wanted = list(fields)
        unknown = [f for f in wanted if f not in known]
        if unknown:
            raise ValueError(f"Unknown fields for {collection}: {unknown}")
        return wanted

    @staticmethod
    def _normalise(row: Dict[str, Any]) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for key, value in row.items():
            if isinstance(value, (datetime, date)):
                value = value.isoformat()
            out[key] = value
        return out

    def _where(self, collection: str, flt: Filter) -> Tuple[List[sql.Composable], List[Any]]:
        clauses: List[sql.Composable] = []
        params: List[Any] = []
        if not flt:
            return clauses, params
        self._columns(collection, flt.keys())
        for key, expected in flt.items():
            if isinstance(expected, (list, tuple, set, frozenset)):
                clauses.append(sql.SQL("{} = any(%s)").format(sql.Identifier(key)))
                params.append(list(expected))
            elif expected is None:
                clauses.append(sql.SQL("{} is null").format(sql.Identifier(key)))
            else:
                clauses.append(sql.SQL("{} = %s").format(sql.Identifier(key)))
                params.append(expected)
        return clauses, params

    def query(
        self,
        collection: str,
        filter: Filter = None,
        projection: Optional[Iterable[str]] = None,
        order: Order = None,
    ) -> List[Dict[str, Any]]:
        columns = self._columns(collection, projection)
        clauses, params = self._where(collection, filter)
        stmt = sql.SQL("select {cols} from {table}").format(
            cols=sql.SQL(", ").join(sql.Identifier(c) for c in columns),
            table=sql.Identifier(collection),
        )
        if clauses:
            stmt += sql.SQL(" where ") + sql.SQL(" and ").join(clauses)
        if order:
            self._columns(collection, [f for f, _ in order])
            stmt += sql.SQL(" order by ") + sql.SQL(", ").join(
                sql.SQL("{} {}").format(sql.Identifier(f), sql.SQL("asc" if asc else "desc"))
                for f, asc in order
            )
        with self._cursor(collection) as cur:
            cur.execute(stmt, params)
            rows = cur.fetchall()
        return [self._normalise(r) for r in rows]

    def insert(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        row = dict(record)
        row.setdefault("id", new_id())
        columns = self._columns(collection, row.keys())
        stmt = sql.SQL("insert into {table} ({cols}) values ({vals}) returning *").format(
            table=sql.Identifier(collection),
            cols=sql.SQL(", ").join(sql.Identifier(c) for c in columns),
            vals=sql.SQL(", ").join(sql.Placeholder() for _ in columns),
        )
        with self._cursor(collection) as cur:
            cur.execute(stmt, [row[c] for c in columns])
            inserted = cur.fetchone()
        return self._normalise(inserted)

    def update(self, collection: str, id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        changes = {k: v for k, v in patch.items() if k != "id"}
        if not changes:
            rows = self.query(collection, {"id": id})
            if not rows:
                raise NotFoundError(f"{collection} {id} not found")
            return rows[0]
        columns = self._columns(collection, changes.keys())
        stmt = sql.SQL("update {table} set {assignments} where id = %s returning *").format(
            table=sql.Identifier(collection),
            assignments=sql.SQL(", ").join(sql.SQL("{} = %s").format(sql.Identifier(c)) for c in columns),
        )
        with self._cursor(collection) as cur:
            cur.execute(stmt, [changes[c] for c in columns] + [id])
            updated = cur.fetchone()
        if updated is None:
            raise NotFoundError(f"{collection} {id} not found")
        return self._normalise(updated)

    def delete(self, collection: str, id: str) -> None:
        self._columns(collection)
        stmt = sql.SQL("delete from {table} where id = %s").format(table=sql.Identifier(collection))
        with self._cursor(collection) as cur:
            cur.execute(stmt, (id,))
            deleted = cur.rowcount
        if not deleted:
            raise NotFoundError(f"{collection} {id} not found")

    def append_event(self, entry: EventLogEntry):
        with self._cursor("ops_event_log") as cur:
            cur.execute(
                """
                insert into ops_event_log (id, ts, correlation_id, actor, tenant_id, entity, kind, data)
                values (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    entry.id,
                    entry.timestamp,
                    entry.correlation_id,
                    entry.actor,
                    entry.tenant_id,
                    entry.entity,
                    entry.kind,
                    Json(entry.data),
                ),
            )

    def list_events(self, kind: Optional[str] = None, entity: Optional[str] = None) -> List[EventLogEntry]:
        with self._cursor("ops_event_log") as cur:
            cur.execute(
                """
                select *
                from ops_event_log
                where (%s::text is null or kind = %s)
                  and (%s::text is null or entity = %s)
                order by ts
                """,
                (kind, kind, entity, entity),
            )
            rows = cur.fetchall()
        return [
            EventLogEntry(
                id=row["id"],
                timestamp=row["ts"],
                correlation_id=row["correlation_id"],
                actor=row["actor"],
                tenant_id=row["tenant_id"],
                entity=row["entity"],
                kind=row["kind"],
                data=row["data"] or {},
            )
            for row in rows
        ]

    def clear(self):
        with self._cursor("schema") as cur:
            cur.execute(
                "truncate ops_event_log, notifications, schedule_assignments, schedules, demands, "
                "events, ministries, members, churches"
            )


def _initialise_db():
    logger = logging.getLogger("state.repository")
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=os.getenv("LOG_LEVEL", "INFO").upper(),
            format="%(levelname)s %(name)s: %(message)s",
        )
    conninfo = os.getenv("DATABASE_URL") or os.getenv("DATABASE_URL_DEV")
    if conninfo:
        try:
            source = "DATABASE_URL" if os.getenv("DATABASE_URL") else "DATABASE_URL_DEV"
            logger.info("Using PostgresBackedDB via %s", source)
            return PostgresBackedDB(conninfo)
        except Exception:  # noqa: BLE001
            logger.exception("Unable to initialise PostgresBackedDB; falling back to in-memory store")
    else:
        logger.info("DATABASE_URL not set; using in-memory store")
    return InMemoryDB()

# Process-wide store; managers receive it explicitly
GLOBAL_DB = _initialise_db()
