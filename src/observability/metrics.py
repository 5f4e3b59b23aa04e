from __future__ import annotations
from collections import defaultdict
import threading

_COUNTERS = defaultdict(int)
_LOCK = threading.Lock()


def _key(name: str, labels: dict) -> str:
    if not labels:
        return name
    suffix = ",".join(f"{k}={labels[k]}" for k in sorted(labels))
    return f"{name}{{{suffix}}}"


def inc(name: str, value: int = 1, **labels):
    with _LOCK:
        _COUNTERS[_key(name, labels)] += value


def get(name: str, **labels) -> int:
    return _COUNTERS.get(_key(name, labels), 0)


def snapshot():
    with _LOCK:
        return dict(_COUNTERS)


def reset():
    with _LOCK:
        _COUNTERS.clear()
