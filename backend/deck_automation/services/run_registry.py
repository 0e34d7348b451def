from __future__ import annotations

import threading

from deck_automation.services.gamma_client import RunBudget

_LOCK = threading.Lock()
_ACTIVE: dict[str, RunBudget] = {}


def register(run_id: str, budget: RunBudget) -> None:
    with _LOCK:
        _ACTIVE[run_id] = budget


def unregister(run_id: str) -> None:
    with _LOCK:
        _ACTIVE.pop(run_id, None)


def cancel(run_id: str) -> bool:
    with _LOCK:
        budget = _ACTIVE.get(run_id)
    if budget is None:
        return False
    budget.abort()
    return True
