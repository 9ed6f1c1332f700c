# app/core/scheduler_decorators.py
from typing import Callable, Dict, Any, List

# Scheduled Dramatiq actors, collected at import time of the *_tasks modules
SCHEDULED_TASKS: List[Dict[str, Any]] = []


def _task_name(func: Callable) -> str:
    return getattr(func, "actor_name", None) or getattr(func, "__name__", repr(func))


def _register_task(func: Callable, trigger: str, **trigger_args):
    """Record the actor and its trigger; re-importing a module replaces the entry."""
    name = _task_name(func)
    SCHEDULED_TASKS[:] = [t for t in SCHEDULED_TASKS if t["name"] != name]
    SCHEDULED_TASKS.append({
        "name": name,
        "func": func,
        "trigger": trigger,
        "trigger_args": trigger_args,
    })
    return func


def run_every_day(hour: int = 0, minute: int = 0):
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError("hour must be 0-23 and minute 0-59")

    def wrapper(func: Callable):
        return _register_task(func, "cron", hour=hour, minute=minute)
    return wrapper


def run_cron(expr: str):
    """Generic cron expression, e.g., run_cron('0 2 * * *')"""
    parts = expr.strip().split()
    if len(parts) != 5:
        raise ValueError("Invalid cron expression (expected 5 fields)")
    minute, hour, day, month, day_of_week = parts

    def wrapper(func: Callable):
        return _register_task(func, "cron", minute=minute, hour=hour, day=day, month=month, day_of_week=day_of_week)
    return wrapper
