# app/workers/__init__.py
import importlib
import os

import dramatiq
import structlog
from dramatiq.brokers.rabbitmq import RabbitmqBroker
from dramatiq.brokers.stub import StubBroker
from dramatiq.middleware import Retries

from core.config import settings

logger = structlog.get_logger(__name__)


def build_broker(kind: str = None):
    """RabbitMQ in production; ``stub`` keeps actors importable in tests."""
    kind = (kind or settings.DRAMATIQ_BROKER).lower()
    if kind == "stub":
        broker = StubBroker()
    else:
        broker = RabbitmqBroker(url=settings.RABBITMQ_URL)
    broker.add_middleware(Retries(max_retries=3))
    return broker


broker = build_broker()
dramatiq.set_broker(broker)


# ---------------------------------------------------
# Plugin worker discovery
# ---------------------------------------------------
PLUGINS_DIR = os.path.realpath(os.path.join(os.path.dirname(os.path.realpath(__file__)), "..", "plugins"))


def find_task_modules(base_path: str = PLUGINS_DIR):
    """Dotted module names of every ``*_tasks.py`` under the plugins package."""
    app_root = os.path.dirname(base_path)
    modules = []
    for root, _, files in os.walk(base_path):
        for f in sorted(files):
            if f.endswith("_tasks.py"):
                rel_path = os.path.relpath(os.path.join(root, f), app_root)
                modules.append(rel_path[:-3].replace(os.sep, "."))
    return sorted(modules)


def discover_plugin_workers(base_path: str = PLUGINS_DIR):
    """Import every plugin task module so its actors and schedules register."""
    modules = find_task_modules(base_path)
    for m in modules:
        importlib.import_module(m)
        logger.info("worker_module_loaded", module=m)
    return modules


__all__ = [
    "broker",
    "build_broker",
    "discover_plugin_workers",
    "find_task_modules",
]
