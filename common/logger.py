"""Unified logger with run_id tracing.

Every recompute run gets a short run id stored in a context variable; asyncio
tasks copy the context they were created in, so the engine, the scorers and the
providers all log under the id of the run that invoked them.
"""
import logging
import uuid
from contextvars import ContextVar

from config.settings import LOG_LEVEL

run_id_var: ContextVar[str] = ContextVar("run_id", default="")

_factory_installed = False


def _install_record_factory() -> None:
    global _factory_installed
    if _factory_installed:
        return
    old_factory = logging.getLogRecordFactory()

    def record_factory(*args, **kwargs):
        record = old_factory(*args, **kwargs)
        record.run_id = run_id_var.get() or "-"
        return record

    logging.setLogRecordFactory(record_factory)
    _factory_installed = True


def get_logger(name: str) -> logging.Logger:
    _install_record_factory()
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        fmt = logging.Formatter(
            "[%(asctime)s] [%(run_id)s] %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
        handler.setFormatter(fmt)
        logger.addHandler(handler)
        logger.setLevel(LOG_LEVEL.upper())
    return logger


def new_run_id() -> str:
    rid = str(uuid.uuid4())[:8]
    run_id_var.set(rid)
    return rid
