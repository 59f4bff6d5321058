"""Local logging setup for helixmem.

Writes a dated operational log plus a compact memory-events log under
``<data_dir>/logs``. The data dir comes from ``HELIXMEM_DATA_DIR`` and
falls back to ``~/.helixmem``.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from helixmem.utils import get_helix_home

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _log_dir():
    path = get_helix_home() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def _today() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def setup_helix_logging(level: str = "INFO") -> logging.Logger:
    """Configure the ``helixmem`` logger.

    Safe to call repeatedly: existing helixmem handlers are replaced, not
    stacked. DEBUG additionally echoes to the console.
    """
    resolved = getattr(logging, str(level).upper(), None)
    if not isinstance(resolved, int):
        resolved = logging.INFO

    logger = logging.getLogger("helixmem")
    logger.setLevel(resolved)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    file_handler = logging.FileHandler(_log_dir() / f"local-{_today()}.log", encoding="utf-8")
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if resolved == logging.DEBUG:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        logger.addHandler(console)

    return logger


def log_memory_event(event_type: str, details: str, agent_id: Optional[int] = None) -> None:
    """Append one line to today's memory-events log."""
    timestamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
    agent = agent_id if agent_id is not None else "none"
    line = f"{timestamp} | {event_type} | agent={agent} | {details}\n"
    with open(_log_dir() / f"memory-events-{_today()}.log", "a", encoding="utf-8") as f:
        f.write(line)


def log_memory_saved(agent_id: int, memory_id: int, memory_type: str) -> None:
    log_memory_event("save", f"type={memory_type}, id={memory_id}", agent_id=agent_id)


def log_extraction(agent_id: int, chat_id: int, created: int, watermark: Optional[int]) -> None:
    log_memory_event(
        "extract",
        f"chat={chat_id}, created={created}, watermark={watermark}",
        agent_id=agent_id,
    )


def log_promotion(agent_id: int, promoted_ids: Iterable[int]) -> None:
    ids = ",".join(str(i) for i in promoted_ids) or "-"
    log_memory_event("promote", f"ids={ids}", agent_id=agent_id)


def log_refinement(agent_id: int, action: str, memory_ids: Iterable[int]) -> None:
    ids = ",".join(str(i) for i in memory_ids) or "-"
    log_memory_event("refine", f"action={action}, ids={ids}", agent_id=agent_id)
