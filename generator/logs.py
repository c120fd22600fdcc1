from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

ROOT_LOGGER = "txgen"


def configure_logging(log_dir: Path, name: str = "txgen", level: Optional[str] = None) -> logging.Logger:
    """Attach file + stream handlers to the ``txgen`` logger tree.

    Each process (server, worker, auto-fund loop) calls this once with its
    own ``name`` so workers write to ``logs/<name>.log``.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / f"{name}.log"

    logger = logging.getLogger(ROOT_LOGGER)
    lvl = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    logger.setLevel(getattr(logging, lvl, logging.INFO))
    logger.handlers.clear()
    logger.propagate = False

    fmt = logging.Formatter("%(asctime)s %(levelname)s %(message)s")

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(fmt)
    logger.addHandler(file_handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(fmt)
    logger.addHandler(stream_handler)

    return logger
