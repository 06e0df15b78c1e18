"""Shared logging utilities for the giveaway overlay server.

get_logger(name) configures the root logger once from the environment:

    LOG_LEVEL    root level (default INFO)
    LOG_FILE     optional log file next to the console output
    LOG_LEVELS   per-logger overrides, e.g.
                 "giveaway_overlay.giveaway.scheduler=DEBUG,uvicorn.access=WARNING"

Ticks and per-client sends log at DEBUG, so LOG_LEVELS is the way to watch
one subsystem without flooding the console with the rest.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

_configured = False


def _parse_level(value: str, default: int) -> int:
    level = logging.getLevelName(value.strip().upper())
    return level if isinstance(level, int) else default


def parse_module_levels(spec: str) -> Dict[str, int]:
    """Parse "name=LEVEL,name=LEVEL"; malformed entries are skipped."""
    levels: Dict[str, int] = {}
    for item in spec.split(','):
        name, sep, value = item.partition('=')
        name = name.strip()
        if not sep or not name:
            continue
        level = _parse_level(value, -1)
        if level >= 0:
            levels[name] = level
    return levels


def _ensure_configured() -> None:
    global _configured
    if _configured:
        return

    level = _parse_level(os.getenv('LOG_LEVEL', 'INFO'), logging.INFO)
    log_file = os.getenv('LOG_FILE', '')

    root = logging.getLogger()
    root.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)

    # Handlers pass everything; levels are decided per logger.
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    # The overlay usually runs on the streamer's desktop, so a file is opt-in.
    if log_file:
        try:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path, encoding='utf-8')
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)
        except OSError:
            root.exception('Failed to create file log handler; continuing with console only')

    for name, module_level in parse_module_levels(os.getenv('LOG_LEVELS', '')).items():
        logging.getLogger(name).setLevel(module_level)

    _configured = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger for ``name``, configuring logging on first use."""
    _ensure_configured()
    return logging.getLogger(name)
