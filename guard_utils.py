"""
Drowsiness Guard — Shared Utility Module
=========================================
Config loading, environment overrides, logger setup and backend
URL joining used by every guard_* module.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

import yaml


# ─── Configuration ────────────────────────────────────────────
_SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
_config_path = os.path.join(_SCRIPT_DIR, 'config.yaml')

BACKEND_URL_ENV = "GUARD_BACKEND_URL"


def load_config(path: Optional[str] = None) -> dict:
    """Load configuration from config.yaml and apply env overrides."""
    target = path or _config_path
    with open(target, 'r', encoding='utf-8') as f:
        config = yaml.safe_load(f) or {}

    backend_url = os.environ.get(BACKEND_URL_ENV)
    if backend_url:
        config.setdefault("backend", {})["base_url"] = backend_url
    return config


def merge_config(base: dict, override: Optional[dict]) -> dict:
    """Two-level merge: sections in `override` update sections in `base`."""
    merged = {key: (dict(value) if isinstance(value, dict) else value)
              for key, value in base.items()}
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key].update(value)
        else:
            merged[key] = value
    return merged


def get_api_url(base_url: str, endpoint: str) -> str:
    """Join the backend base URL with an endpoint.

    An empty base URL yields a relative path (local proxy setups).
    """
    clean = endpoint[1:] if endpoint.startswith('/') else endpoint
    if not base_url:
        return f"/{clean}"
    return f"{base_url.rstrip('/')}/{clean}"


# ─── Logging Setup ───────────────────────────────────────────
def setup_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """Create a configured logger for guard modules."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '[%(asctime)s] %(name)-12s %(levelname)-7s %(message)s',
            datefmt='%H:%M:%S'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(level)
    return logger
