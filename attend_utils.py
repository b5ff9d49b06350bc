"""
Blink-Attend — Shared Utility Module
=====================================
Configuration loading, logger factory and the policy constants shared by
the liveness, matching and session modules.

Constants are read from config.yaml once at import time. Components take
them as defaults and accept explicit overrides in their constructors, so
tests never depend on the file contents.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

import yaml


# ===================================================================
# Configuration
# ===================================================================

_SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
_config_path = os.path.join(_SCRIPT_DIR, 'config.yaml')


def load_config(path: Optional[str] = None) -> dict:
    """Load configuration from config.yaml (empty dict if the file is absent)."""
    target = path or _config_path
    if not os.path.exists(target):
        return {}
    with open(target, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f) or {}


def config_section(name: str, config: Optional[dict] = None) -> dict:
    """Return one top-level section of a loaded config, never None."""
    source = CONFIG if config is None else config
    return dict(source.get(name) or {})


def resolve_path(path: str) -> str:
    """Resolve a config-relative path against the project root."""
    if os.path.isabs(path):
        return path
    return os.path.join(_SCRIPT_DIR, path)


CONFIG = load_config()


# ===================================================================
# Policy constants (config.yaml overrides the observed defaults)
# ===================================================================

_liveness = config_section('liveness')
_matching = config_section('matching')

OPEN_EYE_THRESHOLD   = float(_liveness.get('open_eye_threshold', 0.8))
CLOSED_EYE_THRESHOLD = float(_liveness.get('closed_eye_threshold', 0.2))
MAX_HEAD_YAW_DEGREES = float(_liveness.get('max_head_yaw_degrees', 15.0))

SIMILARITY_THRESHOLD = float(_matching.get('similarity_threshold', 0.7))


# ===================================================================
# Logging Setup
# ===================================================================

def setup_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """Create a configured logger for Blink-Attend modules."""
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


def level_from_config(config: Optional[dict] = None) -> int:
    """Map the logging.level config value to a logging constant."""
    name = str(config_section('logging', config).get('level', 'INFO')).upper()
    return getattr(logging, name, logging.INFO)
