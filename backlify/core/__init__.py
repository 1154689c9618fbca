# -*- coding: utf-8 -*-
# backlify/core/__init__.py
# =============================================================================
# Core layer: settings, logging, errors, database and pure helpers.
# Nothing here imports CRUD, services or routes.
# =============================================================================

from __future__ import annotations

from .config_core import Settings, get_settings
from .logging_core import get_logger

CORE_VERSION = "1.0.0"

__all__ = ["CORE_VERSION", "Settings", "get_settings", "get_logger"]
