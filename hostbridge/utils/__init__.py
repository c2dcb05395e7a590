"""Utilities (logging)"""
from .logging import log, vlog, warn, set_verbose

__all__ = ["log", "vlog", "warn", "set_verbose"]
