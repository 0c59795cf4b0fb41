"""
Core module initialization.
"""
from .logging import setup_logging, get_logger
from .reconcile_context import reconcile_key_var, pass_id_var

__all__ = [
    # Logging
    "setup_logging",
    "get_logger",
    # Context
    "reconcile_key_var",
    "pass_id_var",
]
