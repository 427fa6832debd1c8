"""Utility functions package"""
from .helpers import make_trace_logger, emit_log, safe_cmd, truncate, format_elapsed

__all__ = [
    'make_trace_logger', 'emit_log', 'safe_cmd', 'truncate', 'format_elapsed'
]
