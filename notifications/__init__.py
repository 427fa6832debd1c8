"""Outbound operator notifications"""
from .telegram import (
    TelegramApi, TelegramNotifier, NullNotifier, ProgressReporter, ProgressState,
    TOOL_LABELS, build_notifier
)

__all__ = [
    'TelegramApi', 'TelegramNotifier', 'NullNotifier', 'ProgressReporter',
    'ProgressState', 'TOOL_LABELS', 'build_notifier'
]
