#!/usr/bin/env python3
"""
Incremental bleed suppression for plain-text streaming.

The CLI sometimes keeps going past its own reply and starts writing the next
turn's header. A header can straddle two deltas, so the last
len(longest sentinel) - 1 characters are held back until the next delta (or
finish()) proves they are not the start of one.
"""

from typing import Sequence

from config import BLEED_SENTINELS
from cli_adapters.response_adapter import strip_assistant_bleed


class BleedFilter:
    def __init__(self, sentinels: Sequence[str] = BLEED_SENTINELS):
        self.hold_back = max(len(s) for s in sentinels) - 1
        self.accumulated = ""
        self.flushed = 0
        self.bled = False

    def feed(self, text: str) -> str:
        """Add a delta; returns the text that is now safe to forward (may be empty)."""
        if self.bled or not text:
            return ""
        self.accumulated += text

        safe = strip_assistant_bleed(self.accumulated)
        if len(safe) < len(self.accumulated):
            self.bled = True
            out = safe[self.flushed:]
            self.flushed = max(self.flushed, len(safe))
            return out

        safe_len = len(self.accumulated) - self.hold_back
        if safe_len <= self.flushed:
            return ""
        out = self.accumulated[self.flushed:safe_len]
        self.flushed = safe_len
        return out

    def finish(self) -> str:
        """Release the held-back tail once the stream has ended."""
        if self.bled:
            return ""
        safe = strip_assistant_bleed(self.accumulated)
        out = safe[self.flushed:]
        self.flushed = max(self.flushed, len(safe))
        return out
