# Overview: Per-terminal session state (cart and single-flight guard), kept in process memory.

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from flask import current_app

from .cart_service import Cart
from .concurrency import SingleFlightGuard


@dataclass
class TerminalSession:
    terminal_id: str
    cart: Cart
    guard: SingleFlightGuard = field(default_factory=SingleFlightGuard)


class TerminalRegistry:
    """
    Terminal sessions for this process.

    One registry per Flask app (app.extensions["terminal_registry"]). Sessions
    are created on first use and never shared between processes.
    """

    def __init__(self, cooldown_seconds: float = 0.0):
        self.cooldown_seconds = cooldown_seconds
        self._sessions: dict[str, TerminalSession] = {}
        self._lock = threading.Lock()

    def get(self, terminal_id: str) -> TerminalSession:
        with self._lock:
            session = self._sessions.get(terminal_id)
            if session is None:
                session = TerminalSession(
                    terminal_id=terminal_id,
                    cart=Cart(),
                    guard=SingleFlightGuard(cooldown_seconds=self.cooldown_seconds),
                )
                self._sessions[terminal_id] = session
            return session

    def __len__(self) -> int:
        return len(self._sessions)


def get_registry() -> TerminalRegistry:
    return current_app.extensions["terminal_registry"]


def get_terminal(terminal_id: str) -> TerminalSession:
    return get_registry().get(terminal_id)
