# Overview: Session context supplied by the upstream identity gateway.

from __future__ import annotations

from dataclasses import dataclass


ROLE_SUPER_ADMIN = "super_admin"
ROLE_ADMIN = "admin"
ROLE_CASHIER = "cashier"

ADMIN_ROLES = frozenset({ROLE_ADMIN, ROLE_SUPER_ADMIN})

HEADER_EMPLOYEE_ID = "X-Employee-Id"
HEADER_ROLE = "X-Employee-Role"
HEADER_TERMINAL_ID = "X-Terminal-Id"


@dataclass(frozen=True)
class SessionContext:
    """
    Who is acting and from which terminal.

    Login is handled upstream; the engine only consumes this value and passes
    it explicitly into every operation.
    """
    employee_id: str
    role: str
    terminal_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


def context_from_headers(headers) -> SessionContext | None:
    employee_id = (headers.get(HEADER_EMPLOYEE_ID) or "").strip()
    role = (headers.get(HEADER_ROLE) or "").strip().lower()
    if not employee_id or not role:
        return None
    terminal_id = (headers.get(HEADER_TERMINAL_ID) or "").strip() or None
    return SessionContext(employee_id=employee_id, role=role, terminal_id=terminal_id)
