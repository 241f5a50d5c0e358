# Overview: In-memory cart for one terminal; derived totals and advisory stock checks, no persistence.

"""
Cart Assembler

WHY: The draft order lives on the terminal until checkout. Nothing here is
written to the database, so abandoning a cart costs nothing.

RULES:
- One line per (product, variant) pair; adding the same pair again merges.
- Before adding or increasing a quantity the cart asks the stock ledger for an
  advisory count (counter minus what this cart already holds for that pair).
  A failed check blocks the action; passing it guarantees nothing, the
  ledger decides at commit time.
- Prices are quoted once, when the line is added.
- The total is always derived from the lines.
- Mutations and snapshots take the cart lock; a checkout removes only the
  lines it committed, so items rung up meanwhile survive.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from typing import Callable

from . import catalog_service, stock_service
from .catalog_service import PriceQuote


class CartError(Exception):
    """Raised for cart operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InsufficientStockError(CartError):
    """Advisory stock check failed."""


@dataclass(frozen=True)
class CartLine:
    product_id: int
    variant_id: int | None
    quantity: int
    unit_price_cents: int
    note: str | None = None
    product_name: str | None = None
    variant_name: str | None = None

    @property
    def subtotal_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "subtotal_cents": self.subtotal_cents,
            "note": self.note,
            "product_name": self.product_name,
            "variant_name": self.variant_name,
        }


@dataclass(frozen=True)
class CartSnapshot:
    lines: tuple[CartLine, ...]
    customer_id: int | None = None

    @property
    def total_cents(self) -> int:
        return sum(line.subtotal_cents for line in self.lines)

    @property
    def is_empty(self) -> bool:
        return not self.lines


class Cart:
    """
    Draft order for one terminal.

    quote and availability default to the catalog and stock ledger; tests and
    offline terminals can pass their own callables.
    """

    def __init__(
        self,
        *,
        quote: Callable[[int, int | None], PriceQuote] | None = None,
        availability: Callable[[int, int | None], int] | None = None,
    ):
        self._quote = quote or catalog_service.quote
        self._availability = availability or stock_service.advisory_available
        self._lines: list[CartLine] = []
        self._lock = threading.Lock()
        self.customer_id: int | None = None

    @property
    def lines(self) -> tuple[CartLine, ...]:
        return tuple(self._lines)

    @property
    def total_cents(self) -> int:
        return sum(line.subtotal_cents for line in self._lines)

    def __len__(self) -> int:
        return len(self._lines)

    def reserved_quantity(self, product_id: int, variant_id: int | None = None) -> int:
        return sum(
            line.quantity
            for line in self._lines
            if line.product_id == product_id and line.variant_id == variant_id
        )

    def _check_available(self, product_id: int, variant_id: int | None, extra: int) -> None:
        available = self._availability(product_id, variant_id)
        reserved = self.reserved_quantity(product_id, variant_id)
        if available - reserved < extra:
            raise InsufficientStockError(
                "Not enough stock for this item",
                details={
                    "product_id": product_id,
                    "variant_id": variant_id,
                    "available": available,
                    "in_cart": reserved,
                    "requested": extra,
                },
            )

    def _find(self, product_id: int, variant_id: int | None) -> int | None:
        for index, line in enumerate(self._lines):
            if line.product_id == product_id and line.variant_id == variant_id:
                return index
        return None

    def _check_index(self, index: int) -> None:
        if index < 0 or index >= len(self._lines):
            raise CartError(f"No cart line at index {index}")

    def add_line(
        self,
        product_id: int,
        variant_id: int | None = None,
        quantity: int = 1,
        note: str | None = None,
    ) -> CartLine:
        if quantity < 1:
            raise CartError("Quantity must be at least 1")

        try:
            price = self._quote(product_id, variant_id)
        except catalog_service.CatalogError as exc:
            raise CartError(str(exc), details={"product_id": product_id, "variant_id": variant_id}) from exc

        with self._lock:
            self._check_available(product_id, variant_id, quantity)

            index = self._find(product_id, variant_id)
            if index is not None:
                current = self._lines[index]
                merged = replace(current, quantity=current.quantity + quantity, note=note or current.note)
                self._lines[index] = merged
                return merged

            line = CartLine(
                product_id=product_id,
                variant_id=variant_id,
                quantity=quantity,
                unit_price_cents=price.unit_price_cents,
                note=note,
                product_name=price.product_name,
                variant_name=price.variant_name,
            )
            self._lines.append(line)
            return line

    def update_quantity(self, index: int, delta: int) -> CartLine | None:
        """Change a line's quantity by delta. Returns None when the line drops to zero and is removed."""
        with self._lock:
            self._check_index(index)
            line = self._lines[index]

            if delta > 0:
                self._check_available(line.product_id, line.variant_id, delta)

            new_quantity = line.quantity + delta
            if new_quantity <= 0:
                del self._lines[index]
                return None

            updated = replace(line, quantity=new_quantity)
            self._lines[index] = updated
            return updated

    def remove_line(self, index: int) -> CartLine:
        with self._lock:
            self._check_index(index)
            return self._lines.pop(index)

    def clear(self) -> None:
        with self._lock:
            self._lines.clear()
            self.customer_id = None

    def snapshot(self) -> CartSnapshot:
        with self._lock:
            return CartSnapshot(lines=tuple(self._lines), customer_id=self.customer_id)

    def discard_committed(self, snapshot: CartSnapshot) -> None:
        """
        Take a committed snapshot's quantities out of the cart.

        Anything added after the snapshot was taken stays, including extra
        quantity merged into a committed line.
        """
        with self._lock:
            for committed in snapshot.lines:
                index = self._find(committed.product_id, committed.variant_id)
                if index is None:
                    continue
                line = self._lines[index]
                remaining = line.quantity - committed.quantity
                if remaining <= 0:
                    del self._lines[index]
                else:
                    self._lines[index] = replace(line, quantity=remaining)
            if self.customer_id == snapshot.customer_id:
                self.customer_id = None

    def to_dict(self) -> dict:
        with self._lock:
            lines = list(self._lines)
        return {
            "lines": [line.to_dict() for line in lines],
            "customer_id": self.customer_id,
            "total_cents": sum(line.subtotal_cents for line in lines),
        }
