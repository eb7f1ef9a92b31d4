"""
FIFO allocation of a required quantity across purchase lots.

Pure in-memory computation: callers load the lot balances in one batch,
allocate, then write the resulting usage events themselves.
"""

from datetime import date
from decimal import Decimal

from sqlmodel import SQLModel


class LotBalance(SQLModel):
    """A lot and what is left in it"""
    lot_id: int
    ingredient_id: int
    purchase_date: date
    remaining: Decimal


class LotAllocation(SQLModel):
    lot_id: int
    quantity_taken: Decimal


class AllocationResult(SQLModel):
    ingredient_id: int
    required: Decimal
    allocations: list[LotAllocation] = []
    shortage: Decimal = Decimal("0")

    @property
    def allocated(self) -> Decimal:
        return sum((a.quantity_taken for a in self.allocations), Decimal("0"))


def allocate(
    ingredient_id: int,
    required_quantity: Decimal,
    available_lots: list[LotBalance],
) -> AllocationResult:
    """
    Take stock oldest lot first until the requirement is met.
    Whatever cannot be covered is reported as shortage; no lots at all means
    the whole requirement is short.
    """
    result = AllocationResult(ingredient_id=ingredient_id, required=required_quantity)
    if required_quantity <= 0:
        return result

    candidates = [
        lot for lot in available_lots
        if lot.ingredient_id == ingredient_id and lot.remaining > 0
    ]
    # sorted() is stable: lots bought the same day keep their given order
    candidates = sorted(candidates, key=lambda lot: lot.purchase_date)

    still_needed = required_quantity
    for lot in candidates:
        if still_needed <= 0:
            break
        take = min(lot.remaining, still_needed)
        result.allocations.append(LotAllocation(lot_id=lot.lot_id, quantity_taken=take))
        still_needed -= take

    result.shortage = max(Decimal("0"), still_needed)
    return result
