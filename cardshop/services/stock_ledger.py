"""
Stock Ledger

Authoritative per-product counts and the availability calculation:

    available = product.stock - SUM(quantity of unconfirmed, unexpired reservations)

Confirmed reservations are already reflected in ``product.stock`` and never
count twice. Expired reservations are filtered out lazily here, so an
abandoned cart stops holding stock the moment its window closes even if the
cleanup job has not run yet.

Every decision that depends on these numbers must be taken inside the same
transaction that reads them; pass ``for_update=True`` on the write path so
concurrent checkouts serialize on the product row.
"""
import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Any

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.utils import utcnow
from cardshop.models import Product, StockReservation

logger = logging.getLogger(__name__)


@dataclass
class StockShortage:
    product_id: Any
    name: str
    requested: int
    available: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AvailabilityReport:
    available: bool
    shortages: List[StockShortage] = field(default_factory=list)

    def shortage_dicts(self) -> List[Dict[str, Any]]:
        return [s.to_dict() for s in self.shortages]


@dataclass
class RequestedLine:
    """One product's total requested quantity (duplicate cart lines merged)."""
    product_id: Any
    quantity: int
    name: str


def merge_lines(items: Iterable[Any]) -> List[RequestedLine]:
    """
    Collapse cart lines by product, preserving first-seen order.

    Items only need ``product_id`` and ``quantity``; ``name`` is used for
    shortage reporting when the product row is gone.
    """
    merged: Dict[Any, RequestedLine] = {}
    for item in items:
        line = merged.get(item.product_id)
        if line is None:
            merged[item.product_id] = RequestedLine(
                product_id=item.product_id,
                quantity=item.quantity,
                name=getattr(item, "name", None) or f"Product #{item.product_id}",
            )
        else:
            line.quantity += item.quantity
    return list(merged.values())


async def load_product(
    db: AsyncSession,
    product_id: Any,
    for_update: bool = False,
) -> Optional[Product]:
    """Load a product row, re-reading current values from the database."""
    stmt = (
        select(Product)
        .where(Product.id == product_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()  # Pessimistic lock
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def reserved_quantity(
    db: AsyncSession,
    product_id: Any,
    now: Optional[datetime] = None,
) -> int:
    """Sum of active (unconfirmed, unexpired) reservation quantities."""
    now = now or utcnow()
    result = await db.execute(
        select(func.coalesce(func.sum(StockReservation.quantity), 0))
        .where(StockReservation.product_id == product_id)
        .where(StockReservation.confirmed.is_(False))
        .where(StockReservation.expires_at > now)
    )
    return int(result.scalar_one())


async def available_for_product(
    db: AsyncSession,
    product: Product,
    now: Optional[datetime] = None,
) -> Optional[int]:
    """Availability for an already-loaded product; None when stock is untracked."""
    if not product.track_stock:
        return None
    held = await reserved_quantity(db, product.id, now)
    return product.stock - held


async def available_stock(
    db: AsyncSession,
    product_id: Any,
    now: Optional[datetime] = None,
    for_update: bool = False,
) -> Optional[int]:
    """
    Compute available stock for a product.

    Returns:
        None if the product does not track stock (unbounded),
        0 if the product does not exist,
        otherwise stock minus active unconfirmed reservations.
    """
    product = await load_product(db, product_id, for_update=for_update)
    if product is None:
        return 0
    return await available_for_product(db, product, now)


async def check_availability(
    db: AsyncSession,
    items: Iterable[Any],
    now: Optional[datetime] = None,
) -> AvailabilityReport:
    """
    Compare every requested line against current availability.

    Reports all short items rather than stopping at the first so the buyer
    sees the full picture. Missing products are zero-available shortages.
    """
    now = now or utcnow()
    shortages: List[StockShortage] = []

    for line in merge_lines(items):
        product = await load_product(db, line.product_id)
        if product is None:
            shortages.append(StockShortage(
                product_id=line.product_id,
                name=line.name,
                requested=line.quantity,
                available=0,
            ))
            continue

        available = await available_for_product(db, product, now)
        if available is not None and line.quantity > available:
            shortages.append(StockShortage(
                product_id=product.id,
                name=product.name,
                requested=line.quantity,
                available=max(available, 0),
            ))

    if shortages:
        logger.info(
            "Availability check found %d short item(s): %s",
            len(shortages),
            ", ".join(f"{s.product_id}({s.requested}>{s.available})" for s in shortages),
        )

    return AvailabilityReport(available=not shortages, shortages=shortages)
