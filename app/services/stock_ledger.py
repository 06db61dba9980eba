"""
Stock ledger - the only writer of on-hand quantities.

The ledger owns concurrency control for a product's quantity: a negative
delta is applied as a conditional decrement that succeeds only if enough
stock is on hand at that instant, never from an earlier read. Batches are
all-or-nothing.

Two implementations:
- SqlStockLedger: conditional UPDATE inside the caller's transaction, one
  StockMove row per committed delta.
- InMemoryStockLedger: per-product locks, for fakes and tests.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, update, func

from app.database import utcnow
from app.exceptions import InsufficientStockError, NotFoundError, ValidationError
from app.models import Product, ProductStock, StockMove, StockMoveType

logger = logging.getLogger(__name__)

StockDelta = Tuple[str, int]


def net_deltas(deltas: Iterable[StockDelta]) -> Dict[str, int]:
    """Collapse (product_id, delta) pairs into one net delta per product, zeros dropped."""
    net: Dict[str, int] = {}
    for product_id, delta in deltas:
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise ValidationError(f'Stock delta for {product_id} must be an integer', {'product_id': product_id})
        net[product_id] = net.get(product_id, 0) + delta
    return {pid: delta for pid, delta in net.items() if delta != 0}


def move_type_for(delta: int, move_type: Optional[StockMoveType] = None) -> StockMoveType:
    if move_type is not None:
        return move_type
    return StockMoveType.OUT if delta < 0 else StockMoveType.IN


class StockLedger:
    """Capability interface consumed by the sale aggregate."""

    def available(self, product_id: str) -> int:
        """Current on-hand quantity."""
        raise NotImplementedError

    def commit(self, product_id: str, delta: int, reference: str = None, note: str = None,
               move_type: StockMoveType = None) -> int:
        """Apply a single delta atomically. Returns the new on-hand quantity."""
        levels = self.commit_batch([(product_id, delta)], reference=reference, note=note, move_type=move_type)
        return levels.get(product_id, self.available(product_id))

    def commit_batch(self, deltas: Iterable[StockDelta], reference: str = None, note: str = None,
                     move_type: StockMoveType = None) -> Dict[str, int]:
        """
        Apply every delta or none of them.

        Returns:
            dict of product_id -> new on-hand quantity

        Raises:
            InsufficientStockError: a decrement exceeds on-hand stock
            NotFoundError: unknown product
        """
        raise NotImplementedError

    def committed_for(self, reference: str) -> Dict[str, int]:
        """Net delta per product recorded under ``reference``."""
        raise NotImplementedError


# =====================================================
# SQL LEDGER
# =====================================================

class SqlStockLedger(StockLedger):
    """
    Ledger over the ``product_stock`` table.

    Runs in the session's current transaction and does not commit: the
    caller commits or rolls back the whole unit of work. If a batch fails
    midway, deltas already applied are reverted before the error is
    raised, so the batch leaves no trace even if the caller continues.
    """

    def __init__(self, session):
        self._session = session

    def available(self, product_id: str) -> int:
        qty = self._session.execute(
            select(ProductStock.on_hand_qty).where(ProductStock.product_id == product_id)
        ).scalar()
        if qty is None:
            self._require_product(product_id)
            return 0
        return int(qty)

    def commit_batch(self, deltas, reference=None, note=None, move_type=None):
        net = net_deltas(deltas)
        if not net:
            return {}

        applied: List[StockDelta] = []
        try:
            # Sorted order keeps row locks acquired in a consistent sequence
            for product_id in sorted(net):
                self._apply(product_id, net[product_id])
                applied.append((product_id, net[product_id]))
        except Exception:
            for product_id, delta in reversed(applied):
                self._apply(product_id, -delta, conditional=False)
            raise

        levels = {}
        for product_id, delta in applied:
            self._session.add(StockMove(
                product_id=product_id,
                type=move_type_for(delta, move_type),
                quantity=delta,
                reference=reference,
                note=note,
                created_at=utcnow()
            ))
            levels[product_id] = self.available(product_id)
        self._session.flush()

        logger.info(f"Stock committed ref={reference}: {dict(applied)}")
        return levels

    def committed_for(self, reference: str) -> Dict[str, int]:
        rows = self._session.execute(
            select(StockMove.product_id, func.sum(StockMove.quantity))
            .where(StockMove.reference == reference)
            .group_by(StockMove.product_id)
        ).all()
        return {row[0]: int(row[1]) for row in rows if row[1]}

    def _apply(self, product_id: str, delta: int, conditional: bool = True) -> None:
        """Conditional in-place update: ``on_hand_qty + delta`` only if the result stays >= 0."""
        stmt = (
            update(ProductStock)
            .where(ProductStock.product_id == product_id)
            .values(on_hand_qty=ProductStock.on_hand_qty + delta, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if conditional and delta < 0:
            stmt = stmt.where(ProductStock.on_hand_qty >= -delta)

        result = self._session.execute(stmt)
        if result.rowcount == 1:
            return

        available = self._session.execute(
            select(ProductStock.on_hand_qty).where(ProductStock.product_id == product_id)
        ).scalar()
        if available is None:
            # No stock row yet: only an increment may create one
            self._require_product(product_id)
            if delta < 0:
                raise InsufficientStockError(product_id, -delta, 0)
            self._session.add(ProductStock(product_id=product_id, on_hand_qty=delta, updated_at=utcnow()))
            self._session.flush()
            return
        raise InsufficientStockError(product_id, -delta, int(available))

    def _require_product(self, product_id: str) -> None:
        exists = self._session.execute(
            select(Product.id).where(Product.id == product_id)
        ).scalar()
        if exists is None:
            raise NotFoundError(f'Product {product_id} not found', {'product_id': product_id})


# =====================================================
# IN-MEMORY LEDGER
# =====================================================

@dataclass(frozen=True)
class StockMovement:
    product_id: str
    quantity: int
    type: StockMoveType
    reference: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


class InMemoryStockLedger(StockLedger):
    """
    Thread-safe in-process ledger.

    Each product has its own lock; a batch takes the locks of all its
    products in sorted order, checks every decrement, then applies them.
    """

    def __init__(self, levels: Optional[Dict[str, int]] = None):
        self._levels: Dict[str, int] = dict(levels or {})
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._moves: List[StockMovement] = []

    @property
    def movements(self) -> List[StockMovement]:
        with self._registry_lock:
            return list(self._moves)

    def set_level(self, product_id: str, qty: int) -> None:
        with self._lock_for(product_id):
            self._levels[product_id] = qty

    def available(self, product_id: str) -> int:
        if product_id not in self._levels:
            raise NotFoundError(f'Product {product_id} not found', {'product_id': product_id})
        with self._lock_for(product_id):
            return self._levels[product_id]

    def commit_batch(self, deltas, reference=None, note=None, move_type=None):
        net = net_deltas(deltas)
        if not net:
            return {}
        for product_id in net:
            if product_id not in self._levels:
                raise NotFoundError(f'Product {product_id} not found', {'product_id': product_id})

        locks = [self._lock_for(pid) for pid in sorted(net)]
        for lock in locks:
            lock.acquire()
        try:
            for product_id in sorted(net):
                delta = net[product_id]
                if self._levels[product_id] + delta < 0:
                    raise InsufficientStockError(product_id, -delta, self._levels[product_id])
            for product_id, delta in net.items():
                self._levels[product_id] += delta
            moves = [
                StockMovement(pid, delta, move_type_for(delta, move_type), reference, note)
                for pid, delta in net.items()
            ]
            levels = {pid: self._levels[pid] for pid in net}
        finally:
            for lock in reversed(locks):
                lock.release()

        with self._registry_lock:
            self._moves.extend(moves)
        return levels

    def committed_for(self, reference: str) -> Dict[str, int]:
        totals: Dict[str, int] = {}
        for move in self.movements:
            if move.reference == reference:
                totals[move.product_id] = totals.get(move.product_id, 0) + move.quantity
        return {pid: qty for pid, qty in totals.items() if qty}

    def _lock_for(self, product_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(product_id)
            if lock is None:
                lock = self._locks[product_id] = threading.Lock()
            return lock
