"""
Inventory Module - Service Layer
==================================
Stock ledger: atomic reserve / release / decrement / increment of product
counters, with one StockMovement row appended per mutation.

Every counter change is a single conditional UPDATE, so two concurrent callers
can never both pass a check-then-write on the same product. The decrement is
the authoritative gate for a sale; reservations are advisory.

Usage:
    inventory_service.reserve(db, product_id=5, qty=2, reference_type="order", reference_id=17)
    inventory_service.commit_reservation(db, 5, 2, reference_type="order", reference_id=17)
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import case
from sqlalchemy.orm import Session

from common.exceptions import ErrorKind, ValidationError, NotFoundError, ResourceError
from modules.catalog.models import Product
from modules.inventory.models import StockMovement, MovementType

logger = logging.getLogger("rmshop.inventory")


class InventoryService:

    # ==========================================
    # Helpers
    # ==========================================

    def _check_qty(self, product_id: int, qty: int):
        if not isinstance(qty, int) or qty < 1:
            raise ValidationError(ErrorKind.INVALID_QUANTITY, product_id=product_id, quantity=qty)

    def _fresh(self, db: Session, product_id: int) -> Optional[Product]:
        """Reload counters from the DB, overwriting any stale identity-map copy."""
        return (
            db.query(Product)
            .populate_existing()
            .filter(Product.id == product_id)
            .first()
        )

    def _require_product(self, db: Session, product_id: int) -> Product:
        product = self._fresh(db, product_id)
        if not product:
            raise NotFoundError(ErrorKind.PRODUCT_NOT_FOUND, product_id=product_id)
        return product

    def _record(
        self,
        db: Session,
        product: Product,
        movement_type: MovementType,
        qty: int,
        reference_type: Optional[str],
        reference_id,
    ) -> StockMovement:
        movement = StockMovement(
            product_id=product.id,
            movement_type=movement_type.value,
            quantity=qty,
            stock_after=product.stock_quantity,
            reserved_after=product.reserved_quantity,
            reference_type=reference_type,
            reference_id=str(reference_id) if reference_id is not None else None,
        )
        db.add(movement)
        db.flush()
        logger.info(
            f"Stock {movement_type.value} product={product.id} qty={qty} "
            f"stock={product.stock_quantity} reserved={product.reserved_quantity} "
            f"ref={reference_type}:{reference_id}"
        )
        return movement

    def _insufficient(self, db: Session, product_id: int, qty: int):
        """Raise the right error after a conditional UPDATE matched no row."""
        product = self._require_product(db, product_id)
        raise ResourceError(
            ErrorKind.INSUFFICIENT_STOCK,
            f"Insufficient stock for product {product_id}",
            product_id=product_id,
            requested=qty,
            available=product.available_quantity,
        )

    # ==========================================
    # Mutations
    # ==========================================

    def reserve(
        self, db: Session, product_id: int, qty: int,
        reference_type: str = None, reference_id=None,
    ) -> StockMovement:
        """Hold `qty` units for a pending payment. Fails if available < qty."""
        self._check_qty(product_id, qty)
        updated = (
            db.query(Product)
            .filter(
                Product.id == product_id,
                Product.stock_quantity - Product.reserved_quantity >= qty,
            )
            .update(
                {Product.reserved_quantity: Product.reserved_quantity + qty},
                synchronize_session=False,
            )
        )
        if not updated:
            self._insufficient(db, product_id, qty)
        product = self._fresh(db, product_id)
        return self._record(db, product, MovementType.RESERVE, qty, reference_type, reference_id)

    def release(
        self, db: Session, product_id: int, qty: int,
        reference_type: str = None, reference_id=None,
    ) -> StockMovement:
        """Drop a hold. Clamped at zero, never underflows."""
        self._check_qty(product_id, qty)
        updated = (
            db.query(Product)
            .filter(Product.id == product_id)
            .update(
                {Product.reserved_quantity: case(
                    (Product.reserved_quantity >= qty, Product.reserved_quantity - qty),
                    else_=0,
                )},
                synchronize_session=False,
            )
        )
        if not updated:
            raise NotFoundError(ErrorKind.PRODUCT_NOT_FOUND, product_id=product_id)
        product = self._fresh(db, product_id)
        return self._record(db, product, MovementType.RELEASE, qty, reference_type, reference_id)

    def decrement(
        self, db: Session, product_id: int, qty: int,
        reference_type: str = None, reference_id=None,
    ) -> StockMovement:
        """
        Confirmed sale: stock_quantity -= qty.
        Fails with InsufficientStock rather than going negative.
        Units held by other callers' reservations are not available here.
        """
        self._check_qty(product_id, qty)
        updated = (
            db.query(Product)
            .filter(
                Product.id == product_id,
                Product.stock_quantity - Product.reserved_quantity >= qty,
            )
            .update(
                {Product.stock_quantity: Product.stock_quantity - qty},
                synchronize_session=False,
            )
        )
        if not updated:
            self._insufficient(db, product_id, qty)
        product = self._fresh(db, product_id)
        return self._record(db, product, MovementType.DECREMENT, qty, reference_type, reference_id)

    def increment(
        self, db: Session, product_id: int, qty: int,
        reference_type: str = None, reference_id=None,
    ) -> StockMovement:
        """Put units back (cancellation restock, return to seller)."""
        self._check_qty(product_id, qty)
        updated = (
            db.query(Product)
            .filter(Product.id == product_id)
            .update(
                {Product.stock_quantity: Product.stock_quantity + qty},
                synchronize_session=False,
            )
        )
        if not updated:
            raise NotFoundError(ErrorKind.PRODUCT_NOT_FOUND, product_id=product_id)
        product = self._fresh(db, product_id)
        return self._record(db, product, MovementType.INCREMENT, qty, reference_type, reference_id)

    def commit_reservation(
        self, db: Session, product_id: int, qty: int,
        reference_type: str = None, reference_id=None,
    ) -> StockMovement:
        """
        Turn a hold into a sale in one UPDATE: reserved -= qty, stock -= qty.
        Still gated on stock_quantity >= qty.
        """
        self._check_qty(product_id, qty)
        updated = (
            db.query(Product)
            .filter(
                Product.id == product_id,
                Product.stock_quantity >= qty,
            )
            .update(
                {
                    Product.stock_quantity: Product.stock_quantity - qty,
                    Product.reserved_quantity: case(
                        (Product.reserved_quantity >= qty, Product.reserved_quantity - qty),
                        else_=0,
                    ),
                },
                synchronize_session=False,
            )
        )
        if not updated:
            self._insufficient(db, product_id, qty)
        product = self._fresh(db, product_id)
        self._record(db, product, MovementType.RELEASE, qty, reference_type, reference_id)
        return self._record(db, product, MovementType.DECREMENT, qty, reference_type, reference_id)

    # ==========================================
    # Query
    # ==========================================

    def get_stock(self, db: Session, product_id: int) -> Dict[str, Any]:
        product = self._require_product(db, product_id)
        return {
            "product_id": product.id,
            "stock_quantity": product.stock_quantity,
            "reserved_quantity": product.reserved_quantity,
            "available_quantity": product.available_quantity,
        }

    def get_movements(
        self, db: Session, product_id: int,
        movement_type: str = None,
    ) -> List[StockMovement]:
        q = db.query(StockMovement).filter(StockMovement.product_id == product_id)
        if movement_type:
            q = q.filter(StockMovement.movement_type == movement_type)
        return q.order_by(StockMovement.id.asc()).all()


inventory_service = InventoryService()
