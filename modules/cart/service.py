"""
Cart Module - Service Layer
=============================
Cart CRUD with quantity bounds, live stock checks and price snapshots.
The fingerprint lets a checkout session detect that the cart moved on.
"""

import hashlib
import logging
from typing import List, Dict, Any

from sqlalchemy.orm import Session, joinedload

from config.settings import MAX_CART_ITEM_QUANTITY, MAX_CART_LINES
from common.exceptions import (
    ErrorKind, ValidationError, ResourceError, NotFoundError, AuthorizationError,
)
from common.helpers import to_money
from modules.cart.models import Cart, CartItem
from modules.catalog.models import Product
from modules.user.models import User

logger = logging.getLogger("rmshop.cart")


class CartService:

    # ==========================================
    # Helpers
    # ==========================================

    def _require_active_user(self, db: Session, user_id: int) -> User:
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise AuthorizationError(ErrorKind.UNAUTHORIZED, user_id=user_id)
        if user.is_blocked:
            raise AuthorizationError(ErrorKind.USER_BLOCKED, user_id=user_id)
        return user

    def _require_sellable(self, db: Session, product_id: int) -> Product:
        product = db.query(Product).filter(Product.id == product_id).first()
        if not product or product.is_deleted:
            raise NotFoundError(ErrorKind.PRODUCT_NOT_FOUND, product_id=product_id)
        if not product.is_active:
            raise ValidationError(ErrorKind.PRODUCT_UNAVAILABLE, product_id=product_id)
        return product

    def _check_bounds(self, qty):
        if not isinstance(qty, int) or qty < 1:
            raise ValidationError(ErrorKind.INVALID_QUANTITY, quantity=qty)
        if qty > MAX_CART_ITEM_QUANTITY:
            raise ValidationError(
                ErrorKind.EXCEEDS_MAX_QUANTITY,
                f"At most {MAX_CART_ITEM_QUANTITY} units per product",
                quantity=qty,
            )

    def _check_stock(self, product: Product, qty: int):
        if product.available_quantity < qty:
            raise ResourceError(
                ErrorKind.INSUFFICIENT_STOCK,
                product_id=product.id,
                requested=qty,
                available=product.available_quantity,
            )

    def _owned_item(self, db: Session, user_id: int, item_id: int) -> CartItem:
        item = (
            db.query(CartItem)
            .options(joinedload(CartItem.cart))
            .filter(CartItem.id == item_id)
            .first()
        )
        if not item:
            raise NotFoundError(ErrorKind.CART_ITEM_NOT_FOUND, item_id=item_id)
        if item.cart.user_id != user_id:
            raise AuthorizationError(ErrorKind.UNAUTHORIZED, item_id=item_id, user_id=user_id)
        return item

    def get_or_create_cart(self, db: Session, user_id: int) -> Cart:
        cart = db.query(Cart).filter(Cart.user_id == user_id).first()
        if not cart:
            cart = Cart(user_id=user_id)
            db.add(cart)
            db.flush()
        return cart

    def get_lines(self, db: Session, user_id: int) -> List[CartItem]:
        """Current cart lines (with products), oldest first."""
        return (
            db.query(CartItem)
            .join(Cart, Cart.id == CartItem.cart_id)
            .options(joinedload(CartItem.product))
            .filter(Cart.user_id == user_id)
            .order_by(CartItem.id)
            .all()
        )

    # ==========================================
    # Mutations
    # ==========================================

    def add_item(self, db: Session, user_id: int, product_id: int, qty: int = 1) -> CartItem:
        """Add `qty` units, merging with an existing line for the same product."""
        self._check_bounds(qty)
        self._require_active_user(db, user_id)
        product = self._require_sellable(db, product_id)
        cart = self.get_or_create_cart(db, user_id)

        item = (
            db.query(CartItem)
            .filter(CartItem.cart_id == cart.id, CartItem.product_id == product_id)
            .first()
        )
        new_qty = qty + (item.quantity if item else 0)
        if new_qty > MAX_CART_ITEM_QUANTITY:
            raise ValidationError(
                ErrorKind.EXCEEDS_MAX_QUANTITY,
                f"At most {MAX_CART_ITEM_QUANTITY} units per product",
                product_id=product_id, quantity=new_qty,
            )

        if not item:
            line_count = db.query(CartItem).filter(CartItem.cart_id == cart.id).count()
            if line_count >= MAX_CART_LINES:
                raise ValidationError(ErrorKind.CART_FULL, f"Cart holds at most {MAX_CART_LINES} products")

        self._check_stock(product, new_qty)

        if item:
            item.quantity = new_qty
            item.unit_price_snapshot = to_money(product.price)
        else:
            item = CartItem(
                cart_id=cart.id,
                product_id=product_id,
                quantity=new_qty,
                unit_price_snapshot=to_money(product.price),
            )
            db.add(item)
        db.flush()
        logger.info(f"Cart user={user_id} product={product_id} qty={new_qty}")
        return item

    def update_item_quantity(self, db: Session, user_id: int, item_id: int, qty: int):
        """Set the line quantity. 0 removes the line (returns None)."""
        if isinstance(qty, int) and qty == 0:
            self.delete_item(db, user_id, item_id)
            return None
        self._check_bounds(qty)
        item = self._owned_item(db, user_id, item_id)
        self._require_active_user(db, user_id)
        product = self._require_sellable(db, item.product_id)
        self._check_stock(product, qty)

        item.quantity = qty
        item.unit_price_snapshot = to_money(product.price)
        db.flush()
        logger.info(f"Cart user={user_id} item={item_id} qty={qty}")
        return item

    def delete_item(self, db: Session, user_id: int, item_id: int):
        item = self._owned_item(db, user_id, item_id)
        db.delete(item)
        db.flush()
        logger.info(f"Cart user={user_id} item={item_id} removed")

    def clear_cart(self, db: Session, user_id: int) -> int:
        """Remove all lines. Returns number of lines removed."""
        lines = self.get_lines(db, user_id)
        for item in lines:
            db.delete(item)
        db.flush()
        return len(lines)

    # ==========================================
    # Query
    # ==========================================

    def get_cart(self, db: Session, user_id: int) -> Dict[str, Any]:
        lines = self.get_lines(db, user_id)
        items = []
        total = to_money(0)
        for it in lines:
            line_total = to_money(it.line_total)
            total += line_total
            items.append({
                "item_id": it.id,
                "product_id": it.product_id,
                "name": it.product.name if it.product else None,
                "quantity": it.quantity,
                "unit_price": it.unit_price_snapshot,
                "line_total": line_total,
            })
        return {
            "items": items,
            "item_count": sum(it["quantity"] for it in items),
            "total": to_money(total),
        }

    def fingerprint(self, db: Session, user_id: int) -> str:
        """SHA-256 over the sorted `product:qty:price` lines of the live cart."""
        parts = sorted(
            f"{it.product_id}:{it.quantity}:{to_money(it.unit_price_snapshot)}"
            for it in self.get_lines(db, user_id)
        )
        return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


cart_service = CartService()
