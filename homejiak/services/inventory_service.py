# homejiak/services/inventory_service.py
import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from homejiak.models import (
    Product, ProductVariant, ProductModifier, ProductStatus, InventoryLog, InventoryChangeType,
    NotificationType, NotificationPriority, Order
)
from homejiak.exceptions import InventoryError, NotFoundError, ValidationError
from homejiak.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

STOCK_OPERATIONS = ('increment', 'decrement', 'set')


def _item_value(item, key):
    return item.get(key) if isinstance(item, dict) else getattr(item, key, None)


def _modifier_selections(item):
    """(modifier_id, units per item) pairs for a line's chosen modifiers."""
    return [(m['modifier_id'], m.get('quantity') or 1) for m in (_item_value(item, 'modifiers') or [])]


class InventoryService:
    """Service for product stock checks, reservations and adjustments."""

    def __init__(self, session: Session):
        """Initialize the inventory service.

        Args:
            session: Database session
        """
        self.session = session
        self.notifications = NotificationService(session)

    def _stock_available(self, product: Optional[Product], quantity: int,
                         variant: Optional[ProductVariant] = None) -> bool:
        if product is None or not product.is_active:
            return False
        if not product.track_quantity or product.allow_backorder:
            return True
        holder = variant if variant is not None else product
        return (holder.quantity or 0) >= quantity

    def check_availability(self, product_id: str, quantity: int, variant_id: Optional[str] = None) -> bool:
        """Check whether a product can be ordered in the requested quantity.

        Args:
            product_id: Product ID
            quantity: Requested quantity
            variant_id: Optional variant whose own stock applies

        Returns:
            True if available
        """
        product = self.session.get(Product, product_id)
        variant = None
        if variant_id:
            variant = self.session.get(ProductVariant, variant_id)
            if variant is None or variant.product_id != product_id:
                return False
        return self._stock_available(product, quantity, variant)

    def check_bulk_availability(self, items: Iterable) -> Dict[str, bool]:
        """Check availability for several line items with one query.

        Quantities asking for the same stock (the product, or its variant
        where one is given) are added up across lines before comparing, and
        so are a modifier's units. A product reads as available only when
        every holder under it is.

        Args:
            items: Iterable of ``{"product_id", "quantity", "variant_id"?, "modifiers"?}``

        Returns:
            Dictionary mapping product ID to availability
        """
        items = list(items)
        product_ids = {_item_value(item, 'product_id') for item in items}
        products = {
            p.id: p for p in self.session.query(Product).filter(Product.id.in_(product_ids)).all()
        } if product_ids else {}

        requested = {}
        modifier_requested = {}
        for item in items:
            product_id = _item_value(item, 'product_id')
            quantity = _item_value(item, 'quantity') or 0
            key = (product_id, _item_value(item, 'variant_id'))
            requested[key] = requested.get(key, 0) + quantity
            for modifier_id, count in _modifier_selections(item):
                key = (product_id, modifier_id)
                modifier_requested[key] = modifier_requested.get(key, 0) + count * quantity

        availability = {}
        for (product_id, variant_id), quantity in requested.items():
            variant = self.session.get(ProductVariant, variant_id) if variant_id else None
            if variant_id and (variant is None or variant.product_id != product_id):
                available = False
            else:
                available = self._stock_available(products.get(product_id), quantity, variant)
            availability[product_id] = availability.get(product_id, True) and available

        for (product_id, modifier_id), quantity in modifier_requested.items():
            modifier = self.session.get(ProductModifier, modifier_id)
            available = modifier is not None and modifier.is_available and (
                not modifier.track_inventory or (modifier.inventory or 0) >= quantity)
            availability[product_id] = availability[product_id] and available
        return availability

    def _lock_product(self, product_id: str) -> Product:
        product = self.session.query(Product) \
            .filter(Product.id == product_id) \
            .with_for_update() \
            .first()
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        return product

    def _lock_variant(self, product: Product, variant_id: str) -> ProductVariant:
        variant = self.session.query(ProductVariant) \
            .filter(ProductVariant.id == variant_id, ProductVariant.product_id == product.id) \
            .with_for_update() \
            .first()
        if variant is None:
            raise NotFoundError(f"Variant {variant_id} not found for product {product.name}")
        return variant

    def _lock_modifier(self, modifier_id: str) -> Optional[ProductModifier]:
        return self.session.query(ProductModifier) \
            .filter(ProductModifier.id == modifier_id) \
            .with_for_update() \
            .first()

    def _reserve_modifiers(self, product: Product, item, quantity: int):
        for modifier_id, count in _modifier_selections(item):
            modifier = self._lock_modifier(modifier_id)
            if modifier is None or not modifier.is_available:
                raise InventoryError(f"An option for {product.name} is no longer available",
                                     details={'modifier_id': modifier_id})
            if not modifier.track_inventory:
                continue
            needed = count * quantity
            if (modifier.inventory or 0) < needed:
                raise InventoryError(
                    f"Insufficient stock for {modifier.name} on {product.name}",
                    details={'modifier_id': modifier.id, 'available': modifier.inventory or 0, 'requested': needed}
                )
            modifier.inventory = (modifier.inventory or 0) - needed

    def _release_modifiers(self, item):
        for modifier_id, count in _modifier_selections(item):
            modifier = self._lock_modifier(modifier_id)
            if modifier is not None and modifier.track_inventory:
                modifier.inventory = (modifier.inventory or 0) + count * item.quantity

    def _log(self, product: Product, variant: Optional[ProductVariant], change_type: InventoryChangeType,
             before: int, after: int, order_id: Optional[str] = None, reason: Optional[str] = None):
        log = InventoryLog(
            merchant_id=product.merchant_id,
            product_id=product.id,
            variant_id=variant.id if variant is not None else None,
            change_type=change_type,
            quantity_change=after - before,
            quantity_before=before,
            quantity_after=after,
            order_id=order_id,
            reason=reason,
        )
        self.session.add(log)
        return log

    def _check_low_stock(self, product: Product, before: int, after: int):
        threshold = product.low_stock_threshold or 0
        if before > threshold >= after:
            self.notifications.create_notification(
                NotificationType.LOW_STOCK_ALERT,
                merchant_id=product.merchant_id,
                data={
                    'productId': product.id,
                    'productName': product.name,
                    'currentQuantity': after,
                    'threshold': threshold,
                },
                priority=NotificationPriority.HIGH,
            )
            logger.info(f"Low stock alert for product {product.id}: {after} left")

    def _sync_sold_out(self, product: Product):
        if product.deleted_at is not None or product.allow_backorder:
            return
        if product.status == ProductStatus.ACTIVE and product.quantity <= 0:
            product.status = ProductStatus.SOLD_OUT
        elif product.status == ProductStatus.SOLD_OUT and product.quantity > 0:
            product.status = ProductStatus.ACTIVE

    def reserve_stock(self, items: Iterable, order_id: Optional[str] = None, commit: bool = True) -> List[InventoryLog]:
        """Decrement stock for every line item in one transaction.

        Rows are locked with SELECT ... FOR UPDATE, so the last unit can only
        be taken once. Untracked products are skipped.

        Args:
            items: Iterable of ``{"product_id", "quantity", "variant_id"?, "modifiers"?}``
            order_id: Order the reservation belongs to
            commit: Commit on success (False when the caller owns the transaction)

        Returns:
            List of inventory log rows written

        Raises:
            InventoryError if any tracked item lacks stock and backorder is off
        """
        logs = []
        try:
            for item in items:
                product_id = _item_value(item, 'product_id')
                variant_id = _item_value(item, 'variant_id')
                quantity = _item_value(item, 'quantity')
                if not isinstance(quantity, int) or quantity <= 0:
                    raise ValidationError(f"Invalid quantity for product {product_id}")

                product = self._lock_product(product_id)
                variant = self._lock_variant(product, variant_id) if variant_id else None

                self._reserve_modifiers(product, item, quantity)
                if not product.track_quantity:
                    continue

                holder = variant if variant is not None else product
                before = holder.quantity or 0
                if not product.allow_backorder and before < quantity:
                    raise InventoryError(
                        f"Insufficient stock for {product.name}",
                        details={'product_id': product.id, 'available': before, 'requested': quantity}
                    )

                holder.quantity = before - quantity
                logs.append(self._log(product, variant, InventoryChangeType.RESERVE, before, holder.quantity,
                                      order_id=order_id, reason='Order reservation'))
                if variant is None:
                    self._check_low_stock(product, before, holder.quantity)
                    self._sync_sold_out(product)

            self.session.flush()
            if commit:
                self.session.commit()
        except Exception:
            if commit:
                self.session.rollback()
            raise

        logger.info(f"Reserved stock for order {order_id}: {len(logs)} tracked line(s)")
        return logs

    def release_stock(self, order: Order, commit: bool = True) -> bool:
        """Return an order's reserved stock.

        Safe to call more than once; an order whose stock was already released
        is skipped.

        Args:
            order: Cancelled order
            commit: Commit on success

        Returns:
            True if stock was released by this call
        """
        if order.stock_released:
            logger.info(f"Stock for order {order.order_number} already released")
            return False

        try:
            for item in order.items:
                product = self._lock_product(item.product_id)
                self._release_modifiers(item)
                if not product.track_quantity:
                    continue
                variant = self._lock_variant(product, item.variant_id) if item.variant_id else None
                holder = variant if variant is not None else product
                before = holder.quantity or 0
                holder.quantity = before + item.quantity
                self._log(product, variant, InventoryChangeType.RELEASE, before, holder.quantity,
                          order_id=order.id, reason='Order cancelled')
                if variant is None:
                    self._sync_sold_out(product)

            order.stock_released = True
            self.session.flush()
            if commit:
                self.session.commit()
        except Exception:
            if commit:
                self.session.rollback()
            raise

        logger.info(f"Released stock for order {order.order_number}")
        return True

    def update_stock(self, product_id: str, change: int, operation: str = 'increment',
                     merchant_id: Optional[str] = None, reason: Optional[str] = None) -> Product:
        """Adjust a product's stock level by hand.

        Args:
            product_id: Product ID
            change: Amount to add or remove, or the new absolute count for ``set``
            operation: ``increment``, ``decrement`` or ``set``
            merchant_id: When given, the product must belong to this merchant
            reason: Note stored on the inventory log

        Returns:
            Updated product
        """
        if operation not in STOCK_OPERATIONS:
            raise ValidationError(f"Invalid stock operation: {operation}")
        if not isinstance(change, int) or change < 0:
            raise ValidationError("Stock change must be a non-negative integer")

        try:
            product = self._lock_product(product_id)
            if merchant_id and product.merchant_id != merchant_id:
                raise NotFoundError(f"Product {product_id} not found")

            before = product.quantity or 0
            if operation == 'set':
                after = change
            elif operation == 'increment':
                after = before + change
            else:
                after = before - change

            if after < 0 and not product.allow_backorder:
                raise InventoryError(
                    f"Cannot reduce stock of {product.name} below zero",
                    details={'available': before, 'requested': change}
                )

            product.quantity = after
            self._log(product, None,
                      InventoryChangeType.SET if operation == 'set' else InventoryChangeType.ADJUST,
                      before, after, reason=reason)
            if product.track_quantity:
                self._check_low_stock(product, before, after)
                self._sync_sold_out(product)

            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Stock for product {product_id} {operation} {change}: {before} -> {after}")
        return product

    def get_inventory_logs(self, merchant_id: str, product_id: Optional[str] = None,
                           limit: int = 50) -> List[InventoryLog]:
        query = self.session.query(InventoryLog).filter(InventoryLog.merchant_id == merchant_id)
        if product_id:
            query = query.filter(InventoryLog.product_id == product_id)
        return query.order_by(InventoryLog.created_at.desc()).limit(min(max(limit, 1), 200)).all()

    def get_low_stock_products(self, merchant_id: str) -> List[Product]:
        """Tracked, live products at or below their low-stock threshold."""
        return self.session.query(Product) \
            .filter(Product.merchant_id == merchant_id,
                    Product.track_quantity.is_(True),
                    Product.deleted_at.is_(None),
                    Product.quantity <= Product.low_stock_threshold) \
            .order_by(Product.quantity.asc()) \
            .all()
