# homejiak/models.py
import enum
import uuid

from sqlalchemy import (
    Column, String, Integer, Numeric, DateTime, Boolean, ForeignKey, Text,
    Enum, JSON, Index, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship

from homejiak.utils.date_utils import utcnow

Base = declarative_base()


def generate_id():
    """Generate a string primary key."""
    return str(uuid.uuid4())


def _money(value):
    """Render a Numeric column value for JSON."""
    return float(value) if value is not None else None


def _iso(value):
    return value.isoformat() if value is not None else None


def _enum(value):
    return value.value if value is not None else None


class MerchantStatus(enum.Enum):
    """Merchant account status.

    Values:
        ACTIVE: Storefront visible, can receive orders
        INACTIVE: Closed by the merchant
        SUSPENDED: Blocked by an administrator
        PENDING: Awaiting administrator approval
    """
    ACTIVE = 'ACTIVE'
    INACTIVE = 'INACTIVE'
    SUSPENDED = 'SUSPENDED'
    PENDING = 'PENDING'

    def __str__(self):
        """Return the string value of the enum."""
        return self.value


class ProductStatus(enum.Enum):
    ACTIVE = 'ACTIVE'
    DRAFT = 'DRAFT'
    SOLD_OUT = 'SOLD_OUT'
    DISCONTINUED = 'DISCONTINUED'

    def __str__(self):
        return self.value


class OrderStatus(enum.Enum):
    """Order lifecycle status.

    Values:
        PENDING: Placed, waiting for payment verification
        CONFIRMED: Payment verified by the merchant
        PREPARING: In the kitchen
        READY: Ready for pickup or dispatch
        OUT_FOR_DELIVERY: With the rider
        DELIVERED: Handed to the customer
        COMPLETED: Closed successfully
        CANCELLED: Cancelled; reserved stock is released
        REFUNDED: Money returned after completion
    """
    PENDING = 'PENDING'
    CONFIRMED = 'CONFIRMED'
    PREPARING = 'PREPARING'
    READY = 'READY'
    OUT_FOR_DELIVERY = 'OUT_FOR_DELIVERY'
    DELIVERED = 'DELIVERED'
    COMPLETED = 'COMPLETED'
    CANCELLED = 'CANCELLED'
    REFUNDED = 'REFUNDED'

    def __str__(self):
        """Return the string value of the enum."""
        return self.value

    @classmethod
    def from_string(cls, value: str) -> 'OrderStatus':
        """Create an OrderStatus from a string value.

        Args:
            value: String value, case-insensitive

        Returns:
            OrderStatus enum value

        Raises:
            ValueError if the string value is not valid
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            valid = ', '.join(s.value for s in cls)
            raise ValueError(f"Invalid order status: {value}. Valid values are: {valid}")


class PaymentStatus(enum.Enum):
    PENDING = 'PENDING'
    PROCESSING = 'PROCESSING'
    COMPLETED = 'COMPLETED'
    FAILED = 'FAILED'
    REFUNDED = 'REFUNDED'
    CANCELLED = 'CANCELLED'

    def __str__(self):
        return self.value


class PaymentMethod(enum.Enum):
    PAYNOW = 'PAYNOW'
    CASH = 'CASH'

    def __str__(self):
        return self.value


class DeliveryMethod(enum.Enum):
    DELIVERY = 'DELIVERY'
    PICKUP = 'PICKUP'

    def __str__(self):
        return self.value


class NotificationType(enum.Enum):
    ORDER_PLACED = 'ORDER_PLACED'
    ORDER_CONFIRMED = 'ORDER_CONFIRMED'
    ORDER_PREPARING = 'ORDER_PREPARING'
    ORDER_READY = 'ORDER_READY'
    ORDER_OUT_FOR_DELIVERY = 'ORDER_OUT_FOR_DELIVERY'
    ORDER_DELIVERED = 'ORDER_DELIVERED'
    ORDER_COMPLETED = 'ORDER_COMPLETED'
    ORDER_CANCELLED = 'ORDER_CANCELLED'
    PAYMENT_RECEIVED = 'PAYMENT_RECEIVED'
    PAYMENT_FAILED = 'PAYMENT_FAILED'
    LOW_STOCK_ALERT = 'LOW_STOCK_ALERT'
    REVIEW_RECEIVED = 'REVIEW_RECEIVED'
    CUSTOM_MESSAGE = 'CUSTOM_MESSAGE'
    SYSTEM = 'SYSTEM'

    def __str__(self):
        return self.value


class NotificationPriority(enum.Enum):
    LOW = 'LOW'
    NORMAL = 'NORMAL'
    HIGH = 'HIGH'
    URGENT = 'URGENT'

    def __str__(self):
        return self.value


class InventoryChangeType(enum.Enum):
    """Kind of stock movement recorded in the inventory log.

    Values:
        RESERVE: Stock taken by an order
        RELEASE: Stock returned by a cancelled order
        ADJUST: Manual increment or decrement
        SET: Manual absolute count
    """
    RESERVE = 'RESERVE'
    RELEASE = 'RELEASE'
    ADJUST = 'ADJUST'
    SET = 'SET'

    def __str__(self):
        return self.value


class CheckoutStatus(enum.Enum):
    PENDING = 'PENDING'
    COMPLETED = 'COMPLETED'
    EXPIRED = 'EXPIRED'

    def __str__(self):
        return self.value


class ModifierGroupType(enum.Enum):
    SINGLE_SELECT = 'SINGLE_SELECT'
    MULTI_SELECT = 'MULTI_SELECT'

    def __str__(self):
        return self.value


class ModifierPriceType(enum.Enum):
    """How a modifier's price adjustment applies to the line's unit price.

    Values:
        FIXED: Dollar amount added per unit
        PERCENTAGE: Percent of the product price (after any variant) per unit
    """
    FIXED = 'FIXED'
    PERCENTAGE = 'PERCENTAGE'

    def __str__(self):
        return self.value


class IngredientCategory(enum.Enum):
    FLOUR_GRAINS = 'FLOUR_GRAINS'
    DAIRY_EGGS = 'DAIRY_EGGS'
    SWEETENERS = 'SWEETENERS'
    FATS_OILS = 'FATS_OILS'
    LEAVENING = 'LEAVENING'
    CHOCOLATE_COCOA = 'CHOCOLATE_COCOA'
    NUTS_SEEDS = 'NUTS_SEEDS'
    FRUITS = 'FRUITS'
    VEGETABLES = 'VEGETABLES'
    MEAT_SEAFOOD = 'MEAT_SEAFOOD'
    SPICES_HERBS = 'SPICES_HERBS'
    FLAVORINGS_EXTRACTS = 'FLAVORINGS_EXTRACTS'
    BEVERAGES = 'BEVERAGES'
    PACKAGING = 'PACKAGING'
    SUPPLIES = 'SUPPLIES'
    OTHER = 'OTHER'


class MeasurementUnit(enum.Enum):
    # Weight
    GRAMS = 'GRAMS'
    KG = 'KG'
    OUNCES = 'OUNCES'
    POUNDS = 'POUNDS'
    # Volume
    ML = 'ML'
    LITERS = 'LITERS'
    TSP = 'TSP'
    TBSP = 'TBSP'
    CUPS = 'CUPS'
    # Count
    PIECES = 'PIECES'
    SERVINGS = 'SERVINGS'
    BATCHES = 'BATCHES'
    DOZEN = 'DOZEN'


class Merchant(Base):
    __tablename__ = 'merchant'

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(64), unique=True)  # Supabase auth user id
    email = Column(String(255), nullable=False, unique=True)
    business_name = Column(String(120), nullable=False)
    slug = Column(String(60), nullable=False, unique=True)
    description = Column(Text)
    phone = Column(String(20))
    address = Column(Text)
    postal_code = Column(String(6))
    logo_url = Column(String(500))
    cuisine_types = Column(JSON, default=list)

    # Payment
    paynow_number = Column(String(20))
    paynow_uen = Column(String(20))

    # Fulfilment
    delivery_enabled = Column(Boolean, default=True)
    pickup_enabled = Column(Boolean, default=True)
    delivery_fee = Column(Numeric(10, 2), default=0)
    minimum_order = Column(Numeric(10, 2), default=0)
    preparation_time = Column(Integer, default=30)  # minutes
    operating_hours = Column(JSON)

    status = Column(Enum(MerchantStatus), nullable=False, default=MerchantStatus.ACTIVE)
    deleted_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    products = relationship("Product", back_populates="merchant")
    categories = relationship("Category", back_populates="merchant")
    orders = relationship("Order", back_populates="merchant")

    @property
    def is_active(self):
        return self.status == MerchantStatus.ACTIVE and self.deleted_at is None

    def to_public_dict(self):
        """Storefront view without private contact details."""
        return {
            'id': self.id,
            'business_name': self.business_name,
            'slug': self.slug,
            'description': self.description,
            'logo_url': self.logo_url,
            'cuisine_types': self.cuisine_types or [],
            'delivery_enabled': self.delivery_enabled,
            'pickup_enabled': self.pickup_enabled,
            'delivery_fee': _money(self.delivery_fee),
            'minimum_order': _money(self.minimum_order),
            'preparation_time': self.preparation_time,
            'operating_hours': self.operating_hours,
            'accepts_paynow': bool(self.paynow_number or self.paynow_uen),
        }

    def to_dict(self):
        data = self.to_public_dict()
        data.update({
            'user_id': self.user_id,
            'email': self.email,
            'phone': self.phone,
            'address': self.address,
            'postal_code': self.postal_code,
            'paynow_number': self.paynow_number,
            'paynow_uen': self.paynow_uen,
            'status': _enum(self.status),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        })
        return data


class Customer(Base):
    __tablename__ = 'customer'

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(64), unique=True)
    email = Column(String(255), index=True)
    phone = Column(String(20), index=True)
    name = Column(String(120), nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    addresses = relationship("Address", back_populates="customer")
    orders = relationship("Order", back_populates="customer")

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'phone': self.phone,
            'name': self.name,
            'created_at': _iso(self.created_at),
        }


class Address(Base):
    __tablename__ = 'address'

    id = Column(String(36), primary_key=True, default=generate_id)
    customer_id = Column(String(36), ForeignKey('customer.id'), nullable=False)
    label = Column(String(50), default='Delivery')
    line1 = Column(String(255), nullable=False)
    line2 = Column(String(255))
    unit_number = Column(String(20))
    postal_code = Column(String(6), nullable=False)
    is_default = Column(Boolean, default=False)
    created_at = Column(DateTime, default=utcnow)

    customer = relationship("Customer", back_populates="addresses")

    def format(self):
        """Single-line address used on order exports."""
        parts = [self.line1]
        if self.unit_number:
            parts.append(f"#{self.unit_number}")
        if self.line2:
            parts.append(self.line2)
        parts.append(f"Singapore {self.postal_code}")
        return ', '.join(parts)

    def to_dict(self):
        return {
            'id': self.id,
            'label': self.label,
            'line1': self.line1,
            'line2': self.line2,
            'unit_number': self.unit_number,
            'postal_code': self.postal_code,
            'is_default': self.is_default,
        }


class Category(Base):
    __tablename__ = 'category'

    id = Column(String(36), primary_key=True, default=generate_id)
    merchant_id = Column(String(36), ForeignKey('merchant.id'), nullable=False)
    name = Column(String(100), nullable=False)
    slug = Column(String(60), nullable=False)
    sort_order = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)

    merchant = relationship("Merchant", back_populates="categories")
    products = relationship("Product", back_populates="category")

    __table_args__ = (
        UniqueConstraint('merchant_id', 'slug', name='uq_category_merchant_slug'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'merchant_id': self.merchant_id,
            'name': self.name,
            'slug': self.slug,
            'sort_order': self.sort_order,
            'is_active': self.is_active,
        }


class Product(Base):
    __tablename__ = 'product'

    id = Column(String(36), primary_key=True, default=generate_id)
    merchant_id = Column(String(36), ForeignKey('merchant.id'), nullable=False)
    category_id = Column(String(36), ForeignKey('category.id'))
    name = Column(String(150), nullable=False)
    description = Column(Text)
    image_url = Column(String(500))
    price = Column(Numeric(10, 2), nullable=False)
    compare_at_price = Column(Numeric(10, 2))
    status = Column(Enum(ProductStatus), nullable=False, default=ProductStatus.ACTIVE)
    featured = Column(Boolean, default=False)
    preparation_time = Column(Integer)  # minutes

    # Inventory
    track_quantity = Column(Boolean, default=False)
    quantity = Column(Integer, default=0)
    low_stock_threshold = Column(Integer, default=5)
    allow_backorder = Column(Boolean, default=False)

    view_count = Column(Integer, default=0)
    deleted_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    merchant = relationship("Merchant", back_populates="products")
    category = relationship("Category", back_populates="products")
    variants = relationship("ProductVariant", back_populates="product")
    modifier_groups = relationship("ProductModifierGroup", back_populates="product", cascade="all, delete-orphan",
                                   order_by="ProductModifierGroup.sort_order")
    recipe = relationship("RecipeIngredient", back_populates="product", cascade="all, delete-orphan")

    __table_args__ = (
        Index('ix_product_merchant_status', 'merchant_id', 'status'),
    )

    @property
    def is_active(self):
        return self.status == ProductStatus.ACTIVE and self.deleted_at is None

    def to_dict(self, include_variants=True):
        data = {
            'id': self.id,
            'merchant_id': self.merchant_id,
            'category_id': self.category_id,
            'name': self.name,
            'description': self.description,
            'image_url': self.image_url,
            'price': _money(self.price),
            'compare_at_price': _money(self.compare_at_price),
            'status': _enum(self.status),
            'featured': self.featured,
            'preparation_time': self.preparation_time,
            'track_quantity': self.track_quantity,
            'quantity': self.quantity,
            'low_stock_threshold': self.low_stock_threshold,
            'allow_backorder': self.allow_backorder,
            'view_count': self.view_count,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }
        if include_variants:
            data['variants'] = [v.to_dict() for v in self.variants]
        return data


class ProductVariant(Base):
    __tablename__ = 'product_variant'

    id = Column(String(36), primary_key=True, default=generate_id)
    product_id = Column(String(36), ForeignKey('product.id'), nullable=False)
    name = Column(String(100), nullable=False)
    sku = Column(String(64))
    price_adjustment = Column(Numeric(10, 2), default=0)
    quantity = Column(Integer, default=0)
    is_default = Column(Boolean, default=False)
    created_at = Column(DateTime, default=utcnow)

    product = relationship("Product", back_populates="variants")

    def to_dict(self):
        return {
            'id': self.id,
            'product_id': self.product_id,
            'name': self.name,
            'sku': self.sku,
            'price_adjustment': _money(self.price_adjustment),
            'quantity': self.quantity,
            'is_default': self.is_default,
        }


class ProductModifierGroup(Base):
    __tablename__ = 'product_modifier_group'

    id = Column(String(36), primary_key=True, default=generate_id)
    product_id = Column(String(36), ForeignKey('product.id'), nullable=False)
    merchant_id = Column(String(36), ForeignKey('merchant.id'), nullable=False)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    type = Column(Enum(ModifierGroupType), nullable=False, default=ModifierGroupType.SINGLE_SELECT)
    required = Column(Boolean, default=False)
    min_select = Column(Integer)
    max_select = Column(Integer)
    sort_order = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    product = relationship("Product", back_populates="modifier_groups")
    modifiers = relationship("ProductModifier", back_populates="group", cascade="all, delete-orphan",
                             order_by="ProductModifier.sort_order")

    def to_dict(self):
        return {
            'id': self.id,
            'product_id': self.product_id,
            'name': self.name,
            'description': self.description,
            'type': _enum(self.type),
            'required': self.required,
            'min_select': self.min_select,
            'max_select': self.max_select,
            'sort_order': self.sort_order,
            'is_active': self.is_active,
            'modifiers': [m.to_dict() for m in self.modifiers],
        }


class ProductModifier(Base):
    __tablename__ = 'product_modifier'

    id = Column(String(36), primary_key=True, default=generate_id)
    group_id = Column(String(36), ForeignKey('product_modifier_group.id'), nullable=False)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    price_adjustment = Column(Numeric(10, 2), default=0)
    price_type = Column(Enum(ModifierPriceType), nullable=False, default=ModifierPriceType.FIXED)
    is_default = Column(Boolean, default=False)
    is_available = Column(Boolean, default=True)
    sort_order = Column(Integer, default=0)
    image_url = Column(String(500))

    # Own stock, independent of the product's
    track_inventory = Column(Boolean, default=False)
    inventory = Column(Integer, default=0)
    max_per_order = Column(Integer)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    group = relationship("ProductModifierGroup", back_populates="modifiers")

    def to_dict(self):
        return {
            'id': self.id,
            'group_id': self.group_id,
            'name': self.name,
            'description': self.description,
            'price_adjustment': _money(self.price_adjustment),
            'price_type': _enum(self.price_type),
            'is_default': self.is_default,
            'is_available': self.is_available,
            'sort_order': self.sort_order,
            'image_url': self.image_url,
            'track_inventory': self.track_inventory,
            'inventory': self.inventory,
            'max_per_order': self.max_per_order,
        }


class Order(Base):
    __tablename__ = 'orders'

    id = Column(String(36), primary_key=True, default=generate_id)
    order_number = Column(String(32), nullable=False, unique=True)
    merchant_id = Column(String(36), ForeignKey('merchant.id'), nullable=False)
    customer_id = Column(String(36), ForeignKey('customer.id'))
    status = Column(Enum(OrderStatus), nullable=False, default=OrderStatus.PENDING)

    # Fulfilment
    delivery_method = Column(Enum(DeliveryMethod), nullable=False, default=DeliveryMethod.PICKUP)
    delivery_address_id = Column(String(36), ForeignKey('address.id'))
    delivery_address = Column(Text)  # formatted snapshot
    delivery_notes = Column(Text)

    # Money
    subtotal = Column(Numeric(10, 2), nullable=False, default=0)
    delivery_fee = Column(Numeric(10, 2), nullable=False, default=0)
    discount = Column(Numeric(10, 2), nullable=False, default=0)
    total = Column(Numeric(10, 2), nullable=False, default=0)

    # Payment
    payment_method = Column(Enum(PaymentMethod), default=PaymentMethod.PAYNOW)
    payment_status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING)
    payment_reference = Column(String(32))
    payment_proof_url = Column(String(500))

    # Customer snapshot
    customer_name = Column(String(120))
    customer_phone = Column(String(20))
    customer_email = Column(String(255))

    notes = Column(Text)
    cancellation_reason = Column(Text)
    stock_released = Column(Boolean, default=False)

    # Status timestamps
    confirmed_at = Column(DateTime)
    prepared_at = Column(DateTime)
    ready_at = Column(DateTime)
    delivered_at = Column(DateTime)
    completed_at = Column(DateTime)
    cancelled_at = Column(DateTime)

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, index=True)

    merchant = relationship("Merchant", back_populates="orders")
    customer = relationship("Customer", back_populates="orders")
    address = relationship("Address")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    events = relationship("OrderEvent", back_populates="order", cascade="all, delete-orphan",
                          order_by="OrderEvent.created_at")
    payment = relationship("Payment", back_populates="order", uselist=False)

    __table_args__ = (
        Index('ix_orders_merchant_status', 'merchant_id', 'status'),
    )

    @property
    def is_pickup(self):
        return self.delivery_method == DeliveryMethod.PICKUP

    def to_summary_dict(self):
        """Compact view used by list screens and the live stream."""
        return {
            'id': self.id,
            'order_number': self.order_number,
            'status': _enum(self.status),
            'delivery_method': _enum(self.delivery_method),
            'customer_name': self.customer_name,
            'customer_phone': self.customer_phone,
            'total': _money(self.total),
            'payment_status': _enum(self.payment_status),
            'item_count': sum(item.quantity for item in self.items),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }

    def to_dict(self, include_items=True, include_events=False):
        data = self.to_summary_dict()
        data.update({
            'merchant_id': self.merchant_id,
            'customer_id': self.customer_id,
            'customer_email': self.customer_email,
            'delivery_address': self.delivery_address,
            'delivery_notes': self.delivery_notes,
            'subtotal': _money(self.subtotal),
            'delivery_fee': _money(self.delivery_fee),
            'discount': _money(self.discount),
            'payment_method': _enum(self.payment_method),
            'payment_reference': self.payment_reference,
            'payment_proof_url': self.payment_proof_url,
            'notes': self.notes,
            'cancellation_reason': self.cancellation_reason,
            'confirmed_at': _iso(self.confirmed_at),
            'prepared_at': _iso(self.prepared_at),
            'ready_at': _iso(self.ready_at),
            'delivered_at': _iso(self.delivered_at),
            'completed_at': _iso(self.completed_at),
            'cancelled_at': _iso(self.cancelled_at),
        })
        if include_items:
            data['items'] = [item.to_dict() for item in self.items]
        if include_events:
            data['events'] = [event.to_dict() for event in self.events]
            data['payment'] = self.payment.to_dict() if self.payment else None
        return data


class OrderItem(Base):
    __tablename__ = 'order_item'

    id = Column(String(36), primary_key=True, default=generate_id)
    order_id = Column(String(36), ForeignKey('orders.id'), nullable=False)
    product_id = Column(String(36), ForeignKey('product.id'), nullable=False)
    variant_id = Column(String(36), ForeignKey('product_variant.id'))
    product_name = Column(String(150), nullable=False)
    variant_name = Column(String(100))
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)  # unit price at checkout
    total = Column(Numeric(10, 2), nullable=False)
    notes = Column(Text)
    modifiers = Column(JSON)  # selected modifiers at checkout

    order = relationship("Order", back_populates="items")
    product = relationship("Product")
    variant = relationship("ProductVariant")

    def to_dict(self):
        return {
            'id': self.id,
            'product_id': self.product_id,
            'variant_id': self.variant_id,
            'product_name': self.product_name,
            'variant_name': self.variant_name,
            'quantity': self.quantity,
            'price': _money(self.price),
            'total': _money(self.total),
            'notes': self.notes,
            'modifiers': self.modifiers or [],
        }


class OrderEvent(Base):
    __tablename__ = 'order_event'

    id = Column(String(36), primary_key=True, default=generate_id)
    order_id = Column(String(36), ForeignKey('orders.id'), nullable=False, index=True)
    event = Column(String(100), nullable=False)
    data = Column(JSON)
    created_by = Column(String(64))
    created_at = Column(DateTime, default=utcnow)

    order = relationship("Order", back_populates="events")

    def to_dict(self):
        return {
            'id': self.id,
            'event': self.event,
            'data': self.data,
            'created_by': self.created_by,
            'created_at': _iso(self.created_at),
        }


class Payment(Base):
    __tablename__ = 'payment'

    id = Column(String(36), primary_key=True, default=generate_id)
    order_id = Column(String(36), ForeignKey('orders.id'), nullable=False, unique=True)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), default='SGD')
    method = Column(Enum(PaymentMethod), nullable=False, default=PaymentMethod.PAYNOW)
    status = Column(Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    transaction_id = Column(String(100))
    proof_url = Column(String(500))
    failure_reason = Column(Text)
    processed_at = Column(DateTime)
    verified_at = Column(DateTime)
    verified_by = Column(String(64))
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    order = relationship("Order", back_populates="payment")

    def to_dict(self):
        return {
            'id': self.id,
            'order_id': self.order_id,
            'amount': _money(self.amount),
            'currency': self.currency,
            'method': _enum(self.method),
            'status': _enum(self.status),
            'transaction_id': self.transaction_id,
            'proof_url': self.proof_url,
            'failure_reason': self.failure_reason,
            'processed_at': _iso(self.processed_at),
            'verified_at': _iso(self.verified_at),
        }


class Notification(Base):
    __tablename__ = 'notification'

    id = Column(String(36), primary_key=True, default=generate_id)
    merchant_id = Column(String(36), ForeignKey('merchant.id'), index=True)
    customer_id = Column(String(36), ForeignKey('customer.id'), index=True)
    type = Column(Enum(NotificationType), nullable=False)
    priority = Column(Enum(NotificationPriority), default=NotificationPriority.NORMAL)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON)
    is_read = Column(Boolean, default=False)
    read_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'merchant_id': self.merchant_id,
            'customer_id': self.customer_id,
            'type': _enum(self.type),
            'priority': _enum(self.priority),
            'title': self.title,
            'message': self.message,
            'data': self.data,
            'is_read': self.is_read,
            'read_at': _iso(self.read_at),
            'created_at': _iso(self.created_at),
        }


class InventoryLog(Base):
    __tablename__ = 'inventory_log'

    id = Column(String(36), primary_key=True, default=generate_id)
    merchant_id = Column(String(36), ForeignKey('merchant.id'), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey('product.id'), nullable=False, index=True)
    variant_id = Column(String(36), ForeignKey('product_variant.id'))
    change_type = Column(Enum(InventoryChangeType), nullable=False)
    quantity_change = Column(Integer, nullable=False)
    quantity_before = Column(Integer, nullable=False)
    quantity_after = Column(Integer, nullable=False)
    order_id = Column(String(36), ForeignKey('orders.id'))
    reason = Column(String(255))
    created_at = Column(DateTime, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'product_id': self.product_id,
            'variant_id': self.variant_id,
            'change_type': _enum(self.change_type),
            'quantity_change': self.quantity_change,
            'quantity_before': self.quantity_before,
            'quantity_after': self.quantity_after,
            'order_id': self.order_id,
            'reason': self.reason,
            'created_at': _iso(self.created_at),
        }


class AnalyticsEvent(Base):
    __tablename__ = 'analytics_event'

    id = Column(String(36), primary_key=True, default=generate_id)
    merchant_id = Column(String(36), ForeignKey('merchant.id'), index=True)
    event = Column(String(100), nullable=False)
    data = Column(JSON)
    session_id = Column(String(64))
    created_at = Column(DateTime, default=utcnow, index=True)


class ProductView(Base):
    __tablename__ = 'product_view'

    id = Column(String(36), primary_key=True, default=generate_id)
    product_id = Column(String(36), ForeignKey('product.id'), nullable=False, index=True)
    merchant_id = Column(String(36), ForeignKey('merchant.id'), nullable=False)
    customer_id = Column(String(36), ForeignKey('customer.id'))
    session_id = Column(String(64))
    created_at = Column(DateTime, default=utcnow)


class CheckoutSession(Base):
    __tablename__ = 'checkout_session'

    id = Column(String(36), primary_key=True, default=generate_id)
    merchant_id = Column(String(36), ForeignKey('merchant.id'), nullable=False)
    items = Column(JSON, nullable=False)  # price-locked line items
    subtotal = Column(Numeric(10, 2), nullable=False)
    status = Column(Enum(CheckoutStatus), nullable=False, default=CheckoutStatus.PENDING)
    payment_reference = Column(String(32), nullable=False)
    order_id = Column(String(36), ForeignKey('orders.id'))
    expires_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)

    merchant = relationship("Merchant")

    def is_expired(self, now=None):
        return (now or utcnow()) >= self.expires_at


class Ingredient(Base):
    __tablename__ = 'ingredient'

    id = Column(String(36), primary_key=True, default=generate_id)
    merchant_id = Column(String(36), ForeignKey('merchant.id'), nullable=False, index=True)
    name = Column(String(120), nullable=False)
    description = Column(Text)
    category = Column(Enum(IngredientCategory), nullable=False, default=IngredientCategory.OTHER)
    purchase_unit = Column(Enum(MeasurementUnit), nullable=False, default=MeasurementUnit.GRAMS)
    price_per_unit = Column(Numeric(12, 4), nullable=False, default=0)
    current_stock = Column(Numeric(12, 3), default=0)
    reorder_point = Column(Numeric(12, 3))
    preferred_store = Column(String(120))
    allergens = Column(JSON, default=list)
    deleted_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'category': _enum(self.category),
            'purchase_unit': _enum(self.purchase_unit),
            'price_per_unit': float(self.price_per_unit) if self.price_per_unit is not None else None,
            'current_stock': float(self.current_stock) if self.current_stock is not None else None,
            'reorder_point': float(self.reorder_point) if self.reorder_point is not None else None,
            'preferred_store': self.preferred_store,
            'allergens': self.allergens or [],
        }


class RecipeIngredient(Base):
    __tablename__ = 'recipe_ingredient'

    id = Column(String(36), primary_key=True, default=generate_id)
    product_id = Column(String(36), ForeignKey('product.id'), nullable=False)
    ingredient_id = Column(String(36), ForeignKey('ingredient.id'), nullable=False)
    quantity = Column(Numeric(12, 3), nullable=False)
    notes = Column(String(255))

    product = relationship("Product", back_populates="recipe")
    ingredient = relationship("Ingredient")

    __table_args__ = (
        UniqueConstraint('product_id', 'ingredient_id', name='uq_recipe_product_ingredient'),
    )

    def to_dict(self):
        return {
            'ingredient_id': self.ingredient_id,
            'ingredient_name': self.ingredient.name if self.ingredient else None,
            'quantity': float(self.quantity),
            'unit': _enum(self.ingredient.purchase_unit) if self.ingredient else None,
            'notes': self.notes,
        }
