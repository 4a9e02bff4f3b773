# homejiak/services/product_service.py
import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from homejiak.models import (
    Merchant, MerchantStatus, Product, ProductVariant, ProductStatus, Category,
    ProductView, AnalyticsEvent
)
from homejiak.exceptions import NotFoundError, ValidationError
from homejiak.services.modifier_service import ModifierService
from homejiak.utils.date_utils import utcnow
from homejiak.utils.pagination import paginate
from homejiak.utils.slug import slugify
from homejiak.utils.validation import money

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = (
    'name', 'description', 'image_url', 'price', 'compare_at_price', 'status', 'featured',
    'preparation_time', 'track_quantity', 'quantity', 'low_stock_threshold', 'allow_backorder',
    'category_id',
)
MONEY_FIELDS = ('price', 'compare_at_price')
SORT_FIELDS = {
    'created_at': Product.created_at,
    'updated_at': Product.updated_at,
    'name': Product.name,
    'price': Product.price,
    'quantity': Product.quantity,
}
PUBLIC_SORTS = {
    'newest': Product.created_at.desc(),
    'price_asc': Product.price.asc(),
    'price_desc': Product.price.desc(),
    'name': Product.name.asc(),
    'popular': Product.view_count.desc(),
    'featured': Product.featured.desc(),
}
BULK_ACTIONS = ('activate', 'deactivate', 'delete')


class ProductService:
    """Service for the merchant product catalogue and the public storefront."""

    def __init__(self, session: Session):
        """Initialize the product service.

        Args:
            session: Database session
        """
        self.session = session

    def _owned_product(self, merchant_id: str, product_id: str) -> Product:
        product = self.session.query(Product).filter(
            Product.id == product_id,
            Product.merchant_id == merchant_id,
            Product.deleted_at.is_(None),
        ).first()
        if product is None:
            raise NotFoundError("Product not found")
        return product

    def _check_category(self, merchant_id: str, category_id: Optional[str]):
        if category_id is None:
            return
        exists = self.session.query(Category.id).filter(
            Category.id == category_id, Category.merchant_id == merchant_id
        ).first()
        if exists is None:
            raise ValidationError("Category not found", details={'category_id': category_id})

    def _apply_fields(self, product: Product, merchant_id: str, data: Dict):
        errors = {}
        for field in PRODUCT_FIELDS:
            if field not in data:
                continue
            value = data[field]

            if field == 'name':
                if not value or len(value.strip()) > 200:
                    errors['name'] = 'Name must be 1-200 characters'
                    continue
                value = value.strip()
            elif field in MONEY_FIELDS and value is not None:
                if money(value) < 0:
                    errors[field] = 'Must not be negative'
                    continue
                value = money(value)
            elif field in ('quantity', 'low_stock_threshold') and value is not None:
                if not isinstance(value, int) or value < 0:
                    errors[field] = 'Must be a non-negative integer'
                    continue
            elif field == 'status' and value is not None:
                try:
                    value = ProductStatus(str(value).upper())
                except ValueError:
                    errors['status'] = f"Invalid product status: {value}"
                    continue
            elif field == 'category_id':
                self._check_category(merchant_id, value)

            setattr(product, field, value)

        if errors:
            raise ValidationError("Invalid product data", details=errors)

    def create_product(self, merchant_id: str, data: Dict) -> Product:
        """Create a product.

        Args:
            merchant_id: Owning merchant
            data: Product fields; ``name`` and ``price`` are required and
                ``status`` defaults to DRAFT

        Returns:
            Created product
        """
        if not data.get('name') or data.get('price') is None:
            raise ValidationError("Name and price are required")

        product = Product(merchant_id=merchant_id, status=ProductStatus.DRAFT, quantity=0)
        self._apply_fields(product, merchant_id, data)

        try:
            self.session.add(product)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Created product {product.id} ({product.name}) for merchant {merchant_id}")
        return product

    def update_product(self, merchant_id: str, product_id: str, data: Dict) -> Product:
        product = self._owned_product(merchant_id, product_id)
        self._apply_fields(product, merchant_id, data)
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Updated product {product_id}: {', '.join(sorted(data))}")
        return product

    def delete_product(self, merchant_id: str, product_id: str) -> bool:
        """Soft-delete a product and mark it DISCONTINUED."""
        product = self._owned_product(merchant_id, product_id)
        product.status = ProductStatus.DISCONTINUED
        product.deleted_at = utcnow()
        self.session.commit()

        logger.info(f"Deleted product {product_id}")
        return True

    def bulk_update(self, merchant_id: str, product_ids: Iterable[str], action: str) -> int:
        """Activate, deactivate (back to DRAFT) or delete several products.

        Returns:
            Number of products changed
        """
        if action not in BULK_ACTIONS:
            raise ValidationError(f"Invalid bulk action: {action}")
        ids = list(product_ids)
        if not ids:
            raise ValidationError("No products selected")

        products = self.session.query(Product).filter(
            Product.id.in_(ids),
            Product.merchant_id == merchant_id,
            Product.deleted_at.is_(None),
        ).all()

        now = utcnow()
        for product in products:
            if action == 'delete':
                product.status = ProductStatus.DISCONTINUED
                product.deleted_at = now
            else:
                product.status = ProductStatus.ACTIVE if action == 'activate' else ProductStatus.DRAFT
        self.session.commit()

        logger.info(f"Bulk {action} on {len(products)} product(s) for merchant {merchant_id}")
        return len(products)

    def get_product(self, merchant_id: str, product_id: str) -> Product:
        return self._owned_product(merchant_id, product_id)

    def list_products(self, merchant_id: str, status: Optional[str] = None,
                      category_id: Optional[str] = None, search: Optional[str] = None,
                      page: int = 1, limit: int = 20, sort_by: str = 'created_at',
                      sort_order: str = 'desc') -> Dict:
        """Merchant product list with filters and pagination."""
        query = self.session.query(Product).filter(
            Product.merchant_id == merchant_id,
            Product.deleted_at.is_(None),
        )
        if status:
            query = query.filter(Product.status == ProductStatus(str(status).upper()))
        if category_id:
            query = query.filter(Product.category_id == category_id)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))

        return paginate(query, page, limit, sort_by, sort_order, SORT_FIELDS,
                        serializer=lambda p: p.to_dict(include_variants=False))

    # Variants

    def add_variant(self, merchant_id: str, product_id: str, name: str, price_adjustment=0,
                    quantity: int = 0, sku: Optional[str] = None, is_default: bool = False) -> ProductVariant:
        product = self._owned_product(merchant_id, product_id)
        if not name or not name.strip():
            raise ValidationError("Variant name is required")
        if not isinstance(quantity, int) or quantity < 0:
            raise ValidationError("Variant quantity must be a non-negative integer")

        if is_default:
            self._clear_default(product.id)

        variant = ProductVariant(
            product_id=product.id,
            name=name.strip(),
            sku=sku,
            price_adjustment=money(price_adjustment),
            quantity=quantity,
            is_default=is_default,
        )
        self.session.add(variant)
        self.session.commit()

        return variant

    def update_variant(self, merchant_id: str, variant_id: str, **fields) -> ProductVariant:
        variant = self.session.query(ProductVariant).join(Product).filter(
            ProductVariant.id == variant_id,
            Product.merchant_id == merchant_id,
        ).first()
        if variant is None:
            raise NotFoundError("Variant not found")

        if 'name' in fields:
            if not fields['name']:
                raise ValidationError("Variant name is required")
            variant.name = fields['name']
        if 'price_adjustment' in fields:
            variant.price_adjustment = money(fields['price_adjustment'])
        if 'quantity' in fields:
            quantity = fields['quantity']
            if not isinstance(quantity, int) or quantity < 0:
                raise ValidationError("Variant quantity must be a non-negative integer")
            variant.quantity = quantity
        if 'sku' in fields:
            variant.sku = fields['sku']
        if fields.get('is_default'):
            self._clear_default(variant.product_id)
            variant.is_default = True

        self.session.commit()
        return variant

    def _clear_default(self, product_id: str):
        self.session.query(ProductVariant).filter(
            ProductVariant.product_id == product_id,
            ProductVariant.is_default.is_(True),
        ).update({ProductVariant.is_default: False}, synchronize_session='fetch')

    # Categories

    def create_category(self, merchant_id: str, name: str, sort_order: int = 0) -> Category:
        """Create a category, or return the merchant's existing one with the same slug."""
        if not name or not name.strip() or len(name.strip()) > 50:
            raise ValidationError("Category name must be 1-50 characters")

        slug = slugify(name)
        existing = self.session.query(Category).filter(
            Category.merchant_id == merchant_id, Category.slug == slug
        ).first()
        if existing is not None:
            return existing

        category = Category(merchant_id=merchant_id, name=name.strip(), slug=slug, sort_order=sort_order)
        self.session.add(category)
        self.session.commit()

        logger.info(f"Created category {category.slug} for merchant {merchant_id}")
        return category

    def list_categories(self, merchant_id: str, active_only: bool = True) -> List[Category]:
        query = self.session.query(Category).filter(Category.merchant_id == merchant_id)
        if active_only:
            query = query.filter(Category.is_active.is_(True))
        return query.order_by(Category.sort_order.asc(), Category.name.asc()).all()

    # Public storefront

    def _public_merchant(self, merchant_slug: str) -> Merchant:
        merchant = self.session.query(Merchant).filter(
            Merchant.slug == merchant_slug,
            Merchant.status == MerchantStatus.ACTIVE,
            Merchant.deleted_at.is_(None),
        ).first()
        if merchant is None:
            raise NotFoundError("Merchant not found")
        return merchant

    def list_public_products(self, merchant_slug: str, category_id: Optional[str] = None,
                             search: Optional[str] = None, min_price=None, max_price=None,
                             sort: str = 'newest', page: int = 1, limit: int = 20) -> Dict:
        """Browse a merchant's live products.

        Args:
            merchant_slug: Storefront slug
            category_id: Filter by category
            search: Case-insensitive match on name or description
            min_price: Lower price bound
            max_price: Upper price bound
            sort: One of newest, price_asc, price_desc, name, popular, featured
            page: Page number
            limit: Page size

        Returns:
            Paginated product dictionaries
        """
        if sort not in PUBLIC_SORTS:
            raise ValidationError(f"Invalid sort: {sort}")

        merchant = self._public_merchant(merchant_slug)
        query = self.session.query(Product).filter(
            Product.merchant_id == merchant.id,
            Product.status == ProductStatus.ACTIVE,
            Product.deleted_at.is_(None),
        ).options(selectinload(Product.variants))

        if category_id:
            query = query.filter(Product.category_id == category_id)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))
        if min_price is not None:
            query = query.filter(Product.price >= money(min_price))
        if max_price is not None:
            query = query.filter(Product.price <= money(max_price))

        query = query.order_by(PUBLIC_SORTS[sort], Product.id.asc())
        return paginate(query, page, limit, serializer=lambda p: p.to_dict())

    def get_public_product(self, merchant_slug: str, product_id: str,
                           customer_id: Optional[str] = None, session_id: Optional[str] = None) -> Dict:
        """Fetch a live product and record the view."""
        merchant = self._public_merchant(merchant_slug)
        product = self.session.query(Product).filter(
            Product.id == product_id,
            Product.merchant_id == merchant.id,
            Product.status == ProductStatus.ACTIVE,
            Product.deleted_at.is_(None),
        ).first()
        if product is None:
            raise NotFoundError("Product not found")

        product.view_count = (product.view_count or 0) + 1
        self.session.add(ProductView(
            product_id=product.id,
            merchant_id=merchant.id,
            customer_id=customer_id,
            session_id=session_id,
        ))
        self.session.add(AnalyticsEvent(
            merchant_id=merchant.id,
            event='product_view',
            data={'productId': product.id, 'productName': product.name, 'price': float(product.price)},
            session_id=session_id,
        ))
        self.session.commit()

        data = product.to_dict()
        data['category'] = product.category.to_dict() if product.category else None
        data['variants'] = sorted(data['variants'], key=lambda v: not v['is_default'])
        data['modifier_groups'] = ModifierService(self.session).get_public_groups(product)
        return data
