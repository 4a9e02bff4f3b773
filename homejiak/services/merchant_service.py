# homejiak/services/merchant_service.py
import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from homejiak.config import config
from homejiak.models import Merchant, MerchantStatus, Category, AnalyticsEvent
from homejiak.exceptions import ConflictError, NotFoundError, ValidationError
from homejiak.utils.cache import cache, CacheKeys
from homejiak.utils.date_utils import utcnow
from homejiak.utils.operating_hours import format_operating_hours, is_open, next_opening_time
from homejiak.utils.pagination import paginate, paginate_list
from homejiak.utils.paynow import is_valid_singapore_phone, is_valid_uen
from homejiak.utils.slug import ensure_unique_slug
from homejiak.utils.validation import (
    is_valid_phone, is_valid_postal_code, money, normalize_phone, validate_operating_hours, require
)

logger = logging.getLogger(__name__)

# Cached marker for slugs with no live merchant
NOT_FOUND = {'__not_found__': True}

SETTINGS_FIELDS = (
    'business_name', 'description', 'phone', 'address', 'postal_code', 'logo_url', 'cuisine_types',
    'paynow_number', 'paynow_uen', 'delivery_enabled', 'pickup_enabled', 'delivery_fee',
    'minimum_order', 'preparation_time', 'operating_hours',
)
MAX_DELIVERY_FEE = 50
MAX_MINIMUM_ORDER = 1000
PREPARATION_TIME_RANGE = (5, 180)


class MerchantService:
    """Service for merchant accounts, storefront lookup and administration."""

    def __init__(self, session: Session):
        """Initialize the merchant service.

        Args:
            session: Database session
        """
        self.session = session

    def _slug_taken(self, slug: str) -> bool:
        return self.session.query(Merchant.id).filter(Merchant.slug == slug).first() is not None

    def register_merchant(self, user_id: str, email: str, business_name: str,
                          phone: Optional[str] = None) -> Merchant:
        """Create a merchant account for an authenticated user.

        Args:
            user_id: Auth provider user id
            email: Login email
            business_name: Storefront name; the slug is derived from it
            phone: Singapore contact number

        Returns:
            Created merchant

        Raises:
            ValidationError on bad input
            ConflictError if the user or email already owns a merchant
        """
        errors = {}
        if not business_name or not 2 <= len(business_name.strip()) <= 100:
            errors['business_name'] = 'Business name must be 2-100 characters'
        if not email or '@' not in email:
            errors['email'] = 'A valid email is required'
        if phone and not is_valid_phone(phone):
            errors['phone'] = 'Invalid Singapore phone number'
        require(errors, "Invalid merchant registration")

        email = email.strip().lower()
        existing = self.session.query(Merchant).filter(
            or_(Merchant.user_id == user_id, Merchant.email == email)
        ).first()
        if existing is not None:
            raise ConflictError("A merchant account already exists for this user")

        merchant = Merchant(
            user_id=user_id,
            email=email,
            business_name=business_name.strip(),
            slug=ensure_unique_slug(business_name, self._slug_taken),
            phone=normalize_phone(phone) if phone else None,
            status=MerchantStatus.ACTIVE,
        )
        try:
            self.session.add(merchant)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Registered merchant {merchant.business_name} ({merchant.slug})")
        return merchant

    def get_merchant(self, merchant_id: str) -> Merchant:
        merchant = self.session.get(Merchant, merchant_id)
        if merchant is None or merchant.deleted_at is not None:
            raise NotFoundError("Merchant not found")
        return merchant

    def get_merchant_for_user(self, user_id: str) -> Optional[Merchant]:
        """The merchant owned by an auth user, or None."""
        return self.session.query(Merchant).filter(
            Merchant.user_id == user_id,
            Merchant.deleted_at.is_(None),
        ).first()

    def _storefront(self, merchant: Merchant) -> Dict:
        data = merchant.to_public_dict()
        data['categories'] = [
            c.to_dict() for c in self.session.query(Category)
            .filter(Category.merchant_id == merchant.id, Category.is_active.is_(True))
            .order_by(Category.sort_order.asc())
            .all()
        ]
        data['is_open'] = is_open(merchant.operating_hours)
        next_open = None if data['is_open'] else next_opening_time(merchant.operating_hours)
        data['next_open_time'] = next_open.isoformat() if next_open else None
        data['hours_display'] = format_operating_hours(merchant.operating_hours)
        return data

    def lookup_public_merchant(self, slug: str, referrer: Optional[str] = None,
                               user_agent: Optional[str] = None) -> Tuple[Optional[Dict], bool]:
        """Storefront data for a slug, served from the cache when possible.

        Misses are cached for a shorter time than hits. A storefront view is
        recorded on every lookup that finds a merchant.

        Args:
            slug: Merchant slug
            referrer: Request referrer for the view event
            user_agent: Request user agent for the view event

        Returns:
            Tuple of (storefront dictionary or None, served from cache)
        """
        key = CacheKeys.merchant(slug)
        cached = cache.get(key)
        if cached is not None:
            if cached is NOT_FOUND:
                return None, True
            self._track_storefront_view(cached['id'], referrer, user_agent)
            return cached, True

        merchant = self.session.query(Merchant).filter(
            Merchant.slug == slug,
            Merchant.status == MerchantStatus.ACTIVE,
            Merchant.deleted_at.is_(None),
        ).first()
        if merchant is None:
            cache.set(key, NOT_FOUND, config.get_float('CACHE', 'not_found_ttl_seconds', 60.0))
            return None, False

        data = self._storefront(merchant)
        cache.set(key, data, config.get_float('CACHE', 'merchant_ttl_seconds', 300.0))
        self._track_storefront_view(merchant.id, referrer, user_agent)
        return data, False

    def get_public_merchant(self, slug: str, **request_info) -> Dict:
        data, _ = self.lookup_public_merchant(slug, **request_info)
        if data is None:
            raise NotFoundError("Merchant not found")
        return data

    def _track_storefront_view(self, merchant_id: str, referrer: Optional[str], user_agent: Optional[str]):
        self.session.add(AnalyticsEvent(
            merchant_id=merchant_id,
            event='storefront_view',
            data={'referrer': referrer, 'userAgent': user_agent},
        ))
        self.session.commit()

    def search_merchants(self, query: Optional[str] = None, cuisine: Optional[str] = None,
                         delivery_only: bool = False, pickup_only: bool = False,
                         page: int = 1, limit: int = 20) -> Dict:
        """Browse active merchants, open ones first.

        Args:
            query: Case-insensitive match on business name or description
            cuisine: Cuisine type the merchant lists
            delivery_only: Only merchants offering delivery
            pickup_only: Only merchants offering pickup
            page: Page number
            limit: Page size

        Returns:
            Paginated storefront summaries with ``is_open``
        """
        q = self.session.query(Merchant).filter(
            Merchant.status == MerchantStatus.ACTIVE,
            Merchant.deleted_at.is_(None),
        )
        if query:
            pattern = f"%{query}%"
            q = q.filter(or_(Merchant.business_name.ilike(pattern), Merchant.description.ilike(pattern)))
        if delivery_only:
            q = q.filter(Merchant.delivery_enabled.is_(True))
        if pickup_only:
            q = q.filter(Merchant.pickup_enabled.is_(True))

        merchants = q.order_by(Merchant.business_name.asc()).all()
        if cuisine:
            wanted = cuisine.lower()
            merchants = [m for m in merchants if any(wanted in c.lower() for c in (m.cuisine_types or []))]

        results = []
        for merchant in merchants:
            data = merchant.to_public_dict()
            data['is_open'] = is_open(merchant.operating_hours)
            results.append(data)
        results.sort(key=lambda m: not m['is_open'])

        return paginate_list(results, page, limit)

    def _validate_settings(self, fields: Dict) -> Dict:
        errors = {}
        cleaned = {}

        for field, value in fields.items():
            if field not in SETTINGS_FIELDS:
                errors[field] = 'Unknown setting'
                continue

            if field == 'business_name':
                if not value or not 2 <= len(value.strip()) <= 100:
                    errors[field] = 'Business name must be 2-100 characters'
                    continue
                value = value.strip()
            elif field == 'description' and value and len(value) > 500:
                errors[field] = 'Description must be at most 500 characters'
                continue
            elif field == 'phone' and value:
                if not is_valid_phone(value):
                    errors[field] = 'Invalid Singapore phone number'
                    continue
                value = normalize_phone(value)
            elif field == 'postal_code' and value and not is_valid_postal_code(value):
                errors[field] = 'Postal code must be 6 digits'
                continue
            elif field == 'paynow_number' and value:
                value = normalize_phone(value)
                if value.startswith('+65'):
                    value = value[3:]
                if not is_valid_singapore_phone(value):
                    errors[field] = 'PayNow number must be an 8-digit mobile number starting with 8 or 9'
                    continue
            elif field == 'paynow_uen' and value:
                value = value.strip().upper()
                if not is_valid_uen(value):
                    errors[field] = 'Invalid UEN'
                    continue
            elif field == 'delivery_fee':
                value = money(value)
                if not 0 <= value <= MAX_DELIVERY_FEE:
                    errors[field] = f'Delivery fee must be between 0 and {MAX_DELIVERY_FEE}'
                    continue
            elif field == 'minimum_order':
                value = money(value)
                if not 0 <= value <= MAX_MINIMUM_ORDER:
                    errors[field] = f'Minimum order must be between 0 and {MAX_MINIMUM_ORDER}'
                    continue
            elif field == 'preparation_time':
                low, high = PREPARATION_TIME_RANGE
                if not isinstance(value, int) or not low <= value <= high:
                    errors[field] = f'Preparation time must be {low}-{high} minutes'
                    continue
            elif field == 'operating_hours' and value is not None:
                hour_errors = validate_operating_hours(value)
                if hour_errors:
                    errors.update({f"operating_hours.{day}": message for day, message in hour_errors.items()})
                    continue
            elif field == 'cuisine_types' and value is not None and not isinstance(value, list):
                errors[field] = 'Cuisine types must be a list'
                continue

            cleaned[field] = value

        require(errors, "Invalid merchant settings")
        return cleaned

    def update_settings(self, merchant_id: str, **fields) -> Merchant:
        """Update storefront and fulfilment settings.

        Args:
            merchant_id: Merchant ID
            **fields: Any of the settings fields

        Returns:
            Updated merchant
        """
        merchant = self.get_merchant(merchant_id)
        cleaned = self._validate_settings(fields)

        delivery = cleaned.get('delivery_enabled', merchant.delivery_enabled)
        pickup = cleaned.get('pickup_enabled', merchant.pickup_enabled)
        if not delivery and not pickup:
            raise ValidationError("At least one of delivery or pickup must be enabled")

        for field, value in cleaned.items():
            setattr(merchant, field, value)
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        cache.delete(CacheKeys.merchant(merchant.slug))
        logger.info(f"Updated settings for merchant {merchant_id}: {', '.join(sorted(cleaned))}")
        return merchant

    # Administration

    def list_pending_merchants(self) -> List[Merchant]:
        return self.session.query(Merchant).filter(
            Merchant.status == MerchantStatus.PENDING,
            Merchant.deleted_at.is_(None),
        ).order_by(Merchant.created_at.desc()).all()

    def list_all_merchants(self, status: Optional[str] = None, search: Optional[str] = None,
                           page: int = 1, limit: int = 20) -> Dict:
        query = self.session.query(Merchant).filter(Merchant.deleted_at.is_(None))
        if status:
            query = query.filter(Merchant.status == MerchantStatus(str(status).upper()))
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(Merchant.business_name.ilike(pattern), Merchant.email.ilike(pattern)))
        return paginate(query, page, limit, 'created_at', 'desc',
                        allowed_sort={'created_at': Merchant.created_at},
                        serializer=lambda m: m.to_dict())

    def approve_merchant(self, merchant_id: str) -> Merchant:
        """Activate a merchant awaiting approval."""
        merchant = self.get_merchant(merchant_id)
        if merchant.status != MerchantStatus.PENDING:
            raise ValidationError("Merchant is not pending approval")

        merchant.status = MerchantStatus.ACTIVE
        merchant.updated_at = utcnow()
        self.session.commit()
        cache.delete(CacheKeys.merchant(merchant.slug))

        logger.info(f"Approved merchant {merchant.business_name} ({merchant.email})")
        return merchant

    def suspend_merchant(self, merchant_id: str, reason: Optional[str] = None) -> Merchant:
        """Block a merchant; its storefront disappears immediately."""
        merchant = self.get_merchant(merchant_id)
        if merchant.status == MerchantStatus.SUSPENDED:
            raise ValidationError("Merchant is already suspended")

        merchant.status = MerchantStatus.SUSPENDED
        merchant.updated_at = utcnow()
        self.session.commit()

        cache.delete(CacheKeys.merchant(merchant.slug))
        logger.warning(f"Suspended merchant {merchant.business_name}: {reason or 'no reason given'}")
        return merchant
