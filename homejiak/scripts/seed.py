# homejiak/scripts/seed.py

"""
Demo data: one home-kitchen merchant with a small menu, so a fresh database
has a storefront to browse and check out from.
"""

from homejiak.db import session_scope
from homejiak.logging_setup import get_logger
from homejiak.models import Merchant
from homejiak.services.merchant_service import MerchantService
from homejiak.services.product_service import ProductService
from homejiak.utils.validation import DAYS_OF_WEEK

logger = get_logger('seed')

DEMO_USER_ID = 'demo-merchant-user'
DEMO_EMAIL = 'auntie.mei@example.com'

DEMO_MENU = {
    'Mains': [
        {'name': 'Hainanese Chicken Rice', 'price': '6.50', 'featured': True},
        {'name': 'Nasi Lemak with Ayam Goreng', 'price': '7.80'},
        {'name': 'Mee Siam', 'price': '5.50'},
    ],
    'Kueh': [
        {'name': 'Kueh Salat (box of 6)', 'price': '12.00', 'track_quantity': True, 'quantity': 20},
        {'name': 'Ondeh Ondeh (box of 10)', 'price': '8.00', 'track_quantity': True, 'quantity': 15},
    ],
    'Drinks': [
        {'name': 'Homemade Barley', 'price': '2.00'},
    ],
}


def demo_operating_hours():
    hours = {day: {'isOpen': True, 'slots': [{'open': '10:00', 'close': '20:00'}]} for day in DAYS_OF_WEEK}
    hours['monday'] = {'isOpen': False, 'slots': []}
    return hours


def seed_demo_data():
    """Create the demo merchant and menu unless they already exist.

    Returns:
        Slug of the demo merchant
    """
    with session_scope() as session:
        existing = session.query(Merchant).filter(Merchant.user_id == DEMO_USER_ID).first()
        if existing is not None:
            logger.info(f"Demo merchant already present: {existing.slug}")
            return existing.slug

        merchants = MerchantService(session)
        products = ProductService(session)

        merchant = merchants.register_merchant(DEMO_USER_ID, DEMO_EMAIL, "Auntie Mei's Kitchen", phone='91234567')
        merchants.update_settings(
            merchant.id,
            description='Nyonya favourites cooked fresh in Tampines.',
            postal_code='520123',
            cuisine_types=['Peranakan', 'Local'],
            paynow_number='91234567',
            delivery_fee='4.00',
            minimum_order='15.00',
            preparation_time=45,
            operating_hours=demo_operating_hours(),
        )

        for sort_order, (category_name, items) in enumerate(DEMO_MENU.items()):
            category = products.create_category(merchant.id, category_name, sort_order=sort_order)
            for item in items:
                products.create_product(merchant.id, dict(item, category_id=category.id, status='ACTIVE'))

        logger.info(f"Seeded demo merchant {merchant.slug}")
        return merchant.slug
