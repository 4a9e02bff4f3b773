# homejiak/api/procedures.py

"""
RPC procedures, grouped by namespace.

Handlers take the call context and the validated input model and return
JSON-ready data. Access levels: ``public`` (anyone, the default), ``protected`` (signed
in), ``merchant`` (signed in and owning a merchant account) and ``admin``.
"""

from homejiak import schemas
from homejiak.api.rpc import ADMIN, MERCHANT, PROTECTED, registry
from homejiak.exceptions import NotFoundError
from homejiak.models import Customer
from homejiak.services.analytics_service import AnalyticsService
from homejiak.services.checkout_service import CheckoutService
from homejiak.services.ingredient_service import IngredientService, suggest_price
from homejiak.services.inventory_service import InventoryService
from homejiak.services.merchant_service import MerchantService
from homejiak.services.modifier_service import ModifierService
from homejiak.services.notification_service import NotificationService
from homejiak.services.order_service import OrderService, next_statuses
from homejiak.services.payment_service import PaymentService
from homejiak.services.product_service import ProductService

procedure = registry.procedure


def _fields(data, *exclude):
    """Input fields the caller actually sent."""
    return data.model_dump(exclude_unset=True, exclude=set(exclude))


# public.*

@procedure('public.getMerchant', schemas.MerchantSlugInput, rate_limit='public')
def get_public_merchant(ctx, data):
    return MerchantService(ctx.session).get_public_merchant(
        data.slug, referrer=ctx.referrer, user_agent=ctx.user_agent)


@procedure('public.searchMerchants', schemas.SearchMerchantsInput, rate_limit='public')
def search_merchants(ctx, data):
    return MerchantService(ctx.session).search_merchants(
        query=data.query, cuisine=data.cuisine, delivery_only=data.delivery_only,
        pickup_only=data.pickup_only, page=data.page, limit=data.limit)


@procedure('public.listProducts', schemas.PublicProductsInput, rate_limit='public')
def list_public_products(ctx, data):
    return ProductService(ctx.session).list_public_products(
        data.merchant_slug, category_id=data.category_id, search=data.search,
        min_price=data.min_price, max_price=data.max_price, sort=data.sort,
        page=data.page, limit=data.limit)


@procedure('public.getProduct', schemas.PublicProductInput, rate_limit='public')
def get_public_product(ctx, data):
    return ProductService(ctx.session).get_public_product(
        data.merchant_slug, data.product_id, session_id=data.session_id)


@procedure('public.trackOrder', schemas.TrackOrderInput, rate_limit='public')
def track_order(ctx, data):
    return OrderService(ctx.session).track_order(data.order_number, data.phone)


@procedure('public.trackEvent', schemas.TrackEventInput, mutation=True, rate_limit='public')
def track_event(ctx, data):
    AnalyticsService(ctx.session).track_event(data.merchant_id, data.event, data.data, data.session_id)
    return {'success': True}


# checkout.*

@procedure('checkout.createSession', schemas.CreateCheckoutInput, mutation=True, rate_limit='checkout')
def create_checkout_session(ctx, data):
    items = [item.model_dump() for item in data.items]
    return CheckoutService(ctx.session).create_session(data.merchant_id, items)


@procedure('checkout.getSession', schemas.CheckoutSessionInput)
def get_checkout_session(ctx, data):
    return CheckoutService(ctx.session).get_session(data.session_id)


@procedure('checkout.complete', schemas.CompleteCheckoutInput, mutation=True, rate_limit='checkout')
def complete_checkout(ctx, data):
    address = data.delivery_address.model_dump() if data.delivery_address else None
    return CheckoutService(ctx.session).complete(
        data.session_id,
        data.contact.model_dump(),
        delivery_method=data.delivery_method,
        delivery_address=address,
        delivery_notes=data.delivery_notes,
        payment_proof_url=data.payment_proof_url,
    )


# payment.*

@procedure('payment.uploadProof', schemas.UploadProofInput, mutation=True, rate_limit='checkout')
def upload_payment_proof(ctx, data):
    order = PaymentService(ctx.session).upload_proof(data.order_id, data.proof_url, data.transaction_id)
    return {'success': True, 'order_id': order.id, 'payment_status': order.payment_status.value}


@procedure('payment.getStatus', schemas.OrderIdInput)
def get_payment_status(ctx, data):
    return PaymentService(ctx.session).get_status(data.order_id)


@procedure('payment.getMethods', schemas.MerchantIdInput)
def get_payment_methods(ctx, data):
    return PaymentService(ctx.session).get_merchant_methods(data.merchant_id)


@procedure('payment.verify', schemas.VerifyPaymentInput, access=MERCHANT, mutation=True)
def verify_payment(ctx, data):
    order = PaymentService(ctx.session).verify_payment(
        ctx.merchant_id, data.order_id, amount=data.amount,
        transaction_id=data.transaction_id, actor=ctx.actor)
    return order.to_dict()


@procedure('payment.reject', schemas.RejectPaymentInput, access=MERCHANT, mutation=True)
def reject_payment(ctx, data):
    order = PaymentService(ctx.session).reject_payment(ctx.merchant_id, data.order_id, data.reason, ctx.actor)
    return order.to_dict()


@procedure('payment.generateQR', schemas.GenerateQrInput, access=MERCHANT)
def generate_qr(ctx, data):
    return PaymentService(ctx.session).generate_qr(ctx.merchant_id, data.amount, data.reference)


@procedure('payment.pending', access=MERCHANT)
def pending_payments(ctx, data):
    return [order.to_dict() for order in PaymentService(ctx.session).get_pending_payments(ctx.merchant_id)]


# order.*

@procedure('order.list', schemas.ListOrdersInput, access=MERCHANT)
def list_orders(ctx, data):
    return OrderService(ctx.session).list_orders(
        ctx.merchant_id, status=data.status, search=data.search, date_from=data.date_from,
        date_to=data.date_to, page=data.page, limit=data.limit,
        sort_by=data.sort_by, sort_order=data.sort_order)


@procedure('order.get', schemas.OrderIdInput, access=MERCHANT)
def get_order(ctx, data):
    order = OrderService(ctx.session).get_order(ctx.merchant_id, data.order_id)
    result = order.to_dict(include_events=True)
    result['next_statuses'] = [status.value for status in next_statuses(order)]
    return result


@procedure('order.updateStatus', schemas.UpdateOrderStatusInput, access=MERCHANT, mutation=True)
def update_order_status(ctx, data):
    order = OrderService(ctx.session).update_status(
        ctx.merchant_id, data.order_id, data.status, notes=data.notes, reason=data.reason, actor=ctx.actor)
    return order.to_dict()


@procedure('order.bulkUpdateStatus', schemas.BulkUpdateStatusInput, access=MERCHANT, mutation=True)
def bulk_update_order_status(ctx, data):
    return OrderService(ctx.session).bulk_update_status(
        ctx.merchant_id, data.order_ids, data.status, notes=data.notes, actor=ctx.actor)


@procedure('order.export', schemas.ExportOrdersInput, access=MERCHANT, mutation=True)
def export_orders(ctx, data):
    return OrderService(ctx.session).export_csv(ctx.merchant_id, data.order_ids, data.filters)


@procedure('order.printData', schemas.PrintOrdersInput, access=MERCHANT)
def print_orders(ctx, data):
    return OrderService(ctx.session).get_print_data(ctx.merchant_id, data.order_ids)


@procedure('order.dashboard', access=MERCHANT)
def order_dashboard(ctx, data):
    return OrderService(ctx.session).get_dashboard_summary(ctx.merchant_id)


@procedure('order.mine', schemas.PageInput, access=PROTECTED)
def my_orders(ctx, data):
    customer = ctx.session.query(Customer).filter(Customer.user_id == ctx.user.id).first()
    if customer is None:
        return {'items': [], 'pagination': {'page': data.page, 'limit': data.limit, 'total': 0, 'total_pages': 0}}
    return OrderService(ctx.session).list_customer_orders(customer.id, data.page, data.limit)


# product.*

@procedure('product.list', schemas.ListProductsInput, access=MERCHANT)
def list_products(ctx, data):
    return ProductService(ctx.session).list_products(
        ctx.merchant_id, status=data.status, category_id=data.category_id, search=data.search,
        page=data.page, limit=data.limit, sort_by=data.sort_by, sort_order=data.sort_order)


@procedure('product.get', schemas.ProductIdInput, access=MERCHANT)
def get_product(ctx, data):
    return ProductService(ctx.session).get_product(ctx.merchant_id, data.product_id).to_dict()


@procedure('product.create', schemas.CreateProductInput, access=MERCHANT, mutation=True)
def create_product(ctx, data):
    return ProductService(ctx.session).create_product(ctx.merchant_id, _fields(data)).to_dict()


@procedure('product.update', schemas.UpdateProductInput, access=MERCHANT, mutation=True)
def update_product(ctx, data):
    product = ProductService(ctx.session).update_product(
        ctx.merchant_id, data.product_id, _fields(data, 'product_id'))
    return product.to_dict()


@procedure('product.delete', schemas.ProductIdInput, access=MERCHANT, mutation=True)
def delete_product(ctx, data):
    return {'success': ProductService(ctx.session).delete_product(ctx.merchant_id, data.product_id)}


@procedure('product.bulkUpdate', schemas.BulkProductInput, access=MERCHANT, mutation=True)
def bulk_update_products(ctx, data):
    count = ProductService(ctx.session).bulk_update(ctx.merchant_id, data.product_ids, data.action)
    return {'updated': count}


@procedure('product.addVariant', schemas.AddVariantInput, access=MERCHANT, mutation=True)
def add_variant(ctx, data):
    variant = ProductService(ctx.session).add_variant(
        ctx.merchant_id, data.product_id, data.name, price_adjustment=data.price_adjustment,
        quantity=data.quantity, sku=data.sku, is_default=data.is_default)
    return variant.to_dict()


@procedure('product.updateVariant', schemas.UpdateVariantInput, access=MERCHANT, mutation=True)
def update_variant(ctx, data):
    variant = ProductService(ctx.session).update_variant(
        ctx.merchant_id, data.variant_id, **_fields(data, 'variant_id'))
    return variant.to_dict()


@procedure('product.createCategory', schemas.CreateCategoryInput, access=MERCHANT, mutation=True)
def create_category(ctx, data):
    return ProductService(ctx.session).create_category(ctx.merchant_id, data.name, data.sort_order).to_dict()


@procedure('product.listCategories', access=MERCHANT)
def list_categories(ctx, data):
    categories = ProductService(ctx.session).list_categories(ctx.merchant_id, active_only=False)
    return [category.to_dict() for category in categories]


@procedure('product.getModifiers', schemas.ProductIdInput, access=MERCHANT)
def get_modifiers(ctx, data):
    groups = ModifierService(ctx.session).get_by_product(ctx.merchant_id, data.product_id)
    return [group.to_dict() for group in groups]


@procedure('product.upsertModifierGroup', schemas.ModifierGroupInput, access=MERCHANT, mutation=True)
def upsert_modifier_group(ctx, data):
    group = ModifierService(ctx.session).upsert_group(
        ctx.merchant_id, data.product_id, _fields(data, 'product_id'))
    return group.to_dict()


@procedure('product.bulkUpsertModifierGroups', schemas.BulkModifierGroupsInput, access=MERCHANT, mutation=True)
def bulk_upsert_modifier_groups(ctx, data):
    groups = [group.model_dump() for group in data.groups]
    return ModifierService(ctx.session).bulk_upsert_groups(ctx.merchant_id, data.product_id, groups)


@procedure('product.deleteModifierGroup', schemas.ModifierGroupIdInput, access=MERCHANT, mutation=True)
def delete_modifier_group(ctx, data):
    return {'success': ModifierService(ctx.session).delete_group(ctx.merchant_id, data.group_id)}


@procedure('product.updateModifierInventory', schemas.ModifierInventoryInput, access=MERCHANT, mutation=True)
def update_modifier_inventory(ctx, data):
    modifier = ModifierService(ctx.session).update_modifier_inventory(
        ctx.merchant_id, data.modifier_id, data.inventory)
    return modifier.to_dict()


@procedure('product.updateModifierSortOrder', schemas.ModifierSortOrderInput, access=MERCHANT, mutation=True)
def update_modifier_sort_order(ctx, data):
    groups = [group.model_dump() for group in data.groups]
    return {'success': ModifierService(ctx.session).update_sort_order(ctx.merchant_id, data.product_id, groups)}


@procedure('product.cloneModifiers', schemas.CloneModifiersInput, access=MERCHANT, mutation=True)
def clone_modifiers(ctx, data):
    count = ModifierService(ctx.session).clone_from_product(
        ctx.merchant_id, data.source_product_id, data.target_product_id)
    return {'success': True, 'group_count': count}


# merchant.*

@procedure('merchant.register', schemas.RegisterMerchantInput, access=PROTECTED, mutation=True)
def register_merchant(ctx, data):
    merchant = MerchantService(ctx.session).register_merchant(
        ctx.user.id, ctx.user.email, data.business_name, data.phone)
    return merchant.to_dict()


@procedure('merchant.me', access=PROTECTED)
def my_merchant(ctx, data):
    merchant = MerchantService(ctx.session).get_merchant_for_user(ctx.user.id)
    if merchant is None:
        raise NotFoundError("No merchant account for this user")
    return merchant.to_dict()


@procedure('merchant.updateSettings', schemas.MerchantSettingsInput, access=MERCHANT, mutation=True)
def update_merchant_settings(ctx, data):
    return MerchantService(ctx.session).update_settings(ctx.merchant_id, **_fields(data)).to_dict()


@procedure('merchant.listPending', access=ADMIN)
def list_pending_merchants(ctx, data):
    return [m.to_dict() for m in MerchantService(ctx.session).list_pending_merchants()]


@procedure('merchant.listAll', schemas.ListMerchantsInput, access=ADMIN)
def list_all_merchants(ctx, data):
    return MerchantService(ctx.session).list_all_merchants(data.status, data.search, data.page, data.limit)


@procedure('merchant.approve', schemas.MerchantIdInput, access=ADMIN, mutation=True)
def approve_merchant(ctx, data):
    return MerchantService(ctx.session).approve_merchant(data.merchant_id).to_dict()


@procedure('merchant.suspend', schemas.SuspendMerchantInput, access=ADMIN, mutation=True)
def suspend_merchant(ctx, data):
    return MerchantService(ctx.session).suspend_merchant(data.merchant_id, data.reason).to_dict()


# notification.*

@procedure('notification.list', schemas.ListNotificationsInput, access=MERCHANT)
def list_notifications(ctx, data):
    return NotificationService(ctx.session).list_notifications(
        merchant_id=ctx.merchant_id, unread_only=data.unread_only, page=data.page, limit=data.limit)


@procedure('notification.unreadCount', access=MERCHANT)
def unread_notifications(ctx, data):
    return {'count': NotificationService(ctx.session).unread_count(merchant_id=ctx.merchant_id)}


@procedure('notification.markRead', schemas.MarkReadInput, access=MERCHANT, mutation=True)
def mark_notifications_read(ctx, data):
    return {'updated': NotificationService(ctx.session).mark_read(data.ids, merchant_id=ctx.merchant_id)}


@procedure('notification.markAllRead', access=MERCHANT, mutation=True)
def mark_all_notifications_read(ctx, data):
    return {'updated': NotificationService(ctx.session).mark_all_read(merchant_id=ctx.merchant_id)}


# analytics.*

@procedure('analytics.dashboard', schemas.DateRangeInput, access=MERCHANT)
def analytics_dashboard(ctx, data):
    return AnalyticsService(ctx.session).get_dashboard_stats(
        ctx.merchant_id, date_from=data.date_from, date_to=data.date_to, preset=data.preset)


@procedure('analytics.revenueChart', schemas.RevenueChartInput, access=MERCHANT)
def revenue_chart(ctx, data):
    return AnalyticsService(ctx.session).get_revenue_chart(
        ctx.merchant_id, period=data.period, date_from=data.date_from, date_to=data.date_to,
        preset=data.preset)


# inventory.*

@procedure('inventory.updateStock', schemas.UpdateStockInput, access=MERCHANT, mutation=True)
def update_stock(ctx, data):
    product = InventoryService(ctx.session).update_stock(
        data.product_id, data.change, data.operation, merchant_id=ctx.merchant_id, reason=data.reason)
    return product.to_dict(include_variants=False)


@procedure('inventory.logs', schemas.InventoryLogsInput, access=MERCHANT)
def inventory_logs(ctx, data):
    logs = InventoryService(ctx.session).get_inventory_logs(ctx.merchant_id, data.product_id, data.limit)
    return [log.to_dict() for log in logs]


@procedure('inventory.lowStock', access=MERCHANT)
def low_stock(ctx, data):
    products = InventoryService(ctx.session).get_low_stock_products(ctx.merchant_id)
    return [product.to_dict(include_variants=False) for product in products]


# ingredient.*

@procedure('ingredient.list', schemas.ListIngredientsInput, access=MERCHANT)
def list_ingredients(ctx, data):
    ingredients = IngredientService(ctx.session).list_ingredients(ctx.merchant_id, data.category, data.search)
    return [ingredient.to_dict() for ingredient in ingredients]


@procedure('ingredient.create', schemas.CreateIngredientInput, access=MERCHANT, mutation=True)
def create_ingredient(ctx, data):
    return IngredientService(ctx.session).create_ingredient(ctx.merchant_id, _fields(data)).to_dict()


@procedure('ingredient.update', schemas.UpdateIngredientInput, access=MERCHANT, mutation=True)
def update_ingredient(ctx, data):
    ingredient = IngredientService(ctx.session).update_ingredient(
        ctx.merchant_id, data.ingredient_id, _fields(data, 'ingredient_id'))
    return ingredient.to_dict()


@procedure('ingredient.delete', schemas.IngredientIdInput, access=MERCHANT, mutation=True)
def delete_ingredient(ctx, data):
    return {'success': IngredientService(ctx.session).delete_ingredient(ctx.merchant_id, data.ingredient_id)}


@procedure('ingredient.recordPurchase', schemas.RecordPurchaseInput, access=MERCHANT, mutation=True)
def record_purchase(ctx, data):
    ingredient = IngredientService(ctx.session).record_purchase(
        ctx.merchant_id, data.ingredient_id, data.quantity, data.total_cost, data.unit, data.store)
    return ingredient.to_dict()


@procedure('ingredient.reorderList', access=MERCHANT)
def reorder_list(ctx, data):
    return [ingredient.to_dict() for ingredient in IngredientService(ctx.session).get_reorder_list(ctx.merchant_id)]


@procedure('ingredient.setRecipe', schemas.SetRecipeInput, access=MERCHANT, mutation=True)
def set_recipe(ctx, data):
    lines = [line.model_dump() for line in data.lines]
    recipe = IngredientService(ctx.session).set_recipe(ctx.merchant_id, data.product_id, lines)
    return [line.to_dict() for line in recipe]


@procedure('ingredient.productCost', schemas.ProductIdInput, access=MERCHANT)
def product_cost(ctx, data):
    return IngredientService(ctx.session).calculate_product_cost(ctx.merchant_id, data.product_id)


@procedure('ingredient.suggestPrice', schemas.SuggestPriceInput, access=MERCHANT)
def suggest_product_price(ctx, data):
    return suggest_price(data.cost, data.markup_percentage, data.include_gst)


