# homejiak/schemas.py

"""
Input models for the RPC procedures.

Each procedure validates its JSON input against one of these models before
the service layer sees it. Money arrives as numbers and is handed to the
services unchanged; they round to cents.
"""

from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from homejiak.utils.validation import is_valid_phone

SortOrder = Literal['asc', 'desc']
DeliveryMethodName = Literal['DELIVERY', 'PICKUP']
Preset = Literal['today', '7days', '30days', '90days', 'custom']


class Input(BaseModel):
    model_config = ConfigDict(extra='forbid', str_strip_whitespace=True)


class PageInput(Input):
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)


# Public storefront

class MerchantSlugInput(Input):
    slug: str = Field(..., min_length=1, max_length=60)


class SearchMerchantsInput(PageInput):
    query: Optional[str] = None
    cuisine: Optional[str] = None
    delivery_only: bool = False
    pickup_only: bool = False


class PublicProductsInput(PageInput):
    merchant_slug: str = Field(..., min_length=1)
    category_id: Optional[str] = None
    search: Optional[str] = None
    min_price: Optional[Decimal] = Field(None, ge=0)
    max_price: Optional[Decimal] = Field(None, ge=0)
    sort: Literal['newest', 'price_asc', 'price_desc', 'name', 'popular', 'featured'] = 'newest'


class PublicProductInput(Input):
    merchant_slug: str
    product_id: str
    session_id: Optional[str] = None


class TrackOrderInput(Input):
    order_number: str = Field(..., min_length=3)
    phone: str


class TrackEventInput(Input):
    merchant_id: Optional[str] = None
    event: str = Field(..., min_length=1, max_length=100)
    data: Dict[str, Any] = Field(default_factory=dict)
    session_id: Optional[str] = None


# Checkout

class ModifierSelectionInput(Input):
    modifier_id: str
    quantity: int = Field(1, ge=1, le=20)


class CartItemInput(Input):
    product_id: str
    quantity: int = Field(..., ge=1, le=99)
    variant_id: Optional[str] = None
    modifiers: List[ModifierSelectionInput] = Field(default_factory=list)
    notes: Optional[str] = Field(None, max_length=500)


class CreateCheckoutInput(Input):
    merchant_id: str
    items: List[CartItemInput] = Field(..., min_length=1)


class CheckoutSessionInput(Input):
    session_id: str


class ContactInput(Input):
    name: str = Field(..., min_length=2, max_length=120)
    email: Optional[EmailStr] = None
    phone: str

    @field_validator('phone')
    @classmethod
    def check_phone(cls, value):
        if not is_valid_phone(value):
            raise ValueError('Invalid Singapore phone number')
        return value


class AddressInput(Input):
    line1: str = Field(..., min_length=5, max_length=255)
    line2: Optional[str] = Field(None, max_length=255)
    unit_number: Optional[str] = Field(None, max_length=20)
    postal_code: str = Field(..., pattern=r'^\d{6}$')


class CompleteCheckoutInput(Input):
    session_id: str
    contact: ContactInput
    delivery_method: DeliveryMethodName = 'PICKUP'
    delivery_address: Optional[AddressInput] = None
    delivery_notes: Optional[str] = Field(None, max_length=500)
    payment_proof_url: Optional[str] = None


# Payments

class UploadProofInput(Input):
    order_id: str
    proof_url: str = Field(..., min_length=1)
    transaction_id: Optional[str] = None


class OrderIdInput(Input):
    order_id: str


class VerifyPaymentInput(Input):
    order_id: str
    amount: Optional[Decimal] = Field(None, ge=0)
    transaction_id: Optional[str] = None


class RejectPaymentInput(Input):
    order_id: str
    reason: str = Field(..., min_length=2, max_length=500)


class GenerateQrInput(Input):
    amount: Decimal = Field(Decimal('0'), ge=0)
    reference: Optional[str] = Field(None, max_length=25)


# Orders

class ListOrdersInput(PageInput):
    status: Optional[Union[str, List[str]]] = None
    search: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    sort_by: Optional[str] = 'created_at'
    sort_order: SortOrder = 'desc'


class UpdateOrderStatusInput(Input):
    order_id: str
    status: str
    notes: Optional[str] = Field(None, max_length=500)
    reason: Optional[str] = Field(None, max_length=500)


class BulkUpdateStatusInput(Input):
    order_ids: List[str] = Field(..., min_length=1, max_length=100)
    status: str
    notes: Optional[str] = Field(None, max_length=500)


class ExportOrdersInput(Input):
    order_ids: Optional[List[str]] = None
    filters: Optional[Dict[str, Any]] = None


class PrintOrdersInput(Input):
    order_ids: List[str] = Field(..., min_length=1, max_length=50)


# Products

class ProductFields(Input):
    name: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    image_url: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0)
    compare_at_price: Optional[Decimal] = Field(None, ge=0)
    status: Optional[Literal['ACTIVE', 'DRAFT', 'SOLD_OUT', 'DISCONTINUED']] = None
    featured: Optional[bool] = None
    preparation_time: Optional[int] = Field(None, ge=0)
    track_quantity: Optional[bool] = None
    quantity: Optional[int] = Field(None, ge=0)
    low_stock_threshold: Optional[int] = Field(None, ge=0)
    allow_backorder: Optional[bool] = None
    category_id: Optional[str] = None


class CreateProductInput(ProductFields):
    name: str = Field(..., min_length=1, max_length=200)
    price: Decimal = Field(..., ge=0)


class UpdateProductInput(ProductFields):
    product_id: str


class ProductIdInput(Input):
    product_id: str


class ListProductsInput(PageInput):
    status: Optional[str] = None
    category_id: Optional[str] = None
    search: Optional[str] = None
    sort_by: str = 'created_at'
    sort_order: SortOrder = 'desc'


class BulkProductInput(Input):
    product_ids: List[str] = Field(..., min_length=1, max_length=100)
    action: Literal['activate', 'deactivate', 'delete']


class AddVariantInput(Input):
    product_id: str
    name: str = Field(..., min_length=1, max_length=100)
    price_adjustment: Decimal = Decimal('0')
    quantity: int = Field(0, ge=0)
    sku: Optional[str] = None
    is_default: bool = False


class UpdateVariantInput(Input):
    variant_id: str
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    price_adjustment: Optional[Decimal] = None
    quantity: Optional[int] = Field(None, ge=0)
    sku: Optional[str] = None
    is_default: Optional[bool] = None


class ModifierInput(Input):
    id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    price_adjustment: Decimal = Decimal('0')
    price_type: Literal['FIXED', 'PERCENTAGE'] = 'FIXED'
    is_default: bool = False
    is_available: bool = True
    sort_order: int = Field(0, ge=0)
    image_url: Optional[str] = None
    track_inventory: bool = False
    inventory: Optional[int] = Field(None, ge=0)
    max_per_order: Optional[int] = Field(None, ge=1)


class ModifierGroupFields(Input):
    id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    type: Literal['SINGLE_SELECT', 'MULTI_SELECT'] = 'SINGLE_SELECT'
    required: bool = False
    min_select: Optional[int] = Field(None, ge=0)
    max_select: Optional[int] = Field(None, ge=0)
    sort_order: int = Field(0, ge=0)
    is_active: bool = True
    modifiers: List[ModifierInput] = Field(default_factory=list)


class ModifierGroupInput(ModifierGroupFields):
    product_id: str


class BulkModifierGroupsInput(Input):
    product_id: str
    groups: List[ModifierGroupFields]


class ModifierGroupIdInput(Input):
    group_id: str


class ModifierInventoryInput(Input):
    modifier_id: str
    inventory: int = Field(..., ge=0)


class SortEntryInput(Input):
    id: str
    sort_order: int = Field(..., ge=0)


class GroupSortInput(SortEntryInput):
    modifiers: Optional[List[SortEntryInput]] = None


class ModifierSortOrderInput(Input):
    product_id: str
    groups: List[GroupSortInput]


class CloneModifiersInput(Input):
    source_product_id: str
    target_product_id: str


class CreateCategoryInput(Input):
    name: str = Field(..., min_length=1, max_length=50)
    sort_order: int = 0


# Merchant

class RegisterMerchantInput(Input):
    business_name: str = Field(..., min_length=2, max_length=100)
    phone: Optional[str] = None


class MerchantSettingsInput(Input):
    business_name: Optional[str] = None
    description: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    postal_code: Optional[str] = None
    logo_url: Optional[str] = None
    cuisine_types: Optional[List[str]] = None
    paynow_number: Optional[str] = None
    paynow_uen: Optional[str] = None
    delivery_enabled: Optional[bool] = None
    pickup_enabled: Optional[bool] = None
    delivery_fee: Optional[Decimal] = None
    minimum_order: Optional[Decimal] = None
    preparation_time: Optional[int] = None
    operating_hours: Optional[Dict[str, Any]] = None


class MerchantIdInput(Input):
    merchant_id: str


class SuspendMerchantInput(MerchantIdInput):
    reason: Optional[str] = Field(None, max_length=500)


class ListMerchantsInput(PageInput):
    status: Optional[str] = None
    search: Optional[str] = None


# Notifications

class ListNotificationsInput(PageInput):
    unread_only: bool = False


class MarkReadInput(Input):
    ids: List[str] = Field(..., min_length=1)


# Analytics

class DateRangeInput(Input):
    preset: Optional[Preset] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None


class RevenueChartInput(DateRangeInput):
    period: Literal['day', 'week', 'month'] = 'day'


# Inventory

class UpdateStockInput(Input):
    product_id: str
    change: int = Field(..., ge=0)
    operation: Literal['increment', 'decrement', 'set'] = 'increment'
    reason: Optional[str] = Field(None, max_length=255)


class InventoryLogsInput(Input):
    product_id: Optional[str] = None
    limit: int = Field(50, ge=1, le=200)


# Ingredients

class IngredientFields(Input):
    name: Optional[str] = Field(None, max_length=120)
    description: Optional[str] = None
    category: Optional[str] = None
    purchase_unit: Optional[str] = None
    price_per_unit: Optional[Decimal] = Field(None, ge=0)
    current_stock: Optional[Decimal] = Field(None, ge=0)
    reorder_point: Optional[Decimal] = Field(None, ge=0)
    preferred_store: Optional[str] = None
    allergens: Optional[List[str]] = None


class CreateIngredientInput(IngredientFields):
    name: str = Field(..., min_length=1, max_length=120)


class UpdateIngredientInput(IngredientFields):
    ingredient_id: str


class IngredientIdInput(Input):
    ingredient_id: str


class ListIngredientsInput(Input):
    category: Optional[str] = None
    search: Optional[str] = None


class RecordPurchaseInput(Input):
    ingredient_id: str
    quantity: Decimal = Field(..., gt=0)
    total_cost: Decimal = Field(..., gt=0)
    unit: Optional[str] = None
    store: Optional[str] = None


class RecipeLineInput(Input):
    ingredient_id: str
    quantity: Decimal = Field(..., gt=0)
    unit: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=255)


class SetRecipeInput(Input):
    product_id: str
    lines: List[RecipeLineInput]


class SuggestPriceInput(Input):
    cost: Decimal = Field(..., ge=0)
    markup_percentage: Decimal = Field(Decimal('300'), ge=0)
    include_gst: bool = False
