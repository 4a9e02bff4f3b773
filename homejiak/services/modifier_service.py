# homejiak/services/modifier_service.py

"""
Product modifiers: option groups such as "Spice level" or "Add-ons" that a
customer picks from when adding a product to the cart.

A group is SINGLE_SELECT (at most one choice) or MULTI_SELECT, may be
required, and may bound the number of distinct choices with min/max
selections. Each modifier adjusts the unit price by a fixed amount or by a
percentage of the product price, and can keep its own stock count.
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from homejiak.models import (
    ModifierGroupType, ModifierPriceType, Product, ProductModifier, ProductModifierGroup
)
from homejiak.exceptions import CheckoutError, NotFoundError, ValidationError
from homejiak.utils.validation import money

logger = logging.getLogger(__name__)

GROUP_FIELDS = ('name', 'description', 'type', 'required', 'min_select', 'max_select', 'sort_order', 'is_active')
MODIFIER_FIELDS = (
    'name', 'description', 'price_adjustment', 'price_type', 'is_default', 'is_available',
    'sort_order', 'image_url', 'track_inventory', 'inventory', 'max_per_order',
)
# Client-side placeholder ids for rows not saved yet
TEMP_ID_PREFIX = 'temp-'


def _is_new(row_id: Optional[str]) -> bool:
    return not row_id or row_id.startswith(TEMP_ID_PREFIX)


def _enum_value(enum_cls, value, field: str):
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).upper())
    except ValueError:
        raise ValidationError(f"Invalid {field}: {value}", details={field: value})


def modifier_unit_adjustment(modifier: ProductModifier, base_price, count: int = 1) -> Decimal:
    """Price added to one unit of the product by ``count`` of this modifier.

    Args:
        modifier: Selected modifier
        base_price: Product price including any variant adjustment
        count: How many of the modifier go on each unit

    Returns:
        Adjustment rounded to cents
    """
    adjustment = Decimal(str(modifier.price_adjustment or 0))
    if modifier.price_type == ModifierPriceType.PERCENTAGE:
        return money(Decimal(str(base_price)) * adjustment / 100 * count)
    return money(adjustment * count)


class ModifierService:
    """Service for product modifier groups and the modifiers in them."""

    def __init__(self, session: Session):
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

    def _owned_group(self, merchant_id: str, group_id: str,
                     product_id: Optional[str] = None) -> ProductModifierGroup:
        query = self.session.query(ProductModifierGroup).filter(
            ProductModifierGroup.id == group_id,
            ProductModifierGroup.merchant_id == merchant_id,
        )
        if product_id is not None:
            query = query.filter(ProductModifierGroup.product_id == product_id)
        group = query.first()
        if group is None:
            raise NotFoundError("Modifier group not found")
        return group

    def _validate_group(self, data: Dict):
        errors = {}
        if not (data.get('name') or '').strip():
            errors['name'] = 'Group name is required'
        group_type = _enum_value(ModifierGroupType, data.get('type') or ModifierGroupType.SINGLE_SELECT, 'type')

        min_select, max_select = data.get('min_select'), data.get('max_select')
        for field, value in (('min_select', min_select), ('max_select', max_select)):
            if value is not None and (not isinstance(value, int) or value < 0):
                errors[field] = 'Must be a non-negative integer'
        if isinstance(min_select, int) and isinstance(max_select, int) and min_select > max_select:
            errors['min_select'] = 'Minimum selection cannot be greater than maximum'

        modifiers = data.get('modifiers') or []
        if group_type == ModifierGroupType.SINGLE_SELECT and sum(1 for m in modifiers if m.get('is_default')) > 1:
            errors['modifiers'] = f"Single-select group \"{data.get('name')}\" can only have one default modifier"
        for index, modifier in enumerate(modifiers):
            if not (modifier.get('name') or '').strip():
                errors[f'modifiers.{index}.name'] = 'Name is required'
            inventory = modifier.get('inventory')
            if inventory is not None and (not isinstance(inventory, int) or inventory < 0):
                errors[f'modifiers.{index}.inventory'] = 'Must be a non-negative integer'
            max_per_order = modifier.get('max_per_order')
            if max_per_order is not None and (not isinstance(max_per_order, int) or max_per_order < 1):
                errors[f'modifiers.{index}.max_per_order'] = 'Must be a positive integer'

        if errors:
            raise ValidationError("Invalid modifier group", details=errors)

    def _apply_group_fields(self, group: ProductModifierGroup, data: Dict):
        for field in GROUP_FIELDS:
            if field not in data:
                continue
            value = data[field]
            if field == 'type':
                value = _enum_value(ModifierGroupType, value, 'type')
            elif field == 'name':
                value = value.strip()
            setattr(group, field, value)

    def _apply_modifier_fields(self, modifier: ProductModifier, data: Dict):
        for field in MODIFIER_FIELDS:
            if field not in data or (data[field] is None and field in ('price_adjustment', 'price_type', 'inventory')):
                continue
            value = data[field]
            if field == 'price_type':
                value = _enum_value(ModifierPriceType, value, 'price_type')
            elif field == 'price_adjustment':
                value = money(value)
            elif field == 'name':
                value = value.strip()
            setattr(modifier, field, value)

    def _save_group(self, merchant_id: str, product: Product, data: Dict) -> ProductModifierGroup:
        """Create or update one group and sync its modifiers; no commit."""
        self._validate_group(data)

        if _is_new(data.get('id')):
            group = ProductModifierGroup(merchant_id=merchant_id)
            product.modifier_groups.append(group)
        else:
            group = self._owned_group(merchant_id, data['id'], product.id)
        self._apply_group_fields(group, data)

        existing = {m.id: m for m in group.modifiers}
        keep = {m['id'] for m in data.get('modifiers') or [] if not _is_new(m.get('id'))}
        unknown = keep - set(existing)
        if unknown:
            raise NotFoundError("Modifier not found", details={'modifier_ids': sorted(unknown)})

        for modifier_id, modifier in existing.items():
            if modifier_id not in keep:
                group.modifiers.remove(modifier)

        for modifier_data in data.get('modifiers') or []:
            if _is_new(modifier_data.get('id')):
                modifier = ProductModifier()
                group.modifiers.append(modifier)
            else:
                modifier = existing[modifier_data['id']]
            self._apply_modifier_fields(modifier, modifier_data)

        self.session.flush()
        return group

    def get_by_product(self, merchant_id: str, product_id: str) -> List[ProductModifierGroup]:
        product = self._owned_product(merchant_id, product_id)
        return list(product.modifier_groups)

    def get_public_groups(self, product: Product) -> List[Dict]:
        """Active groups with only their available modifiers, for the storefront."""
        groups = []
        for group in product.modifier_groups:
            if not group.is_active:
                continue
            data = group.to_dict()
            data['modifiers'] = [m for m in data['modifiers'] if m['is_available']]
            groups.append(data)
        return groups

    def upsert_group(self, merchant_id: str, product_id: str, data: Dict) -> ProductModifierGroup:
        """Create a modifier group, or update one together with its modifiers.

        Modifiers missing from ``data["modifiers"]`` are deleted; entries
        without an id (or with a ``temp-`` id) are created.

        Args:
            merchant_id: Owning merchant
            product_id: Product the group belongs to
            data: Group fields plus a ``modifiers`` list

        Returns:
            Saved group
        """
        product = self._owned_product(merchant_id, product_id)
        try:
            group = self._save_group(merchant_id, product, data)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Saved modifier group {group.id} ({group.name}) on product {product_id}")
        return group

    def bulk_upsert_groups(self, merchant_id: str, product_id: str, groups: List[Dict]) -> Dict:
        """Replace a product's whole modifier setup in one transaction.

        Groups not listed are deleted along with their modifiers.

        Returns:
            Dictionary with success, group_count, modifier_count and groups
        """
        product = self._owned_product(merchant_id, product_id)
        keep = {g['id'] for g in groups if not _is_new(g.get('id'))}
        try:
            for group in list(product.modifier_groups):
                if group.id not in keep:
                    product.modifier_groups.remove(group)
            self.session.flush()

            saved = [self._save_group(merchant_id, product, data) for data in groups]
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Saved {len(saved)} modifier group(s) on product {product_id}")
        return {
            'success': True,
            'group_count': len(saved),
            'modifier_count': sum(len(group.modifiers) for group in saved),
            'groups': [group.to_dict() for group in saved],
        }

    def delete_group(self, merchant_id: str, group_id: str) -> bool:
        group = self._owned_group(merchant_id, group_id)
        try:
            group.product.modifier_groups.remove(group)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Deleted modifier group {group_id}")
        return True

    def update_modifier_inventory(self, merchant_id: str, modifier_id: str, inventory: int) -> ProductModifier:
        if not isinstance(inventory, int) or inventory < 0:
            raise ValidationError("Inventory must be a non-negative integer")

        modifier = self.session.query(ProductModifier) \
            .join(ProductModifierGroup, ProductModifier.group_id == ProductModifierGroup.id) \
            .filter(ProductModifier.id == modifier_id, ProductModifierGroup.merchant_id == merchant_id) \
            .first()
        if modifier is None:
            raise NotFoundError("Modifier not found")

        modifier.inventory = inventory
        self.session.commit()
        return modifier

    def update_sort_order(self, merchant_id: str, product_id: str, groups: List[Dict]) -> bool:
        """Apply ``[{"id", "sort_order", "modifiers"?: [{"id", "sort_order"}]}]``."""
        self._owned_product(merchant_id, product_id)
        try:
            for entry in groups:
                group = self._owned_group(merchant_id, entry['id'], product_id)
                group.sort_order = entry['sort_order']
                modifiers = {m.id: m for m in group.modifiers}
                for modifier_entry in entry.get('modifiers') or []:
                    modifier = modifiers.get(modifier_entry['id'])
                    if modifier is None:
                        raise NotFoundError("Modifier not found")
                    modifier.sort_order = modifier_entry['sort_order']
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return True

    def clone_from_product(self, merchant_id: str, source_product_id: str, target_product_id: str) -> int:
        """Copy every modifier group of one product onto another.

        Returns:
            Number of groups copied
        """
        if source_product_id == target_product_id:
            raise ValidationError("Source and target product must differ")
        source = self._owned_product(merchant_id, source_product_id)
        target = self._owned_product(merchant_id, target_product_id)

        try:
            for group in source.modifier_groups:
                clone = ProductModifierGroup(merchant_id=merchant_id)
                for field in GROUP_FIELDS:
                    setattr(clone, field, getattr(group, field))
                for modifier in group.modifiers:
                    clone.modifiers.append(ProductModifier(**{f: getattr(modifier, f) for f in MODIFIER_FIELDS}))
                target.modifier_groups.append(clone)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        count = len(source.modifier_groups)
        logger.info(f"Cloned {count} modifier group(s) from product {source_product_id} to {target_product_id}")
        return count

    def resolve_selections(self, product: Product, selections: Optional[List[Dict]],
                           base_price) -> Tuple[Decimal, List[Dict]]:
        """Check a cart line's modifier choices and price them.

        Args:
            product: Product on the line
            selections: ``[{"modifier_id", "quantity"?}]``; quantity is per unit
            base_price: Unit price including any variant adjustment

        Returns:
            Tuple of (per-unit price adjustment, snapshot of the choices)

        Raises:
            CheckoutError when a choice is unavailable or a group rule is broken
        """
        counts = {}
        for selection in selections or []:
            count = selection.get('quantity') or 1
            if not isinstance(count, int) or count < 1:
                raise CheckoutError("Modifier quantity must be a positive integer")
            counts[selection['modifier_id']] = counts.get(selection['modifier_id'], 0) + count

        groups = [g for g in product.modifier_groups if g.is_active]
        by_id = {m.id: (g, m) for g in groups for m in g.modifiers}

        chosen = {}
        for modifier_id, count in counts.items():
            if modifier_id not in by_id or not by_id[modifier_id][1].is_available:
                raise CheckoutError(f"Option not available for {product.name}",
                                    details={'modifier_id': modifier_id})
            group, modifier = by_id[modifier_id]
            if modifier.max_per_order and count > modifier.max_per_order:
                raise CheckoutError(f"At most {modifier.max_per_order} x {modifier.name} per item")
            chosen.setdefault(group.id, []).append((modifier, count))

        for group in groups:
            picked = len(chosen.get(group.id, []))
            if group.required and picked == 0:
                raise CheckoutError(f"Please choose an option for {group.name}")
            if group.type == ModifierGroupType.SINGLE_SELECT and picked > 1:
                raise CheckoutError(f"Choose only one option for {group.name}")
            if picked and group.min_select and picked < group.min_select:
                raise CheckoutError(f"Choose at least {group.min_select} options for {group.name}")
            if group.max_select and picked > group.max_select:
                raise CheckoutError(f"Choose at most {group.max_select} options for {group.name}")

        adjustment = money(0)
        snapshot = []
        for group in groups:
            for modifier, count in chosen.get(group.id, []):
                line_adjustment = modifier_unit_adjustment(modifier, base_price, count)
                adjustment = money(adjustment + line_adjustment)
                snapshot.append({
                    'group_id': group.id,
                    'group_name': group.name,
                    'modifier_id': modifier.id,
                    'name': modifier.name,
                    'quantity': count,
                    'price_adjustment': float(line_adjustment),
                })
        return adjustment, snapshot
