# homejiak/services/ingredient_service.py
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from homejiak.config import config
from homejiak.models import (
    Ingredient, IngredientCategory, MeasurementUnit, Product, RecipeIngredient
)
from homejiak.exceptions import NotFoundError, ValidationError
from homejiak.utils.date_utils import utcnow
from homejiak.utils.validation import money

logger = logging.getLogger(__name__)

# Size of each unit in its family's base unit (grams, millilitres, pieces)
UNIT_FACTORS = {
    MeasurementUnit.GRAMS: ('weight', Decimal('1')),
    MeasurementUnit.KG: ('weight', Decimal('1000')),
    MeasurementUnit.OUNCES: ('weight', Decimal('28.3495')),
    MeasurementUnit.POUNDS: ('weight', Decimal('453.592')),
    MeasurementUnit.ML: ('volume', Decimal('1')),
    MeasurementUnit.LITERS: ('volume', Decimal('1000')),
    MeasurementUnit.TSP: ('volume', Decimal('4.92892')),
    MeasurementUnit.TBSP: ('volume', Decimal('14.7868')),
    MeasurementUnit.CUPS: ('volume', Decimal('236.588')),
    MeasurementUnit.PIECES: ('count', Decimal('1')),
    MeasurementUnit.DOZEN: ('count', Decimal('12')),
}

INGREDIENT_FIELDS = (
    'name', 'description', 'category', 'purchase_unit', 'price_per_unit', 'current_stock',
    'reorder_point', 'preferred_store', 'allergens',
)
DEFAULT_MARKUP_PERCENTAGE = 300
QUANTITY_PLACES = Decimal('0.001')


def _decimal(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def convert_quantity(quantity, from_unit: MeasurementUnit, to_unit: MeasurementUnit) -> Decimal:
    """Convert a quantity between units of the same family.

    Raises:
        ValidationError if the units cannot be converted
    """
    quantity = _decimal(quantity)
    if from_unit == to_unit:
        return quantity
    source = UNIT_FACTORS.get(from_unit)
    target = UNIT_FACTORS.get(to_unit)
    if source is None or target is None or source[0] != target[0]:
        raise ValidationError(f"Cannot convert {from_unit.value} to {to_unit.value}")
    return (quantity * source[1] / target[1]).quantize(QUANTITY_PLACES, rounding=ROUND_HALF_UP)


def suggest_price(cost, markup_percentage=DEFAULT_MARKUP_PERCENTAGE, include_gst: bool = False) -> Dict:
    """Suggested selling price for a unit cost.

    Args:
        cost: Cost per unit
        markup_percentage: Markup on cost; 300 means four times cost
        include_gst: Add GST on top of the suggested price

    Returns:
        Dictionary with cost, price, profit, margin, markup and, when
        requested, gst and price_with_gst
    """
    cost = money(cost)
    markup = _decimal(markup_percentage)
    if cost < 0 or markup < 0:
        raise ValidationError("Cost and markup must not be negative")

    price = money(cost * (1 + markup / 100))
    profit = money(price - cost)
    result = {
        'cost': float(cost),
        'price': float(price),
        'profit': float(profit),
        'margin': round(float(profit / price * 100), 2) if price > 0 else 0.0,
        'markup': float(markup),
    }
    if include_gst:
        gst = money(price * config.checkout_config['gst_rate'])
        result['gst'] = float(gst)
        result['price_with_gst'] = float(money(price + gst))
    return result


class IngredientService:
    """Service for merchant ingredients, recipes and product costing."""

    def __init__(self, session: Session):
        """Initialize the ingredient service.

        Args:
            session: Database session
        """
        self.session = session

    def _clean(self, data: Dict) -> Dict:
        errors = {}
        cleaned = {}
        for field in INGREDIENT_FIELDS:
            if field not in data:
                continue
            value = data[field]
            try:
                if field == 'name':
                    if not value or len(value.strip()) > 120:
                        raise ValueError('Name must be 1-120 characters')
                    value = value.strip()
                elif field == 'category':
                    value = IngredientCategory(str(value).upper())
                elif field == 'purchase_unit':
                    value = MeasurementUnit(str(value).upper())
                elif field in ('price_per_unit', 'current_stock', 'reorder_point') and value is not None:
                    value = _decimal(value)
                    if value < 0:
                        raise ValueError('Must not be negative')
                elif field == 'allergens' and value is not None and not isinstance(value, list):
                    raise ValueError('Allergens must be a list')
            except (ValueError, ArithmeticError) as e:
                errors[field] = str(e)
                continue
            cleaned[field] = value

        if errors:
            raise ValidationError("Invalid ingredient data", details=errors)
        return cleaned

    def _owned(self, merchant_id: str, ingredient_id: str) -> Ingredient:
        ingredient = self.session.query(Ingredient).filter(
            Ingredient.id == ingredient_id,
            Ingredient.merchant_id == merchant_id,
            Ingredient.deleted_at.is_(None),
        ).first()
        if ingredient is None:
            raise NotFoundError("Ingredient not found")
        return ingredient

    def create_ingredient(self, merchant_id: str, data: Dict) -> Ingredient:
        if not data.get('name'):
            raise ValidationError("Ingredient name is required")
        ingredient = Ingredient(merchant_id=merchant_id, **self._clean(data))
        self.session.add(ingredient)
        self.session.commit()

        logger.info(f"Created ingredient {ingredient.name} for merchant {merchant_id}")
        return ingredient

    def update_ingredient(self, merchant_id: str, ingredient_id: str, data: Dict) -> Ingredient:
        ingredient = self._owned(merchant_id, ingredient_id)
        for field, value in self._clean(data).items():
            setattr(ingredient, field, value)
        self.session.commit()
        return ingredient

    def delete_ingredient(self, merchant_id: str, ingredient_id: str) -> bool:
        """Soft-delete an ingredient that no recipe uses."""
        ingredient = self._owned(merchant_id, ingredient_id)
        used = self.session.query(RecipeIngredient.id) \
            .filter(RecipeIngredient.ingredient_id == ingredient.id).count()
        if used:
            raise ValidationError(f"Ingredient is used in {used} recipe(s)")

        ingredient.deleted_at = utcnow()
        self.session.commit()
        logger.info(f"Deleted ingredient {ingredient_id}")
        return True

    def get_ingredient(self, merchant_id: str, ingredient_id: str) -> Ingredient:
        return self._owned(merchant_id, ingredient_id)

    def list_ingredients(self, merchant_id: str, category: Optional[str] = None,
                         search: Optional[str] = None) -> List[Ingredient]:
        query = self.session.query(Ingredient).filter(
            Ingredient.merchant_id == merchant_id,
            Ingredient.deleted_at.is_(None),
        )
        if category:
            query = query.filter(Ingredient.category == IngredientCategory(str(category).upper()))
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(Ingredient.name.ilike(pattern), Ingredient.description.ilike(pattern)))
        return query.order_by(Ingredient.name.asc()).all()

    def record_purchase(self, merchant_id: str, ingredient_id: str, quantity, total_cost,
                        unit: Optional[str] = None, store: Optional[str] = None) -> Ingredient:
        """Add purchased stock and take the purchase's unit price as the current price.

        Args:
            merchant_id: Merchant ID
            ingredient_id: Ingredient ID
            quantity: Amount bought
            total_cost: Amount paid
            unit: Unit of ``quantity``; defaults to the purchase unit
            store: Where it was bought

        Returns:
            Updated ingredient
        """
        ingredient = self._owned(merchant_id, ingredient_id)
        quantity = _decimal(quantity)
        total_cost = _decimal(total_cost)
        if quantity <= 0 or total_cost <= 0:
            raise ValidationError("Quantity and total cost must be positive")

        if unit:
            quantity = convert_quantity(quantity, MeasurementUnit(str(unit).upper()), ingredient.purchase_unit)

        before = _decimal(ingredient.current_stock or 0)
        ingredient.current_stock = before + quantity
        ingredient.price_per_unit = (total_cost / quantity).quantize(Decimal('0.0001'), rounding=ROUND_HALF_UP)
        if store:
            ingredient.preferred_store = store
        self.session.commit()

        logger.info(f"Purchase of {quantity} {ingredient.purchase_unit.value} {ingredient.name}: "
                    f"stock {before} -> {ingredient.current_stock}")
        return ingredient

    def get_reorder_list(self, merchant_id: str) -> List[Ingredient]:
        """Ingredients at or below their reorder point."""
        return self.session.query(Ingredient).filter(
            Ingredient.merchant_id == merchant_id,
            Ingredient.deleted_at.is_(None),
            Ingredient.reorder_point.isnot(None),
            Ingredient.current_stock <= Ingredient.reorder_point,
        ).order_by(Ingredient.name.asc()).all()

    # Recipes

    def _owned_product(self, merchant_id: str, product_id: str) -> Product:
        product = self.session.query(Product).filter(
            Product.id == product_id,
            Product.merchant_id == merchant_id,
            Product.deleted_at.is_(None),
        ).options(selectinload(Product.recipe).selectinload(RecipeIngredient.ingredient)).first()
        if product is None:
            raise NotFoundError("Product not found")
        return product

    def set_recipe(self, merchant_id: str, product_id: str, lines: Iterable[Dict]) -> List[RecipeIngredient]:
        """Replace a product's recipe.

        Args:
            merchant_id: Merchant ID
            product_id: Product the recipe makes one unit of
            lines: ``{"ingredient_id", "quantity", "unit"?, "notes"?}``; quantities
                are stored in each ingredient's purchase unit

        Returns:
            New recipe lines
        """
        product = self._owned_product(merchant_id, product_id)
        lines = list(lines)

        seen = set()
        recipe = []
        for line in lines:
            ingredient = self._owned(merchant_id, line.get('ingredient_id'))
            if ingredient.id in seen:
                raise ValidationError(f"{ingredient.name} is listed more than once")
            seen.add(ingredient.id)

            quantity = _decimal(line.get('quantity', 0))
            if quantity <= 0:
                raise ValidationError(f"Quantity for {ingredient.name} must be positive")
            if line.get('unit'):
                quantity = convert_quantity(quantity, MeasurementUnit(str(line['unit']).upper()),
                                            ingredient.purchase_unit)

            recipe.append(RecipeIngredient(
                ingredient=ingredient,
                quantity=quantity,
                notes=line.get('notes'),
            ))

        try:
            product.recipe.clear()
            self.session.flush()
            product.recipe.extend(recipe)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Recipe for product {product_id} set with {len(recipe)} ingredient(s)")
        return product.recipe

    def calculate_product_cost(self, merchant_id: str, product_id: str) -> Dict:
        """Ingredient cost of one unit of a product.

        Returns:
            Dictionary with product_id, price, cost, profit, margin and the
            per-ingredient breakdown
        """
        product = self._owned_product(merchant_id, product_id)

        breakdown = []
        total = Decimal('0')
        for line in product.recipe:
            line_cost = _decimal(line.quantity) * _decimal(line.ingredient.price_per_unit or 0)
            total += line_cost
            breakdown.append({
                'ingredient_id': line.ingredient_id,
                'name': line.ingredient.name,
                'quantity': float(line.quantity),
                'unit': line.ingredient.purchase_unit.value,
                'unit_cost': float(line.ingredient.price_per_unit or 0),
                'cost': float(money(line_cost)),
            })

        cost = money(total)
        price = money(product.price)
        profit = money(price - cost)
        return {
            'product_id': product.id,
            'price': float(price),
            'cost': float(cost),
            'profit': float(profit),
            'margin': round(float(profit / price * 100), 2) if price > 0 else 0.0,
            'ingredients': breakdown,
        }
