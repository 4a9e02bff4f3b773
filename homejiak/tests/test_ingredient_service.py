"""
Tests for ingredients, recipes and product costing.
"""
import unittest
from decimal import Decimal

from homejiak.exceptions import NotFoundError, ValidationError
from homejiak.models import IngredientCategory, MeasurementUnit
from homejiak.services.ingredient_service import IngredientService, convert_quantity, suggest_price
from homejiak.tests.base import DatabaseTestCase


class TestUnitConversion(unittest.TestCase):
    def test_same_family(self):
        self.assertEqual(convert_quantity(500, MeasurementUnit.GRAMS, MeasurementUnit.KG), Decimal('0.500'))
        self.assertEqual(convert_quantity(2, MeasurementUnit.DOZEN, MeasurementUnit.PIECES), Decimal('24.000'))
        self.assertEqual(convert_quantity(3, MeasurementUnit.TSP, MeasurementUnit.TSP), Decimal('3'))
        self.assertEqual(convert_quantity(1, MeasurementUnit.LITERS, MeasurementUnit.ML), Decimal('1000.000'))

    def test_incompatible_units(self):
        with self.assertRaises(ValidationError):
            convert_quantity(1, MeasurementUnit.CUPS, MeasurementUnit.GRAMS)
        with self.assertRaises(ValidationError):
            convert_quantity(1, MeasurementUnit.SERVINGS, MeasurementUnit.PIECES)


class TestSuggestPrice(unittest.TestCase):
    def test_default_markup(self):
        self.assertEqual(suggest_price('2.50'), {
            'cost': 2.5, 'price': 10.0, 'profit': 7.5, 'margin': 75.0, 'markup': 300.0,
        })

    def test_gst(self):
        result = suggest_price(5, markup_percentage=100, include_gst=True)
        self.assertEqual(result['price'], 10.0)
        self.assertEqual(result['gst'], 0.9)
        self.assertEqual(result['price_with_gst'], 10.9)

    def test_negative(self):
        with self.assertRaises(ValidationError):
            suggest_price(-1)


class TestIngredientService(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.merchant = self.make_merchant()
        self.service = IngredientService(self.session)
        self.flour = self.service.create_ingredient(self.merchant.id, {
            'name': 'Plain Flour', 'category': 'flour_grains', 'purchase_unit': 'kg',
            'price_per_unit': '2.40', 'current_stock': 5, 'reorder_point': 2,
        })
        self.eggs = self.service.create_ingredient(self.merchant.id, {
            'name': 'Eggs', 'category': 'DAIRY_EGGS', 'purchase_unit': 'PIECES',
            'price_per_unit': '0.30', 'current_stock': 4, 'reorder_point': 6,
        })

    def test_create_and_validate(self):
        self.assertEqual(self.flour.category, IngredientCategory.FLOUR_GRAINS)
        self.assertEqual(self.flour.purchase_unit, MeasurementUnit.KG)
        with self.assertRaises(ValidationError) as ctx:
            self.service.create_ingredient(self.merchant.id, {'name': 'Salt', 'purchase_unit': 'handful',
                                                              'price_per_unit': -1})
        self.assertEqual(set(ctx.exception.details), {'purchase_unit', 'price_per_unit'})

    def test_list_and_update(self):
        self.service.update_ingredient(self.merchant.id, self.eggs.id, {'preferred_store': 'Sheng Siong'})
        self.assertEqual(self.eggs.preferred_store, 'Sheng Siong')
        self.assertEqual([i.name for i in self.service.list_ingredients(self.merchant.id)], ['Eggs', 'Plain Flour'])
        self.assertEqual([i.name for i in self.service.list_ingredients(self.merchant.id, category='dairy_eggs')],
                         ['Eggs'])
        with self.assertRaises(NotFoundError):
            self.service.get_ingredient(self.make_merchant().id, self.eggs.id)

    def test_record_purchase_converts_units(self):
        self.service.record_purchase(self.merchant.id, self.flour.id, 2500, '7.50', unit='grams', store='NTUC')
        self.assertEqual(self.flour.current_stock, Decimal('7.500'))
        self.assertEqual(self.flour.price_per_unit, Decimal('3.0000'))
        self.assertEqual(self.flour.preferred_store, 'NTUC')
        with self.assertRaises(ValidationError):
            self.service.record_purchase(self.merchant.id, self.flour.id, 0, 1)

    def test_reorder_list(self):
        self.assertEqual([i.id for i in self.service.get_reorder_list(self.merchant.id)], [self.eggs.id])

    def test_recipe_cost(self):
        product = self.make_product(self.merchant, price=Decimal('12.00'))
        self.service.set_recipe(self.merchant.id, product.id, [
            {'ingredient_id': self.flour.id, 'quantity': 500, 'unit': 'GRAMS'},
            {'ingredient_id': self.eggs.id, 'quantity': 4, 'notes': 'Room temperature'},
        ])

        cost = self.service.calculate_product_cost(self.merchant.id, product.id)
        self.assertEqual(cost['cost'], 2.4)
        self.assertEqual(cost['profit'], 9.6)
        self.assertEqual(cost['margin'], 80.0)
        flour_line = next(line for line in cost['ingredients'] if line['name'] == 'Plain Flour')
        self.assertEqual((flour_line['quantity'], flour_line['unit'], flour_line['cost']), (0.5, 'KG', 1.2))

        # Replacing the recipe drops the old lines
        self.service.set_recipe(self.merchant.id, product.id, [{'ingredient_id': self.eggs.id, 'quantity': 2}])
        self.assertEqual(self.service.calculate_product_cost(self.merchant.id, product.id)['cost'], 0.6)

    def test_recipe_validation(self):
        product = self.make_product(self.merchant)
        line = {'ingredient_id': self.eggs.id, 'quantity': 1}
        with self.assertRaises(ValidationError):
            self.service.set_recipe(self.merchant.id, product.id, [line, line])
        with self.assertRaises(ValidationError):
            self.service.set_recipe(self.merchant.id, product.id, [dict(line, quantity=0)])
        with self.assertRaises(ValidationError):
            self.service.set_recipe(self.merchant.id, product.id, [dict(line, unit='ML')])

    def test_delete_blocked_while_in_recipe(self):
        product = self.make_product(self.merchant)
        self.service.set_recipe(self.merchant.id, product.id, [{'ingredient_id': self.eggs.id, 'quantity': 1}])
        with self.assertRaises(ValidationError):
            self.service.delete_ingredient(self.merchant.id, self.eggs.id)
        self.assertTrue(self.service.delete_ingredient(self.merchant.id, self.flour.id))
        self.assertEqual([i.name for i in self.service.list_ingredients(self.merchant.id)], ['Eggs'])


if __name__ == '__main__':
    unittest.main()
