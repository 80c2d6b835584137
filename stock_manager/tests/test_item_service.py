"""
Tests for items and stock status helpers.
"""
import unittest
from decimal import Decimal
from types import SimpleNamespace

from stock_manager.core.stock_status import (
    STATUS_GOOD, STATUS_LOW, STATUS_OUT, calculate_stock_stats, calculate_total_value,
    filter_items_by_status, get_stock_status, get_stock_status_text
)
from stock_manager.exceptions import NotFoundError, ValidationError
from stock_manager.services.item_service import ItemService
from stock_manager.tests.base import DatabaseTestCase


class TestStockStatus(unittest.TestCase):
    def test_status(self):
        self.assertEqual(get_stock_status(0, 5), STATUS_OUT)
        self.assertEqual(get_stock_status(5, 5), STATUS_LOW)
        self.assertEqual(get_stock_status(3, 5), STATUS_LOW)
        self.assertEqual(get_stock_status(6, 5), STATUS_GOOD)
        self.assertEqual(get_stock_status_text(STATUS_OUT), 'Rupture')

    def test_stats(self):
        items = [
            SimpleNamespace(quantity=0, min_threshold=5, price=Decimal('1.00')),
            SimpleNamespace(quantity=2, min_threshold=5, price=Decimal('10.00')),
            SimpleNamespace(quantity=10, min_threshold=5, price=Decimal('2.50')),
        ]

        stats = calculate_stock_stats(items)

        self.assertEqual(stats['total_items'], 3)
        self.assertEqual(stats['stock_out'], 1)
        self.assertEqual(stats['stock_low'], 1)
        self.assertEqual(stats['stock_normal'], 1)
        self.assertEqual(stats['total_quantity'], 12)
        self.assertEqual(calculate_total_value(items), Decimal('45.00'))
        self.assertEqual(len(filter_items_by_status(items, STATUS_LOW)), 1)


class TestItemService(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.depot = self.make_depot()
        self.shop = self.make_shop()
        self.service = ItemService(self.session)

    def test_create_item_uses_default_threshold(self):
        item = self.service.create_item(self.depot.id, ' Rice ', 'Food', '2.50', quantity=10)

        self.assertEqual(item.name, 'Rice')
        self.assertEqual(item.min_threshold, 5)
        self.assertEqual(item.price, Decimal('2.50'))

    def test_create_item_validation(self):
        with self.assertRaises(ValidationError) as ctx:
            self.service.create_item(self.depot.id, '', 'Food', 0, quantity=-1)
        self.assertEqual(set(ctx.exception.details), {'name', 'price', 'quantity'})

        with self.assertRaises(NotFoundError):
            self.service.create_item(999, 'Rice', 'Food', '2.50')

    def test_duplicate_name_and_category_is_rejected(self):
        self.service.create_item(self.depot.id, 'Rice', 'Food', '2.50')

        with self.assertRaises(ValidationError):
            self.service.create_item(self.depot.id, 'Rice', 'Food', '3.00')

        # Same pair at another location, or another category, is fine
        self.service.create_item(self.shop.id, 'Rice', 'Food', '2.50')
        self.service.create_item(self.depot.id, 'Rice', 'Bulk', '2.00')

    def test_update_item(self):
        item = self.service.create_item(self.depot.id, 'Rice', 'Food', '2.50')
        self.service.create_item(self.depot.id, 'Pasta', 'Food', '1.50')

        self.service.update_quantity(item.id, 12)
        self.service.update_price(item.id, '2.75')
        self.assertEqual(item.quantity, 12)
        self.assertEqual(item.price, Decimal('2.75'))

        with self.assertRaises(ValidationError):
            self.service.update_item(item.id, name='Pasta')
        with self.assertRaises(ValidationError):
            self.service.update_quantity(item.id, -1)
        with self.assertRaises(ValidationError):
            self.service.update_item(item.id, location_id=self.shop.id)

    def test_delete_item(self):
        item = self.service.create_item(self.depot.id, 'Rice', 'Food', '2.50')
        self.assertTrue(self.service.delete_item(item.id))
        self.assertIsNone(self.service.get_item(item.id))
        with self.assertRaises(NotFoundError):
            self.service.delete_item(item.id)

    def test_withdrawal_candidates_come_from_linked_depots(self):
        other_depot = self.make_depot('Depot 2')
        self.make_link(self.shop, self.depot)
        in_stock = self.make_item(self.depot, name='Rice')
        self.make_item(self.depot, name='Empty', quantity=0)
        self.make_item(other_depot, name='Far away')
        self.make_item(self.shop, name='Already here')

        candidates = self.service.get_withdrawal_candidates(self.shop.id)

        self.assertEqual([i.id for i in candidates], [in_stock.id])

    def test_search_and_low_stock(self):
        self.make_item(self.depot, name='Basmati Rice', quantity=2)
        self.make_item(self.depot, name='Olive Oil', category='Oils', quantity=50)

        self.assertEqual([i.name for i in self.service.search_items('rice')], ['Basmati Rice'])
        self.assertEqual([i.name for i in self.service.search_items('oil', self.depot.id)], ['Olive Oil'])
        self.assertEqual([i.name for i in self.service.get_low_stock_items(self.depot.id)], ['Basmati Rice'])
        self.assertEqual(self.service.get_stock_value(self.depot.id), Decimal('130.00'))

    def test_categories(self):
        self.service.create_category('Food')
        self.service.create_category('Drinks')
        with self.assertRaises(ValidationError):
            self.service.create_category('Food')

        self.assertEqual([c.name for c in self.service.list_categories()], ['Drinks', 'Food'])
