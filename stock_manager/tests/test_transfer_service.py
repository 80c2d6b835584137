"""
Tests for the depot withdrawal engine.
"""
import unittest
from datetime import timedelta
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from stock_manager.exceptions import (
    InvalidQuantityError, ItemNotFoundError, MissingDestinationError,
    PermissionDeniedError, UnavailableError, ValidationError
)
from stock_manager.models import Item, TransferRecord, TransferType, UserRef, utcnow
from stock_manager.services.transfer_service import TransferService, check_quantity
from stock_manager.tests.base import DatabaseTestCase


class TestCheckQuantity(unittest.TestCase):
    def test_accepts_quantity_within_stock(self):
        check_quantity(1, 1)
        check_quantity(10, 50)

    def test_rejects_bad_quantities(self):
        for quantity in (0, -3, 2.5, '4', True, None):
            with self.assertRaises(InvalidQuantityError):
                check_quantity(quantity, 10)

    def test_rejects_quantity_above_stock(self):
        with self.assertRaises(InvalidQuantityError) as ctx:
            check_quantity(11, 10)
        self.assertEqual(ctx.exception.details['available'], 10)


class TestWithdraw(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.depot = self.make_depot()
        self.shop = self.make_shop()
        self.make_link(self.shop, self.depot)
        self.service = TransferService(self.session)

    def records(self):
        return self.session.query(TransferRecord).all()

    def shop_items(self):
        return self.session.query(Item).filter(Item.location_id == self.shop.id).all()

    def test_transfer_creates_item_at_shop(self):
        item = self.make_item(self.depot, description='Long grain', unit='kg', min_threshold=7)

        record = self.service.withdraw(item, 10, self.depot.id, self.shop.id, 'transfer', self.admin)

        self.session.expire_all()
        self.assertEqual(self.session.get(Item, item.id).quantity, 40)

        shop_items = self.shop_items()
        self.assertEqual(len(shop_items), 1)
        created = shop_items[0]
        self.assertEqual((created.name, created.category, created.quantity), ('Rice', 'Food', 10))
        self.assertEqual(created.description, 'Long grain')
        self.assertEqual(created.unit, 'kg')
        self.assertEqual(created.min_threshold, 7)
        self.assertEqual(created.price, item.price)

        self.assertEqual(len(self.records()), 1)
        self.assertEqual(record.type, TransferType.TRANSFER)
        self.assertEqual(record.quantity, 10)
        self.assertEqual(record.depot_id, self.depot.id)
        self.assertEqual(record.shop_id, self.shop.id)
        self.assertEqual(record.depot_name, 'Depot 1')
        self.assertEqual(record.shop_name, 'Shop 1')
        self.assertEqual(record.user_id, 'admin-1')
        self.assertEqual(record.user_name, 'Admin')

    def test_transfer_merges_into_matching_shop_item(self):
        item = self.make_item(self.depot)
        existing = self.make_item(self.shop, quantity=5)

        self.service.withdraw(item, 10, self.depot.id, self.shop.id, 'transfer', self.admin)

        self.session.expire_all()
        self.assertEqual(self.session.get(Item, item.id).quantity, 40)
        shop_items = self.shop_items()
        self.assertEqual(len(shop_items), 1)
        self.assertEqual(shop_items[0].id, existing.id)
        self.assertEqual(shop_items[0].quantity, 15)

    def test_same_name_other_category_is_a_new_item(self):
        item = self.make_item(self.depot)
        self.make_item(self.shop, category='Snacks', quantity=5)

        self.service.withdraw(item, 10, self.depot.id, self.shop.id, 'transfer', self.admin)

        quantities = sorted((i.category, i.quantity) for i in self.shop_items())
        self.assertEqual(quantities, [('Food', 10), ('Snacks', 5)])

    def test_quantity_above_stock_is_rejected_without_changes(self):
        item = self.make_item(self.depot, quantity=3)

        with self.assertRaises(InvalidQuantityError):
            self.service.withdraw(item, 10, self.depot.id, self.shop.id, 'transfer', self.admin)

        self.session.expire_all()
        self.assertEqual(self.session.get(Item, item.id).quantity, 3)
        self.assertEqual(self.shop_items(), [])
        self.assertEqual(self.records(), [])

    def test_stale_snapshot_is_checked_against_stored_stock(self):
        item = self.make_item(self.depot, quantity=20)
        # Another process took stock since the caller read the item
        self.session.query(Item).filter(Item.id == item.id).update({'quantity': 4})
        self.session.commit()

        class StaleItem:
            id = item.id
            quantity = 20

        with self.assertRaises(InvalidQuantityError):
            self.service.withdraw(StaleItem(), 10, self.depot.id, self.shop.id, 'transfer', self.admin)

        self.session.expire_all()
        self.assertEqual(self.session.get(Item, item.id).quantity, 4)
        self.assertEqual(self.records(), [])

    def test_remove_mode(self):
        item = self.make_item(self.depot, quantity=8)
        self.make_item(self.shop, quantity=5)

        record = self.service.withdraw(item, 8, self.depot.id, self.shop.id, 'remove', self.admin)

        self.session.expire_all()
        self.assertEqual(self.session.get(Item, item.id).quantity, 0)
        self.assertEqual([i.quantity for i in self.shop_items()], [5])
        self.assertEqual(record.type, TransferType.REMOVE)
        self.assertIsNone(record.shop_id)
        self.assertIsNone(record.shop_name)
        self.assertEqual(len(self.records()), 1)

    def test_record_defaults(self):
        item = self.make_item(self.depot, category='')

        record = self.service.withdraw(
            item.id, 1, self.depot.id, None, TransferType.REMOVE, UserRef(id='u-9', is_admin=True)
        )

        self.assertEqual(record.item_description, '')
        self.assertEqual(record.item_category, 'Non catégorisé')
        self.assertEqual(record.unit, 'unité(s)')
        self.assertEqual(record.user_name, 'Utilisateur inconnu')

    def test_transfer_without_destination(self):
        item = self.make_item(self.depot)

        with self.assertRaises(MissingDestinationError):
            self.service.withdraw(item, 1, self.depot.id, None, 'transfer', self.admin)

        with self.assertRaises(MissingDestinationError):
            self.service.withdraw(item, 1, self.depot.id, 999, 'transfer', self.admin)

        self.assertEqual(self.records(), [])

    def test_invalid_mode(self):
        item = self.make_item(self.depot)
        with self.assertRaises(ValidationError):
            self.service.withdraw(item, 1, self.depot.id, self.shop.id, 'sell', self.admin)

    def test_unknown_item(self):
        with self.assertRaises(ItemNotFoundError):
            self.service.withdraw(12345, 1, self.depot.id, self.shop.id, 'transfer', self.admin)

    def test_item_from_another_depot(self):
        other_depot = self.make_depot('Depot 2')
        item = self.make_item(other_depot)

        with self.assertRaises(ItemNotFoundError):
            self.service.withdraw(item, 1, self.depot.id, self.shop.id, 'transfer', self.admin)

    def test_unlinked_shop_is_denied(self):
        other_shop = self.make_shop('Shop 2')
        item = self.make_item(self.depot)

        with self.assertRaises(PermissionDeniedError):
            self.service.withdraw(item, 1, self.depot.id, other_shop.id, 'transfer', self.admin)

        self.session.expire_all()
        self.assertEqual(self.session.get(Item, item.id).quantity, 50)

    def test_withdraw_from_a_shop_is_denied(self):
        other_shop = self.make_shop('Shop 2')
        item = self.make_item(other_shop)

        with self.assertRaises(PermissionDeniedError):
            self.service.withdraw(item, 1, other_shop.id, None, 'remove', self.admin)

    def test_shop_user_transfers_into_own_shop(self):
        item = self.make_item(self.depot)
        user = self.shop_user(self.shop)

        record = self.service.withdraw(item, 2, self.depot.id, self.shop.id, 'transfer', user)

        self.assertEqual(record.user_id, 'user-1')
        self.assertEqual(record.user_name, 'Alice')

    def test_shop_user_cannot_transfer_into_another_shop(self):
        other_shop = self.make_shop('Shop 2')
        self.make_link(other_shop, self.depot)
        item = self.make_item(self.depot)

        with self.assertRaises(PermissionDeniedError):
            self.service.withdraw(item, 2, self.depot.id, other_shop.id, 'transfer', self.shop_user(self.shop))

    def test_shop_user_cannot_remove_from_unlinked_depot(self):
        other_depot = self.make_depot('Depot 2')
        item = self.make_item(other_depot)

        with self.assertRaises(PermissionDeniedError):
            self.service.withdraw(item, 2, other_depot.id, None, 'remove', self.shop_user(self.shop))

    def test_user_without_shop_is_denied(self):
        item = self.make_item(self.depot)
        with self.assertRaises(PermissionDeniedError):
            self.service.withdraw(item, 2, self.depot.id, None, 'remove', UserRef(id='u-2'))

    def test_replayed_operation_is_applied_once(self):
        item = self.make_item(self.depot)

        first = self.service.withdraw(item, 10, self.depot.id, self.shop.id, 'transfer', self.admin,
                                      operation_id='op-1')
        second = self.service.withdraw(item, 10, self.depot.id, self.shop.id, 'transfer', self.admin,
                                       operation_id='op-1')

        self.assertEqual(first.id, second.id)
        self.session.expire_all()
        self.assertEqual(self.session.get(Item, item.id).quantity, 40)
        self.assertEqual([i.quantity for i in self.shop_items()], [10])
        self.assertEqual(len(self.records()), 1)

    def test_replay_after_emptying_the_item_returns_the_original(self):
        item = self.make_item(self.depot, quantity=8)

        first = self.service.withdraw(item, 8, self.depot.id, None, 'remove', self.admin, operation_id='op-2')
        second = self.service.withdraw(item, 8, self.depot.id, None, 'remove', self.admin, operation_id='op-2')

        self.assertEqual(first.id, second.id)
        self.session.expire_all()
        self.assertEqual(self.session.get(Item, item.id).quantity, 0)
        self.assertEqual(len(self.records()), 1)

    def test_replay_after_item_deleted_returns_the_original(self):
        item = self.make_item(self.depot, quantity=8)
        item_id = item.id
        first = self.service.withdraw(item_id, 8, self.depot.id, self.shop.id, 'transfer', self.admin,
                                      operation_id='op-3')
        self.session.delete(self.session.get(Item, item_id))
        self.session.commit()

        second = self.service.withdraw(item_id, 8, self.depot.id, self.shop.id, 'transfer', self.admin,
                                       operation_id='op-3')

        self.assertEqual(first.id, second.id)

    def test_failed_audit_append_rolls_back_everything(self):
        item = self.make_item(self.depot)
        shop_item = self.make_item(self.shop, quantity=5)
        error = OperationalError('INSERT INTO transfer_record', {}, Exception('database is locked'))

        with patch.object(TransferService, 'get_by_operation_id', return_value=None), \
                patch('stock_manager.services.transfer_service.TransferRecord', side_effect=error):
            with self.assertRaises(UnavailableError) as ctx:
                self.service.withdraw(item, 10, self.depot.id, self.shop.id, 'transfer', self.admin)

        self.assertTrue(ctx.exception.retryable)
        self.session.expire_all()
        self.assertEqual(self.session.get(Item, item.id).quantity, 50)
        self.assertEqual(self.session.get(Item, shop_item.id).quantity, 5)
        self.assertEqual(self.records(), [])


class TestTransferHistory(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.depot = self.make_depot()
        self.shop = self.make_shop()
        self.make_link(self.shop, self.depot)
        self.item = self.make_item(self.depot, quantity=100)
        self.service = TransferService(self.session)
        self.alice = self.shop_user(self.shop)
        self.bob = self.shop_user(self.shop, user_id='user-2', name='Bob')

    def withdraw(self, user, quantity=1, mode='transfer'):
        shop_id = self.shop.id if mode == 'transfer' else None
        return self.service.withdraw(self.item, quantity, self.depot.id, shop_id, mode, user)

    def test_users_only_see_their_own_records(self):
        self.withdraw(self.alice)
        self.withdraw(self.bob)
        self.withdraw(self.alice, mode='remove')

        alice_records = self.service.get_transfers(user_id='user-1')
        self.assertEqual(len(alice_records), 2)
        self.assertTrue(all(r.user_id == 'user-1' for r in alice_records))

        self.assertEqual(len(self.service.get_transfers(is_admin=True)), 3)

    def test_history_is_newest_first_and_limited(self):
        for quantity in range(1, 8):
            self.withdraw(self.alice, quantity)

        records = self.service.get_transfers(user_id='user-1')
        self.assertEqual([r.quantity for r in records], [7, 6, 5, 4, 3])
        self.assertEqual(len(self.service.get_transfers(user_id='user-1', limit=0)), 7)

    def test_history_requires_a_user(self):
        with self.assertRaises(PermissionDeniedError):
            self.service.get_transfers()

    def test_stats(self):
        self.withdraw(self.alice)
        self.withdraw(self.alice, mode='remove')
        old = self.withdraw(self.alice)
        old.created_at = utcnow() - timedelta(days=10)
        self.session.commit()

        stats = self.service.get_transfer_stats(is_admin=True)

        self.assertEqual(stats['total'], 3)
        self.assertEqual(stats['this_week'], 2)
        self.assertEqual(stats['by_type'], {'transfer': 2, 'remove': 1})
        self.assertLessEqual(stats['today'], 2)

    def test_export(self):
        self.withdraw(self.alice, 3)
        self.withdraw(self.bob, 2, mode='remove')

        export = self.service.export_transfer_data(self.service.get_transfers(is_admin=True))

        self.assertEqual(export['total_records'], 2)
        self.assertEqual(export['headers'][0], 'Date de Transfert')
        removal, transfer = export['rows']
        self.assertEqual(removal[1:], ['Rice', 2, 'Depot 1', 'N/A', 'Retrait', 'Bob'])
        self.assertEqual(transfer[1:], ['Rice', 3, 'Depot 1', 'Shop 1', 'Transfert', 'Alice'])
