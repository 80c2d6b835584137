"""
Tests for shops, depots and the linkage graph.
"""
from stock_manager.exceptions import LinkageError, NotFoundError, ValidationError
from stock_manager.models import Item, Location, LocationKind, LocationLink
from stock_manager.services.location_service import LocationService
from stock_manager.tests.base import DatabaseTestCase


class TestLocationService(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.service = LocationService(self.session)

    def assert_symmetric(self):
        shops = self.service.list_locations('shop')
        depots = {d.id: d for d in self.service.list_locations('depot')}
        for shop in shops:
            for depot in depots.values():
                self.assertEqual(
                    depot.id in shop.linked_depot_ids,
                    shop.id in depot.linked_shop_ids,
                    f"shop {shop.id} / depot {depot.id} links disagree"
                )
        self.assertEqual(self.service.check_linkage_symmetry(), [])

    def test_create_location(self):
        shop = self.service.create_location('Centre Ville', 'shop', address='1 rue Haute')

        self.assertEqual(shop.kind, LocationKind.SHOP)
        self.assertEqual(shop.address, '1 rue Haute')
        self.assertTrue(shop.is_shop)

    def test_create_requires_name(self):
        with self.assertRaises(ValidationError):
            self.service.create_location('  ', 'depot')

    def test_create_with_links(self):
        depot_1 = self.service.create_location('Depot Nord', 'depot')
        depot_2 = self.service.create_location('Depot Sud', 'depot')

        shop = self.service.create_location('Shop', 'shop', linked_ids=[depot_1.id, depot_2.id])

        self.assertEqual(shop.linked_depot_ids, sorted([depot_1.id, depot_2.id]))
        self.assertEqual(depot_1.linked_shop_ids, [shop.id])
        self.assert_symmetric()

    def test_create_with_links_from_a_generator(self):
        depots = [self.service.create_location(f'Depot {n}', 'depot') for n in (1, 2)]
        depot_ids = [d.id for d in depots]

        with self.assertLogs('stock_manager.services.location_service', level='INFO') as logs:
            shop = self.service.create_location('Shop', 'shop', linked_ids=(i for i in depot_ids))

        self.assertEqual(shop.linked_depot_ids, sorted(depot_ids))
        self.assertIn(f"linked to {depot_ids}", logs.output[-1])

    def test_create_with_bad_link_creates_nothing(self):
        other_shop = self.service.create_location('Shop A', 'shop')

        with self.assertRaises(LinkageError):
            self.service.create_location('Shop B', 'shop', linked_ids=[other_shop.id])

        self.assertEqual([l.name for l in self.service.list_locations()], ['Shop A'])

    def test_link_and_unlink(self):
        shop = self.service.create_location('S1', 'shop')
        depot = self.service.create_location('D1', 'depot')

        self.assertTrue(self.service.link(shop.id, depot.id))
        self.assertFalse(self.service.link(shop.id, depot.id))
        self.assertTrue(self.service.are_linked(shop.id, depot.id))
        self.assertEqual(shop.linked_depot_ids, [depot.id])
        self.assertEqual(depot.linked_shop_ids, [shop.id])

        self.assertTrue(self.service.unlink(shop.id, depot.id))
        self.assertFalse(self.service.unlink(shop.id, depot.id))

        self.session.expire_all()
        self.assertNotIn(depot.id, shop.linked_depot_ids)
        self.assertNotIn(shop.id, depot.linked_shop_ids)
        self.assert_symmetric()

    def test_link_rejects_wrong_kinds(self):
        shop = self.service.create_location('S1', 'shop')
        other_shop = self.service.create_location('S2', 'shop')

        with self.assertRaises(LinkageError):
            self.service.link(shop.id, other_shop.id)
        with self.assertRaises(NotFoundError):
            self.service.link(shop.id, 999)

    def test_set_links_replaces_all(self):
        shop = self.service.create_location('S1', 'shop')
        d1 = self.service.create_location('D1', 'depot')
        d2 = self.service.create_location('D2', 'depot')
        d3 = self.service.create_location('D3', 'depot')
        self.service.link(shop.id, d1.id)
        self.service.link(shop.id, d2.id)

        self.service.set_links(shop.id, [d2.id, d3.id])

        self.session.expire_all()
        self.assertEqual(shop.linked_depot_ids, sorted([d2.id, d3.id]))
        self.assertEqual(d1.linked_shop_ids, [])
        self.assertEqual(d3.linked_shop_ids, [shop.id])
        self.assert_symmetric()

    def test_set_links_from_depot_side(self):
        depot = self.service.create_location('D1', 'depot')
        s1 = self.service.create_location('S1', 'shop')
        s2 = self.service.create_location('S2', 'shop')

        self.service.set_links(depot.id, [s1.id, s2.id])

        self.assertEqual([s.id for s in self.service.get_linked_shops(depot.id)], [s1.id, s2.id])
        self.assertEqual([d.id for d in self.service.get_linked_depots(s1.id)], [depot.id])
        self.assert_symmetric()

    def test_delete_removes_links_and_items(self):
        shop = self.service.create_location('S1', 'shop')
        depot = self.service.create_location('D1', 'depot')
        self.service.link(shop.id, depot.id)
        self.make_item(depot)

        result = self.service.delete_location(depot.id)

        self.assertEqual(result['links_removed'], 1)
        self.assertEqual(result['items_removed'], 1)
        self.session.expire_all()
        self.assertIsNone(self.session.get(Location, depot.id))
        self.assertEqual(self.session.query(LocationLink).count(), 0)
        self.assertEqual(self.session.query(Item).count(), 0)
        self.assertEqual(shop.linked_depot_ids, [])
        self.assert_symmetric()

    def test_update_location(self):
        depot = self.service.create_location('D1', 'depot')

        self.service.update_location(depot.id, name=' Depot Central ', phone='0102030405')

        self.assertEqual(depot.name, 'Depot Central')
        self.assertEqual(depot.phone, '0102030405')
        with self.assertRaises(ValidationError):
            self.service.update_location(depot.id, kind='shop')

    def test_require_location_kind(self):
        shop = self.service.create_location('S1', 'shop')
        with self.assertRaises(LinkageError):
            self.service.require_location(shop.id, 'depot')
