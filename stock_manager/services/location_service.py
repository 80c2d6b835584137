# stock_manager/services/location_service.py
import logging
from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy.orm import Session

from stock_manager.models import Location, LocationKind, LocationLink
from stock_manager.exceptions import LinkageError, NotFoundError
from stock_manager.services.base import BaseService
from stock_manager.utils.validation import validate_location_fields, raise_for_errors

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ('name', 'address', 'description', 'manager', 'phone', 'email')


class LocationService(BaseService):
    """Service for shops, depots and the links between them.

    Every link is a single LocationLink row, so linking, unlinking and
    deleting always update both directions of the graph at once.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def get_location(self, location_id: int) -> Optional[Location]:
        """Get a location by ID.

        Args:
            location_id: Location ID

        Returns:
            Location object or None if not found
        """
        return self.session.get(Location, location_id)

    def require_location(
        self,
        location_id: int,
        kind: Optional[Union[LocationKind, str]] = None
    ) -> Location:
        """Get a location, raising when it is missing or of the wrong kind.

        Raises:
            NotFoundError: Unknown location
            LinkageError: Location exists but is not of the requested kind
        """
        location = self.get_location(location_id)
        if location is None:
            raise NotFoundError(f"Location {location_id} not found", details={'location_id': location_id})

        if kind is not None:
            kind = LocationKind.from_string(kind)
            if location.kind != kind:
                raise LinkageError(
                    f"Location {location_id} is a {location.kind.value}, expected a {kind.value}",
                    details={'location_id': location_id, 'kind': location.kind.value}
                )
        return location

    def list_locations(self, kind: Optional[Union[LocationKind, str]] = None) -> List[Location]:
        """List locations ordered by name, optionally restricted to one kind."""
        query = self.session.query(Location)
        if kind is not None:
            query = query.filter(Location.kind == LocationKind.from_string(kind))
        return query.order_by(Location.name, Location.id).all()

    def create_location(
        self,
        name: str,
        kind: Union[LocationKind, str],
        address: Optional[str] = None,
        description: Optional[str] = None,
        manager: Optional[str] = None,
        phone: Optional[str] = None,
        email: Optional[str] = None,
        linked_ids: Optional[Iterable[int]] = None
    ) -> Location:
        """Create a shop or a depot.

        Args:
            name: Location name
            kind: 'shop' or 'depot'
            address: Optional address
            description: Optional description
            manager: Optional manager name
            phone: Optional contact phone
            email: Optional contact email
            linked_ids: Locations of the opposite kind to link right away

        Returns:
            The created location
        """
        raise_for_errors(validate_location_fields(name=name), "Invalid location")
        kind = LocationKind.from_string(kind)
        linked_ids = list(linked_ids or [])

        location = Location(
            name=name.strip(),
            kind=kind,
            address=address,
            description=description,
            manager=manager,
            phone=phone,
            email=email
        )
        self.session.add(location)
        self.session.flush()

        try:
            for other_id in linked_ids:
                self._add_link(location, self.require_location(other_id))
        except (LinkageError, NotFoundError):
            self.session.rollback()
            raise

        self._commit(f"create {kind.value} {name!r}")
        logger.info(f"Created {kind.value} {location.id} ({location.name}) linked to {linked_ids}")
        return location

    def update_location(self, location_id: int, **fields) -> Location:
        """Update descriptive fields of a location.

        Links are changed through link, unlink and set_links.
        """
        location = self.require_location(location_id)

        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise_for_errors({field: 'Field cannot be updated' for field in sorted(unknown)}, "Invalid location update")
        if 'name' in fields:
            raise_for_errors(validate_location_fields(name=fields['name'], require_all=False), "Invalid location")
            fields['name'] = fields['name'].strip()

        for field, value in fields.items():
            setattr(location, field, value)

        self._commit(f"update location {location_id}")
        logger.info(f"Updated location {location_id}: {sorted(fields)}")
        return location

    def delete_location(self, location_id: int) -> Dict:
        """Delete a location together with its links and items.

        Returns:
            Dictionary with the number of links and items removed
        """
        location = self.require_location(location_id)

        result = {
            'location_id': location_id,
            'links_removed': len(location.depot_links) + len(location.shop_links),
            'items_removed': len(location.items)
        }

        self.session.delete(location)
        self._commit(f"delete location {location_id}")
        logger.info(f"Deleted location {location_id}: {result}")
        return result

    def _resolve_pair(self, first: Location, second: Location):
        """Order two locations as (shop, depot)."""
        if first.is_shop and second.is_depot:
            return first, second
        if first.is_depot and second.is_shop:
            return second, first
        raise LinkageError(
            f"A link joins a shop and a depot, got {first.kind.value} {first.id} "
            f"and {second.kind.value} {second.id}",
            details={'location_ids': [first.id, second.id]}
        )

    def _find_link(self, shop_id: int, depot_id: int) -> Optional[LocationLink]:
        return self.session.query(LocationLink).filter(
            LocationLink.shop_id == shop_id,
            LocationLink.depot_id == depot_id
        ).first()

    def _add_link(self, first: Location, second: Location) -> bool:
        shop, depot = self._resolve_pair(first, second)
        if self._find_link(shop.id, depot.id):
            return False
        link = LocationLink(shop=shop, depot=depot)
        self.session.add(link)
        self.session.flush()
        return True

    def _remove_link(self, first: Location, second: Location) -> bool:
        shop, depot = self._resolve_pair(first, second)
        link = self._find_link(shop.id, depot.id)
        if link is None:
            return False
        # Detach from both collections so the loaded objects stay in sync
        if link in shop.depot_links:
            shop.depot_links.remove(link)
        if link in depot.shop_links:
            depot.shop_links.remove(link)
        self.session.delete(link)
        self.session.flush()
        return True

    def link(self, shop_id: int, depot_id: int) -> bool:
        """Link a shop to a depot.

        Returns:
            True if a new link was created, False if it already existed
        """
        shop = self.require_location(shop_id, LocationKind.SHOP)
        depot = self.require_location(depot_id, LocationKind.DEPOT)

        created = self._add_link(shop, depot)
        self._commit(f"link shop {shop_id} to depot {depot_id}")
        if created:
            logger.info(f"Linked shop {shop_id} to depot {depot_id}")
        return created

    def unlink(self, shop_id: int, depot_id: int) -> bool:
        """Remove the link between a shop and a depot.

        Returns:
            True if a link was removed, False if there was none
        """
        shop = self.require_location(shop_id, LocationKind.SHOP)
        depot = self.require_location(depot_id, LocationKind.DEPOT)

        removed = self._remove_link(shop, depot)
        self._commit(f"unlink shop {shop_id} from depot {depot_id}")
        if removed:
            logger.info(f"Unlinked shop {shop_id} from depot {depot_id}")
        return removed

    def set_links(self, location_id: int, linked_ids: Iterable[int]) -> Location:
        """Replace every link of a location with the given set.

        Args:
            location_id: Shop or depot whose links are replaced
            linked_ids: Ids of locations of the opposite kind
        """
        location = self.require_location(location_id)
        wanted = set(linked_ids or [])
        current = set(location.linked_depot_ids if location.is_shop else location.linked_shop_ids)

        try:
            for other_id in sorted(current - wanted):
                self._remove_link(location, self.require_location(other_id))
            for other_id in sorted(wanted - current):
                self._add_link(location, self.require_location(other_id))
        except (LinkageError, NotFoundError):
            self.session.rollback()
            raise

        self._commit(f"set links of location {location_id}")
        logger.info(
            f"Links of location {location_id} set to {sorted(wanted)} "
            f"(added {sorted(wanted - current)}, removed {sorted(current - wanted)})"
        )
        return location

    def are_linked(self, shop_id: int, depot_id: int) -> bool:
        return self._find_link(shop_id, depot_id) is not None

    def get_linked_depots(self, shop_id: int) -> List[Location]:
        """Depots that supply a shop, ordered by name."""
        self.require_location(shop_id, LocationKind.SHOP)
        return self.session.query(Location).join(
            LocationLink, LocationLink.depot_id == Location.id
        ).filter(LocationLink.shop_id == shop_id).order_by(Location.name, Location.id).all()

    def get_linked_shops(self, depot_id: int) -> List[Location]:
        """Shops supplied by a depot, ordered by name."""
        self.require_location(depot_id, LocationKind.DEPOT)
        return self.session.query(Location).join(
            LocationLink, LocationLink.shop_id == Location.id
        ).filter(LocationLink.depot_id == depot_id).order_by(Location.name, Location.id).all()

    def check_linkage_symmetry(self) -> List[Dict]:
        """Look for links that break the shop <-> depot invariant.

        Returns:
            List of violations, empty when the graph is consistent
        """
        violations = []
        locations = {location.id: location for location in self.session.query(Location).all()}

        for link in self.session.query(LocationLink).all():
            shop = locations.get(link.shop_id)
            depot = locations.get(link.depot_id)
            if shop is None or depot is None:
                violations.append({'link_id': link.id, 'reason': 'dangling location reference'})
            elif not shop.is_shop or not depot.is_depot:
                violations.append({'link_id': link.id, 'reason': 'link does not join a shop to a depot'})

        for location in locations.values():
            if location.is_shop:
                for depot_id in location.linked_depot_ids:
                    depot = locations.get(depot_id)
                    if depot is None or location.id not in depot.linked_shop_ids:
                        violations.append({'shop_id': location.id, 'depot_id': depot_id,
                                           'reason': 'depot does not list the shop'})
            else:
                for shop_id in location.linked_shop_ids:
                    shop = locations.get(shop_id)
                    if shop is None or location.id not in shop.linked_depot_ids:
                        violations.append({'shop_id': shop_id, 'depot_id': location.id,
                                           'reason': 'shop does not list the depot'})

        return violations
