"""
Command line interface for the Stock Manager.

Provides database setup, shop/depot management, depot withdrawals,
transfer history, shop sales and invoice/quote numbering from the shell.
"""
import argparse
import sys

from tabulate import tabulate

from stock_manager.db import db, session_scope
from stock_manager.logging_setup import logger, get_logger
from stock_manager.exceptions import StockManagerError
from stock_manager.models import UserRef
from stock_manager.core.stock_status import calculate_stock_stats, get_stock_status, get_stock_status_text
from stock_manager.services import (
    DocumentService, ItemService, LocationService, NumberingService, SaleService, TransferService
)

def init_application(db_url=None):
    """Initialize application components."""
    db.initialize(db_url)

    log = logger.app_logger
    log.info("Stock Manager initialized")
    log.info(f"Using database: {db.engine.url.render_as_string(hide_password=True)}")

    return True

def setup_database(args):
    log = get_logger('setup')
    if args.drop:
        log.warning("Dropping all tables")
        db.drop_all_tables()
    db.create_all_tables()
    log.info("Database schema created")
    print("Database ready")

def create_location(args):
    with session_scope() as session:
        location = LocationService(session).create_location(
            name=args.name,
            kind=args.kind,
            address=args.address,
            manager=args.manager,
            phone=args.phone,
            email=args.email,
            linked_ids=args.link
        )
        print(f"Created {location.kind.value} {location.id} ({location.name})")

def link_locations(args):
    with session_scope() as session:
        service = LocationService(session)
        if args.command == 'link':
            changed = service.link(args.shop_id, args.depot_id)
            print(f"Linked shop {args.shop_id} to depot {args.depot_id}" if changed else "Already linked")
        else:
            changed = service.unlink(args.shop_id, args.depot_id)
            print(f"Unlinked shop {args.shop_id} from depot {args.depot_id}" if changed else "Not linked")

def list_locations(args):
    with session_scope() as session:
        locations = LocationService(session).list_locations(args.kind)
        table_data = [
            [
                location.id,
                location.kind.value,
                location.name,
                ', '.join(str(i) for i in (location.linked_depot_ids if location.is_shop else location.linked_shop_ids))
            ]
            for location in locations
        ]
        print(tabulate(table_data, headers=['ID', 'Kind', 'Name', 'Linked to']))

def check_links(args):
    with session_scope() as session:
        violations = LocationService(session).check_linkage_symmetry()
        if not violations:
            print("Linkage graph is consistent")
            return
        print(tabulate(violations, headers='keys'))
        return 1

def add_item(args):
    with session_scope() as session:
        item = ItemService(session).create_item(
            location_id=args.location_id,
            name=args.name,
            category=args.category,
            price=args.price,
            quantity=args.quantity,
            min_threshold=args.min_threshold,
            description=args.description,
            unit=args.unit
        )
        print(f"Created item {item.id} ({item.name}) with quantity {item.quantity}")

def list_items(args):
    with session_scope() as session:
        service = ItemService(session)
        if args.candidates_for:
            items = service.get_withdrawal_candidates(args.candidates_for)
        else:
            items = service.get_items(args.location_id)

        table_data = [
            [
                item.id,
                item.location_id,
                item.name,
                item.category,
                item.quantity,
                item.unit or '',
                item.min_threshold,
                item.price,
                get_stock_status_text(get_stock_status(item.quantity, item.min_threshold))
            ]
            for item in items
        ]
        print(tabulate(table_data, headers=[
            'ID', 'Location', 'Name', 'Category', 'Quantity', 'Unit', 'Min', 'Price', 'Status'
        ]))
        print(f"\nTotal Items: {len(items)}")

def withdraw(args):
    log = get_logger('transfers')
    acting_user = UserRef(
        id=args.user_id,
        name=args.user_name,
        location_id=args.user_shop,
        is_admin=args.admin
    )

    with session_scope() as session:
        record = TransferService(session).withdraw(
            item=args.item_id,
            quantity=args.quantity,
            depot_id=args.depot_id,
            shop_id=args.shop_id,
            mode=args.mode,
            acting_user=acting_user,
            operation_id=args.operation_id
        )
        log.info(f"Transfer {record.id} recorded by {acting_user.display_name}")
        print(f"Recorded {record.type.value} {record.id}: {record.quantity} {record.unit} of {record.item_name}")

def show_history(args):
    with session_scope() as session:
        service = TransferService(session)
        records = service.get_transfers(
            user_id=args.user_id,
            is_admin=args.admin,
            limit=args.limit,
            depot_id=args.depot_id,
            shop_id=args.shop_id
        )
        export = service.export_transfer_data(records)
        print(tabulate(export['rows'], headers=export['headers']))

        stats = service.get_transfer_stats(user_id=args.user_id, is_admin=args.admin)
        print(
            f"\nTotal: {stats['total']}  Today: {stats['today']}  Last 7 days: {stats['this_week']}  "
            f"Transfers: {stats['by_type']['transfer']}  Removals: {stats['by_type']['remove']}"
        )

def sell(args):
    log = get_logger('sales')
    acting_user = UserRef(
        id=args.user_id,
        name=args.user_name,
        location_id=args.user_shop,
        is_admin=args.admin
    )

    with session_scope() as session:
        record = SaleService(session).record_sale(
            item=args.item_id,
            quantity=args.quantity,
            acting_user=acting_user,
            unit_price=args.unit_price,
            operation_id=args.operation_id
        )
        log.info(f"Sale {record.id} recorded by {acting_user.display_name}")
        print(f"Sold {record.quantity} {record.unit} of {record.item_name} for {record.total_price}")

def show_sales(args):
    with session_scope() as session:
        service = SaleService(session)
        records = service.get_sales(
            user_id=args.user_id,
            is_admin=args.admin,
            limit=args.limit,
            shop_id=args.shop_id
        )
        export = service.export_sales_data(records)
        print(tabulate(export['rows'], headers=export['headers']))
        print(f"\nTotal: {export['total_amount']} over {export['total_records']} sale(s)")

        stats = service.get_sales_stats(user_id=args.user_id, is_admin=args.admin)
        print(tabulate(
            [[period.replace('_', ' ').capitalize(), values['count'], values['total']]
             for period, values in stats.items()],
            headers=['Period', 'Sales', 'Revenue']
        ))

def next_number(args):
    with session_scope() as session:
        service = NumberingService(session)
        if args.preview:
            print(service.preview_number(args.document_type, args.year))
        else:
            print(service.next_number(args.document_type, args.year))

def stock_report(args):
    with session_scope() as session:
        items = ItemService(session).get_items(args.location_id)
        stats = calculate_stock_stats(items)
        print(tabulate(
            [[key.replace('_', ' ').capitalize(), value] for key, value in stats.items()],
            headers=['Metric', 'Value']
        ))

        if args.location_id:
            documents = DocumentService(session).list_documents(location_id=args.location_id)
            if documents:
                print("\nDocuments:")
                print(tabulate(
                    [[d.document_type.value, d.number, d.status.value, d.total_amount] for d in documents],
                    headers=['Type', 'Number', 'Status', 'Total']
                ))

COMMANDS = {
    'init-db': setup_database,
    'create-location': create_location,
    'link': link_locations,
    'unlink': link_locations,
    'list-locations': list_locations,
    'check-links': check_links,
    'add-item': add_item,
    'list-items': list_items,
    'withdraw': withdraw,
    'history': show_history,
    'sell': sell,
    'sales': show_sales,
    'next-number': next_number,
    'stock-report': stock_report,
}

def build_parser():
    parser = argparse.ArgumentParser(description='Stock Manager')
    parser.add_argument('--db-url', type=str, help='Database URL (overrides settings.ini)')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    init_parser = subparsers.add_parser('init-db', help='Create the database schema')
    init_parser.add_argument('--drop', action='store_true', help='Drop existing tables first')

    location_parser = subparsers.add_parser('create-location', help='Create a shop or a depot')
    location_parser.add_argument('name', type=str)
    location_parser.add_argument('--kind', choices=['shop', 'depot'], required=True)
    location_parser.add_argument('--address', type=str)
    location_parser.add_argument('--manager', type=str)
    location_parser.add_argument('--phone', type=str)
    location_parser.add_argument('--email', type=str)
    location_parser.add_argument('--link', type=int, action='append',
                                 help='ID of a location of the opposite kind to link (repeatable)')

    for name, text in (('link', 'Link a shop to a depot'), ('unlink', 'Remove a shop/depot link')):
        link_parser = subparsers.add_parser(name, help=text)
        link_parser.add_argument('shop_id', type=int)
        link_parser.add_argument('depot_id', type=int)

    list_locations_parser = subparsers.add_parser('list-locations', help='List shops and depots')
    list_locations_parser.add_argument('--kind', choices=['shop', 'depot'])

    subparsers.add_parser('check-links', help='Verify that every shop/depot link is symmetric')

    item_parser = subparsers.add_parser('add-item', help='Add an item to a location')
    item_parser.add_argument('location_id', type=int)
    item_parser.add_argument('name', type=str)
    item_parser.add_argument('--category', type=str, default='')
    item_parser.add_argument('--price', type=str, required=True)
    item_parser.add_argument('--quantity', type=int, default=0)
    item_parser.add_argument('--min-threshold', type=int, help='Low stock threshold (default from settings)')
    item_parser.add_argument('--description', type=str)
    item_parser.add_argument('--unit', type=str)

    items_parser = subparsers.add_parser('list-items', help='List items')
    items_parser.add_argument('--location-id', type=int, help='Only items of this location')
    items_parser.add_argument('--candidates-for', type=int, metavar='SHOP_ID',
                              help='Depot items in stock that this shop can withdraw')

    withdraw_parser = subparsers.add_parser('withdraw', help='Withdraw stock from a depot')
    withdraw_parser.add_argument('item_id', type=int)
    withdraw_parser.add_argument('quantity', type=int)
    withdraw_parser.add_argument('--depot-id', type=int, required=True)
    withdraw_parser.add_argument('--shop-id', type=int, help='Destination shop (transfer mode)')
    withdraw_parser.add_argument('--mode', choices=['transfer', 'remove'], default='transfer')
    withdraw_parser.add_argument('--user-id', type=str, required=True)
    withdraw_parser.add_argument('--user-name', type=str)
    withdraw_parser.add_argument('--user-shop', type=int, help='Shop the user is assigned to')
    withdraw_parser.add_argument('--admin', action='store_true')
    withdraw_parser.add_argument('--operation-id', type=str, help='Idempotency key for retries')

    history_parser = subparsers.add_parser('history', help='Show transfer history')
    history_parser.add_argument('--user-id', type=str)
    history_parser.add_argument('--admin', action='store_true')
    history_parser.add_argument('--limit', type=int, help='Number of records, 0 for all')
    history_parser.add_argument('--depot-id', type=int)
    history_parser.add_argument('--shop-id', type=int)

    sell_parser = subparsers.add_parser('sell', help='Record a sale of shop stock')
    sell_parser.add_argument('item_id', type=int)
    sell_parser.add_argument('quantity', type=int, nargs='?', default=1)
    sell_parser.add_argument('--unit-price', type=str, help='Price per unit (default: item price)')
    sell_parser.add_argument('--user-id', type=str, required=True)
    sell_parser.add_argument('--user-name', type=str)
    sell_parser.add_argument('--user-shop', type=int, help='Shop the user is assigned to')
    sell_parser.add_argument('--admin', action='store_true')
    sell_parser.add_argument('--operation-id', type=str, help='Idempotency key for retries')

    sales_parser = subparsers.add_parser('sales', help='Show sales history and revenue')
    sales_parser.add_argument('--user-id', type=str)
    sales_parser.add_argument('--admin', action='store_true')
    sales_parser.add_argument('--limit', type=int, help='Number of records, 0 for all')
    sales_parser.add_argument('--shop-id', type=int)

    number_parser = subparsers.add_parser('next-number', help='Allocate an invoice or quote number')
    number_parser.add_argument('document_type', choices=['invoice', 'quote'])
    number_parser.add_argument('--year', type=int)
    number_parser.add_argument('--preview', action='store_true', help='Show the next number without allocating it')

    report_parser = subparsers.add_parser('stock-report', help='Stock counters and value')
    report_parser.add_argument('--location-id', type=int)

    return parser

def main(argv=None):
    """Main application entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    init_application(args.db_url)
    log = get_logger('cli')

    try:
        result = COMMANDS[args.command](args)
    except StockManagerError as e:
        log.error(f"{args.command} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return result or 0

if __name__ == "__main__":
    sys.exit(main())
