#!/usr/bin/env python3
"""
ConfigMgr Software Device Finder
Find every device that has a software title installed, grouped by the exact
display name reported in hardware inventory
"""

import csv
import json
import logging
import os
import sys
import time
from typing import Dict, List

from services import (
    ConfigurationError, InventoryQueryError, SearchType, SiteRegistry,
    SoftwareItem, build_collection_query, client_factory, compose_queries,
    find_software_devices
)


def load_config(path: str) -> Dict:
    """
    Load CLI settings from a JSON file.

    Raises:
        ConfigurationError: if the file is missing, unreadable or incomplete
    """
    if not os.path.exists(path):
        raise ConfigurationError(f"Config file '{path}' not found")

    try:
        with open(path, 'r') as f:
            config = json.load(f)
    except ValueError as e:
        raise ConfigurationError(f"Config file '{path}' is not valid JSON: {e}")

    missing = [key for key in ('tenant_id', 'client_id', 'client_secret', 'sites') if not config.get(key)]
    if missing:
        raise ConfigurationError(f"Config file '{path}' is missing: {', '.join(missing)}")

    return config


def credentials_from_config(config: Dict) -> Dict:
    credentials = {key: config[key] for key in ('tenant_id', 'client_id', 'client_secret')}
    if config.get('api_scope'):
        credentials['api_scope'] = config['api_scope']
    if config.get('timeout'):
        credentials['timeout'] = config['timeout']
    return credentials


def display_item(item: SoftwareItem):
    """Print one software group as soon as it is available."""
    print(f"\n📦 {item.software_name}")
    print(f"   Devices: {item.device_count}")
    for device in item.devices:
        print(f"      • {device.device_name or '(unresolved)'}")


def display_summary(items: List[SoftwareItem], product_name: str, search_type: SearchType):
    total_devices = sum(item.device_count for item in items)
    unresolved = sum(1 for item in items for device in item.devices if not device.device_name)

    print(f"\n{'=' * 80}")
    print(f"📊 SUMMARY - {product_name} ({search_type.value})")
    print(f"{'=' * 80}")
    print(f"   Display names: {len(items)}")
    print(f"   Devices: {total_devices}")
    if unresolved:
        print(f"\n⚠️  {unresolved} device(s) could not be resolved to a name")


def display_queries(product_name: str, search_type: SearchType):
    print(f"\n🔎 INVENTORY QUERIES")
    print("-" * 60)
    for query in compose_queries(product_name, search_type):
        print(f"   {query.to_wql()}")
    print(f"\n📋 COLLECTION QUERY (not created)")
    print("-" * 60)
    print(f"   {build_collection_query(product_name, search_type)}")


def export_results(items: List[SoftwareItem], filename_prefix: str = "software_devices") -> List[str]:
    """Export results to JSON and CSV files."""
    timestamp = time.strftime('%Y%m%d_%H%M%S')

    json_file = f"{filename_prefix}_{timestamp}.json"
    with open(json_file, 'w') as f:
        json.dump([item.to_dict() for item in items], f, indent=2)

    csv_file = f"{filename_prefix}_{timestamp}.csv"
    with open(csv_file, 'w', newline='') as f:
        writer = csv.writer(f)
        writer.writerow(['SoftwareName', 'DeviceName'])
        for item in items:
            for device in item.devices:
                writer.writerow([device.software_name, device.device_name])

    print(f"\n✅ Files exported:")
    print(f"   • {json_file}")
    print(f"   • {csv_file}")
    return [json_file, csv_file]


def main(argv=None) -> int:
    import argparse

    parser = argparse.ArgumentParser(
        description='ConfigMgr Software Device Finder - list devices with a software title installed'
    )
    parser.add_argument('--site-code', '-s', required=True, help='ConfigMgr site code (e.g., PS1)')
    parser.add_argument('--product', '-p', required=True, help='Software display name (e.g., "Google Chrome")')
    parser.add_argument('--search-type', '-t', default=SearchType.EXPLICIT.value,
                        choices=[s.value for s in SearchType],
                        help='Explicit matches the display name exactly, Wildcard matches any name containing it')
    parser.add_argument('--config', '-c', default='config.json', help='Config file (default: config.json)')
    parser.add_argument('--sort-devices', action='store_true', help='Sort devices by name within each group')
    parser.add_argument('--no-batch', action='store_true', help='Resolve device names one query at a time')
    parser.add_argument('--show-query', action='store_true', help='Print the WQL used, including a collection query')
    parser.add_argument('--export', action='store_true', help='Export results to JSON and CSV files')
    parser.add_argument('--debug', action='store_true', help='Enable debug output for troubleshooting')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    search_type = SearchType.parse(args.search_type)

    if args.show_query:
        display_queries(args.product, search_type)

    try:
        config = load_config(args.config)
        items = find_software_devices(
            args.site_code, args.product, search_type,
            sites=SiteRegistry(config['sites']),
            source_factory=client_factory(credentials_from_config(config)),
            batch_resolution=not args.no_batch,
            sort_devices=args.sort_devices
        )

        print(f"\n{'=' * 80}")
        print(f"🔍 SEARCHING {args.site_code.upper()} FOR '{args.product}'")
        print(f"{'=' * 80}")

        results = []
        for item in items:
            display_item(item)
            results.append(item)

    except ConfigurationError as e:
        print(f"❌ Configuration error: {e}")
        return 1
    except InventoryQueryError as e:
        print(f"❌ Query failed: {e}")
        return 1

    if not results:
        print(f"\n❌ '{args.product}' not found in site {args.site_code.upper()}")
        return 0

    display_summary(results, args.product, search_type)

    if args.export:
        prefix = f"software_{args.product.replace(' ', '_').lower()}"
        export_results(results, prefix)

    return 0


if __name__ == "__main__":
    sys.exit(main())
