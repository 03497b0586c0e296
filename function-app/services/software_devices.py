"""
Software device discovery
Finds every device that reports a software title in ConfigMgr inventory and
groups the devices by exact display name
"""

import time
import logging
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Union

from .exceptions import ConfigurationError, InventoryQueryError
from .logging_utils import quiet_mode
from .models import (
    DeviceNameLookupResult, InstalledSoftwareRecord, InventorySource,
    SoftwareItem, SoftwareItemDevice
)
from .queries import SearchType, compose_queries, device_lookup_query
from .site_context import SiteConnection, SiteRegistry, site_context

logger = logging.getLogger(__name__)

# Keeps a batched SMS_R_System $filter under IIS's default 2048 byte query string limit
DEFAULT_BATCH_SIZE = 50


def dedupe_records(rows: Iterable[Dict[str, Any]]) -> List[InstalledSoftwareRecord]:
    """
    Collapse raw rows from all search queries to one record per machine.

    The first row seen for a ResourceID wins; which duplicate survives is
    not something callers should rely on.
    """
    seen = set()
    records = []
    dropped = 0

    for row in rows:
        record = InstalledSoftwareRecord.from_row(row)
        if record.machine_id is None:
            logger.debug("Skipping inventory row without ResourceID", extra={
                'custom_dimensions': {'row': row}
            })
            continue
        if record.machine_id in seen:
            dropped += 1
            continue
        seen.add(record.machine_id)
        records.append(record)

    logger.debug(f"Deduplicated to {len(records)} records ({dropped} duplicates dropped)")
    return records


def group_names(records: Iterable[InstalledSoftwareRecord]) -> List[str]:
    """Distinct display names in ascending ordinal order."""
    return sorted({record.display_name for record in records})


def group_records(records: List[InstalledSoftwareRecord]) -> Dict[str, List[InstalledSoftwareRecord]]:
    """Partition records by display name; keys sorted, members kept in input order."""
    grouped = {name: [] for name in group_names(records)}
    for record in records:
        grouped[record.display_name].append(record)
    return grouped


class DeviceNameResolver:
    """Looks up device names in SMS_R_System, absorbing lookup failures."""

    def __init__(self, source: InventorySource, batch_size: int = DEFAULT_BATCH_SIZE):
        self.source = source
        self.batch_size = batch_size
        self.device_cache: Dict[Any, str] = {}  # lives for one run only

    def lookup(self, machine_id: Any) -> DeviceNameLookupResult:
        query = device_lookup_query([machine_id])
        try:
            rows = list(self.source.execute(query))
        except InventoryQueryError as e:
            logger.warning(f"Device name lookup failed for ResourceID {machine_id}: {e}", extra={
                'custom_dimensions': {
                    'machine_id': machine_id,
                    'error': str(e),
                    'status_code': e.status_code
                }
            })
            return DeviceNameLookupResult(machine_id)

        for row in rows:
            name = row.get('Name')
            if name:
                return DeviceNameLookupResult(machine_id, name)

        logger.warning(f"No system resource found for ResourceID {machine_id}", extra={
            'custom_dimensions': {'machine_id': machine_id}
        })
        return DeviceNameLookupResult(machine_id)

    def resolve(self, machine_id: Any) -> str:
        """
        Resolve one machine identifier to its device name.

        Returns:
            The device name, or '' when there is no match or the lookup fails
        """
        if machine_id not in self.device_cache:
            self.device_cache[machine_id] = self.lookup(machine_id).device_name
        return self.device_cache[machine_id]

    def resolve_many(self, machine_ids: Iterable[Any]) -> Dict[Any, str]:
        """
        Resolve many machine identifiers with one lookup per batch.

        A failed batch falls back to single lookups for its members, so one
        bad request never loses the names of the whole batch.

        Returns:
            Mapping of every requested id to its device name ('' if unresolved)
        """
        machine_ids = list(dict.fromkeys(machine_ids))
        uncached = [mid for mid in machine_ids if mid not in self.device_cache]

        for i in range(0, len(uncached), self.batch_size):
            batch = uncached[i:i + self.batch_size]
            try:
                rows = list(self.source.execute(device_lookup_query(batch)))
            except InventoryQueryError as e:
                logger.warning(f"Batch device lookup failed, resolving {len(batch)} devices one by one", extra={
                    'custom_dimensions': {
                        'batch_size': len(batch),
                        'error': str(e)
                    }
                })
                for mid in batch:
                    self.resolve(mid)
                continue

            found = {row.get('ResourceId'): row.get('Name') or '' for row in rows}
            for mid in batch:
                self.device_cache[mid] = found.get(mid, '')
                if not self.device_cache[mid]:
                    logger.warning(f"No system resource found for ResourceID {mid}", extra={
                        'custom_dimensions': {'machine_id': mid}
                    })

        return {mid: self.device_cache[mid] for mid in machine_ids}


def aggregate(grouped: Dict[str, List[InstalledSoftwareRecord]], resolver: DeviceNameResolver,
              batch: bool = True, sort_devices: bool = False) -> Iterator[SoftwareItem]:
    """
    Build one SoftwareItem per display name, yielding each as soon as it is complete.

    Args:
        grouped: Records partitioned by display name (see group_records)
        resolver: Device name resolver bound to the inventory source
        batch: Resolve each group's devices with batched lookups
        sort_devices: Order devices by name instead of inventory order
    """
    for name in sorted(grouped):
        records = grouped[name]
        start_time = time.time()

        with quiet_mode():
            if batch:
                names = resolver.resolve_many(r.machine_id for r in records)
            else:
                names = {r.machine_id: resolver.resolve(r.machine_id) for r in records}

        devices = [SoftwareItemDevice(name, names.get(r.machine_id, '')) for r in records]
        if sort_devices:
            devices.sort(key=lambda device: device.device_name)

        item = SoftwareItem(software_name=name, devices=devices)

        logger.info(f"Resolved {item.device_count} devices for '{name}'", extra={
            'custom_dimensions': {
                'software_name': name,
                'device_count': item.device_count,
                'unresolved': sum(1 for d in devices if not d.device_name),
                'duration_ms': round((time.time() - start_time) * 1000, 2)
            }
        })

        yield item


def search_installed_software(source: InventorySource, product_name: str,
                              search_type: Union[SearchType, str] = SearchType.EXPLICIT
                              ) -> List[InstalledSoftwareRecord]:
    """Run both installed software searches and dedupe their combined rows."""
    rows = []
    with quiet_mode():
        for query in compose_queries(product_name, search_type):
            start_time = time.time()
            query_rows = list(source.execute(query))
            rows.extend(query_rows)

            logger.info(f"Search query returned {len(query_rows)} rows", extra={
                'custom_dimensions': {
                    'wql': query.to_wql(),
                    'row_count': len(query_rows),
                    'duration_ms': round((time.time() - start_time) * 1000, 2)
                }
            })

    return dedupe_records(rows)


def find_software_devices(site_code: str, product_name: str,
                          search_type: Union[SearchType, str] = SearchType.EXPLICIT,
                          sites: Optional[SiteRegistry] = None,
                          source_factory: Optional[Callable[[SiteConnection], InventorySource]] = None,
                          batch_resolution: bool = True,
                          sort_devices: bool = False) -> Iterator[SoftwareItem]:
    """
    Find every device with a software title installed, grouped by display name.

    The site code and search type are validated before this returns, so
    configuration errors surface before any query runs. The returned
    iterator keeps the site context entered until it is exhausted or closed.

    Args:
        site_code: ConfigMgr site code to search
        product_name: Software display name (Explicit) or fragment (Wildcard)
        search_type: SearchType or 'Explicit' / 'Wildcard'
        sites: Site registry used to resolve site_code
        source_factory: Builds the InventorySource for the resolved site
        batch_resolution: Resolve device names in batches instead of one query per device
        sort_devices: Sort devices within each group by name

    Raises:
        SiteNotFoundError: if site_code is not configured
        ConfigurationError: for an unknown search type or missing wiring
    """
    search_type = SearchType.parse(search_type)
    if sites is None:
        raise ConfigurationError("No site registry configured")
    site = sites.resolve(site_code)
    if source_factory is None:
        raise ConfigurationError("No inventory source configured")

    return _run(site, product_name, search_type, source_factory, batch_resolution, sort_devices)


def _run(site: SiteConnection, product_name: str, search_type: SearchType,
         source_factory: Callable[[SiteConnection], InventorySource],
         batch_resolution: bool, sort_devices: bool) -> Iterator[SoftwareItem]:
    with site_context(site):
        source = source_factory(site)

        logger.info(f"Searching site {site.site_code} for '{product_name}' ({search_type.value})", extra={
            'custom_dimensions': {
                'site_code': site.site_code,
                'product_name': product_name,
                'search_type': search_type.value
            }
        })

        records = search_installed_software(source, product_name, search_type)
        grouped = group_records(records)

        logger.info(f"Found {len(records)} devices across {len(grouped)} display names", extra={
            'custom_dimensions': {
                'site_code': site.site_code,
                'record_count': len(records),
                'group_count': len(grouped)
            }
        })

        resolver = DeviceNameResolver(source)
        yield from aggregate(grouped, resolver, batch=batch_resolution, sort_devices=sort_devices)
