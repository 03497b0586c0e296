"""
ConfigMgr software device services
"""

from .adminservice_client import AdminServiceClient, client_factory
from .exceptions import (
    ConfigMgrError, ConfigurationError, InventoryQueryError, SiteNotFoundError
)
from .keyvault_config import KeyVaultConfig
from .models import (
    DeviceNameLookupResult, InstalledSoftwareRecord, InventorySource,
    SoftwareItem, SoftwareItemDevice
)
from .queries import (
    InventoryQuery, Predicate, SearchType, build_collection_query,
    compose_queries, device_lookup_query
)
from .site_context import SiteConnection, SiteRegistry, current_site, site_context
from .software_devices import (
    DeviceNameResolver, aggregate, dedupe_records, find_software_devices,
    group_names, group_records, search_installed_software
)

__all__ = [
    'AdminServiceClient', 'client_factory',
    'ConfigMgrError', 'ConfigurationError', 'InventoryQueryError', 'SiteNotFoundError',
    'KeyVaultConfig',
    'DeviceNameLookupResult', 'InstalledSoftwareRecord', 'InventorySource',
    'SoftwareItem', 'SoftwareItemDevice',
    'InventoryQuery', 'Predicate', 'SearchType', 'build_collection_query',
    'compose_queries', 'device_lookup_query',
    'SiteConnection', 'SiteRegistry', 'current_site', 'site_context',
    'DeviceNameResolver', 'aggregate', 'dedupe_records', 'find_software_devices',
    'group_names', 'group_records', 'search_installed_software',
]
