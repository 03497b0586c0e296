"""
Inventory query composition for ConfigMgr installed software
Builds the 32-bit and 64-bit Add/Remove Programs searches and the
SMS_R_System device name lookups, rendered as WQL or AdminService OData
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Tuple, Union

from .exceptions import ConfigurationError

# Installed program records are split by target architecture
ARP_CLASS_32 = 'SMS_G_System_ADD_REMOVE_PROGRAMS'
ARP_CLASS_64 = 'SMS_G_System_ADD_REMOVE_PROGRAMS_64'
INSTALLED_SOFTWARE_CLASSES = (ARP_CLASS_32, ARP_CLASS_64)

SYSTEM_CLASS = 'SMS_R_System'
SYSTEM_RESOURCE_TYPE = 5

WILDCARD = '%'


class SearchType(str, Enum):
    EXPLICIT = 'Explicit'
    WILDCARD = 'Wildcard'

    @classmethod
    def parse(cls, value: Union['SearchType', str, None]) -> 'SearchType':
        """
        Accept a SearchType or its name in any case.

        Raises:
            ConfigurationError: if the value is not a known search type
        """
        if value is None:
            return cls.EXPLICIT
        if isinstance(value, cls):
            return value
        for member in cls:
            if str(value).strip().lower() == member.value.lower():
                return member
        raise ConfigurationError(
            f"Invalid search type '{value}'. Must be one of: {', '.join(m.value for m in cls)}"
        )


def wql_literal(value: Any) -> str:
    """Render a Python value as a WQL literal."""
    if isinstance(value, bool):
        return 'TRUE' if value else 'FALSE'
    if isinstance(value, int):
        return str(value)
    text = str(value).replace('\\', '\\\\').replace("'", "\\'")
    return f"'{text}'"


def escape_like(term: str) -> str:
    """Escape WQL LIKE metacharacters so the term matches literally."""
    escaped = []
    for char in term:
        if char in ('%', '_', '['):
            escaped.append(f'[{char}]')
        else:
            escaped.append(char)
    return ''.join(escaped)


def odata_literal(value: Any) -> str:
    """Render a Python value as an OData literal (single quotes doubled)."""
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, int):
        return str(value)
    text = str(value).replace("'", "''")
    return f"'{text}'"


@dataclass(frozen=True)
class Predicate:
    """A single WHERE condition on one property."""
    property: str
    operator: str  # '=', 'LIKE' or 'IN'
    value: Any

    @property
    def pattern(self) -> str:
        """The WQL LIKE pattern, wrapped with the wildcard token on both sides."""
        return f"{WILDCARD}{escape_like(str(self.value))}{WILDCARD}"

    def to_wql(self) -> str:
        if self.operator == '=':
            return f"{self.property} = {wql_literal(self.value)}"
        if self.operator == 'LIKE':
            return f"{self.property} LIKE {wql_literal(self.pattern)}"
        if self.operator == 'IN':
            # WQL has no IN list outside sub-selects
            terms = [f"{self.property} = {wql_literal(v)}" for v in self.value]
            return terms[0] if len(terms) == 1 else f"({' OR '.join(terms)})"
        raise ValueError(f"Unsupported operator: {self.operator}")

    def to_odata(self) -> str:
        if self.operator == '=':
            return f"{self.property} eq {odata_literal(self.value)}"
        if self.operator == 'LIKE':
            return f"contains({self.property},{odata_literal(self.value)})"
        if self.operator == 'IN':
            terms = [f"{self.property} eq {odata_literal(v)}" for v in self.value]
            return terms[0] if len(terms) == 1 else f"({' or '.join(terms)})"
        raise ValueError(f"Unsupported operator: {self.operator}")


@dataclass(frozen=True)
class InventoryQuery:
    """A query against one inventory WMI class."""
    wmi_class: str
    properties: Tuple[str, ...]
    predicates: Tuple[Predicate, ...] = ()

    def to_wql(self) -> str:
        wql = f"SELECT {', '.join(self.properties)} FROM {self.wmi_class}"
        if self.predicates:
            wql += ' WHERE ' + ' AND '.join(p.to_wql() for p in self.predicates)
        return wql

    def to_odata_params(self) -> Dict[str, str]:
        params = {'$select': ','.join(self.properties)}
        if self.predicates:
            params['$filter'] = ' and '.join(p.to_odata() for p in self.predicates)
        return params

    def __str__(self) -> str:
        return self.to_wql()


def _display_name_predicate(product_name: str, search_type: SearchType) -> Predicate:
    if search_type is SearchType.WILDCARD:
        return Predicate('DisplayName', 'LIKE', product_name)
    return Predicate('DisplayName', '=', product_name)


def compose_queries(product_name: str,
                    search_type: Union[SearchType, str] = SearchType.EXPLICIT) -> List[InventoryQuery]:
    """
    Build the installed software searches for a product.

    Args:
        product_name: Display name text to search for, used verbatim
        search_type: Explicit (exact DisplayName) or Wildcard (substring)

    Returns:
        Two queries, 32-bit class first, then 64-bit
    """
    search_type = SearchType.parse(search_type)
    predicate = _display_name_predicate(product_name, search_type)

    return [
        InventoryQuery(
            wmi_class=wmi_class,
            properties=('DisplayName', 'ResourceID'),
            predicates=(predicate,)
        )
        for wmi_class in INSTALLED_SOFTWARE_CLASSES
    ]


def device_lookup_query(machine_ids: Iterable[Any]) -> InventoryQuery:
    """Build the SMS_R_System name lookup for one or more resource IDs."""
    ids = list(machine_ids)
    if not ids:
        raise ValueError("At least one machine id is required")

    return InventoryQuery(
        wmi_class=SYSTEM_CLASS,
        properties=('ResourceId', 'Name'),
        predicates=(
            Predicate('ResourceType', '=', SYSTEM_RESOURCE_TYPE),
            Predicate('ResourceId', 'IN', tuple(ids)),
        )
    )


def build_collection_query(product_name: str,
                           search_type: Union[SearchType, str] = SearchType.EXPLICIT) -> str:
    """
    WQL for a query-based collection membership rule matching the same devices.

    The query is only computed for display; no collection is created.
    """
    predicate = _display_name_predicate(product_name, SearchType.parse(search_type))
    system_columns = ', '.join(
        f"{SYSTEM_CLASS}.{column}" for column in (
            'ResourceId', 'ResourceType', 'Name', 'SMSUniqueIdentifier',
            'ResourceDomainORWorkgroup', 'Client'
        )
    )
    sub_selects = [
        f"{SYSTEM_CLASS}.ResourceId IN (SELECT ResourceID FROM {wmi_class} WHERE {predicate.to_wql()})"
        for wmi_class in INSTALLED_SOFTWARE_CLASSES
    ]
    return f"SELECT {system_columns} FROM {SYSTEM_CLASS} WHERE {' OR '.join(sub_selects)}"
