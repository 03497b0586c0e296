#!/usr/bin/env python3
"""
Test script to verify Explicit/Wildcard query composition
"""

import pytest

from services import (
    ConfigurationError, SearchType, build_collection_query, compose_queries,
    device_lookup_query
)
from services.queries import ARP_CLASS_32, ARP_CLASS_64, escape_like


def test_search_type_parsing():
    """Search types are accepted by name in any case"""

    test_cases = [
        (None, SearchType.EXPLICIT),
        ("Explicit", SearchType.EXPLICIT),
        ("explicit", SearchType.EXPLICIT),
        ("WILDCARD", SearchType.WILDCARD),
        (" Wildcard ", SearchType.WILDCARD),
        (SearchType.WILDCARD, SearchType.WILDCARD),
    ]

    for value, expected in test_cases:
        assert SearchType.parse(value) is expected, f"Failed for {value!r}"

    with pytest.raises(ConfigurationError):
        SearchType.parse("Fuzzy")


def test_two_queries_one_per_architecture():
    for search_type in SearchType:
        queries = compose_queries("Widget", search_type)
        assert [q.wmi_class for q in queries] == [ARP_CLASS_32, ARP_CLASS_64]
        assert all(q.properties == ('DisplayName', 'ResourceID') for q in queries)


def test_wql_query_formation():
    """WQL predicates for each search type"""

    test_cases = [
        ("Widget", "Explicit", "DisplayName = 'Widget'"),
        ("Widg", "Wildcard", "DisplayName LIKE '%Widg%'"),
        ("*axon", "Wildcard", "DisplayName LIKE '%*axon%'"),
        ("100% Tool", "Wildcard", "DisplayName LIKE '%100[%] Tool%'"),
        ("my_app [x64]", "Wildcard", "DisplayName LIKE '%my[_]app [[]x64]%'"),
        ("O'Reilly Reader", "Explicit", "DisplayName = 'O\\'Reilly Reader'"),
        ("C:\\Tools", "Explicit", "DisplayName = 'C:\\\\Tools'"),
    ]

    for product, search_type, expected in test_cases:
        query = compose_queries(product, search_type)[0]
        assert query.to_wql() == f"SELECT DisplayName, ResourceID FROM {ARP_CLASS_32} WHERE {expected}", \
            f"Failed query for {product}"


def test_caller_input_is_not_pre_wrapped():
    query = compose_queries("Widget", SearchType.WILDCARD)[1]
    predicate = query.predicates[0]

    assert predicate.value == "Widget"
    assert predicate.pattern == "%Widget%"


def test_odata_query_formation():
    """AdminService $filter expressions, with quotes doubled"""

    test_cases = [
        ("Widget", "Explicit", "DisplayName eq 'Widget'"),
        ("Widg", "Wildcard", "contains(DisplayName,'Widg')"),
        ("O'Reilly Reader", "Explicit", "DisplayName eq 'O''Reilly Reader'"),
        ("') or (1 eq 1", "Wildcard", "contains(DisplayName,''') or (1 eq 1')"),
    ]

    for product, search_type, expected in test_cases:
        params = compose_queries(product, search_type)[0].to_odata_params()
        assert params == {'$select': 'DisplayName,ResourceID', '$filter': expected}, \
            f"Failed filter for {product}"


def test_device_lookup_query():
    single = device_lookup_query([3])
    batch = device_lookup_query([1, 2])

    assert single.to_wql() == "SELECT ResourceId, Name FROM SMS_R_System WHERE ResourceType = 5 AND ResourceId = 3"
    assert batch.to_odata_params()['$filter'] == "ResourceType eq 5 and (ResourceId eq 1 or ResourceId eq 2)"

    with pytest.raises(ValueError):
        device_lookup_query([])


def test_collection_query():
    wql = build_collection_query("Widget", "Wildcard")

    assert wql.startswith("SELECT SMS_R_System.ResourceId, SMS_R_System.ResourceType, SMS_R_System.Name")
    assert f"SELECT ResourceID FROM {ARP_CLASS_32} WHERE DisplayName LIKE '%Widget%'" in wql
    assert f"SELECT ResourceID FROM {ARP_CLASS_64} WHERE DisplayName LIKE '%Widget%'" in wql
    assert " OR " in wql


def test_escape_like():
    assert escape_like("plain") == "plain"
    assert escape_like("50%_[") == "50[%][_][[]"


if __name__ == "__main__":
    print("=" * 50)
    print("QUERY COMPOSITION TEST")
    print("=" * 50)

    test_search_type_parsing()
    test_two_queries_one_per_architecture()
    test_wql_query_formation()
    test_caller_input_is_not_pre_wrapped()
    test_odata_query_formation()
    test_device_lookup_query()
    test_collection_query()
    test_escape_like()

    print("\n✅ All query composition tests passed!")

    print("\nExample usage:")
    print('  python3 software_devices.py --site-code PS1 --product "Google Chrome"')
    print('  python3 software_devices.py --site-code PS1 --product "Chrome" --search-type Wildcard')
    print('  python3 software_devices.py --site-code PS1 --product "7-Zip" --show-query')
