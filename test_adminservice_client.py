#!/usr/bin/env python3
"""
Tests for the AdminService client: token caching, paging and error mapping
"""

import json
import time
from types import SimpleNamespace
from unittest import mock

import pytest
import requests

from services import AdminServiceClient, InventoryQueryError, SiteConnection, client_factory
from services.queries import compose_queries, device_lookup_query


class FakeCredential:
    def __init__(self):
        self.calls = 0

    def get_token(self, *scopes):
        self.calls += 1
        return SimpleNamespace(token=f"token-{self.calls}", expires_on=int(time.time()) + 3600)


def make_response(status_code=200, payload=None, text=None):
    response = requests.Response()
    response.status_code = status_code
    response._content = (text if text is not None else json.dumps(payload or {})).encode()
    response.url = 'https://cm01.contoso.com/AdminService/wmi/test'
    return response


def make_client(**kwargs):
    return AdminServiceClient(
        server_url='https://cm01.contoso.com/',
        tenant_id='tenant', client_id='client-id-1234', client_secret='secret',
        credential=FakeCredential(), **kwargs
    )


def test_execute_builds_adminservice_request():
    client = make_client()
    query = compose_queries('Widget', 'Wildcard')[1]

    with mock.patch.object(client.session, 'get', return_value=make_response(payload={
        'value': [{'DisplayName': 'Widget Pro', 'ResourceID': 16777220}]
    })) as get:
        rows = list(client.execute(query))

    assert rows == [{'DisplayName': 'Widget Pro', 'ResourceID': 16777220}]
    args, kwargs = get.call_args
    assert args[0] == 'https://cm01.contoso.com/AdminService/wmi/SMS_G_System_ADD_REMOVE_PROGRAMS_64'
    assert kwargs['params'] == {'$select': 'DisplayName,ResourceID', '$filter': "contains(DisplayName,'Widget')"}
    assert kwargs['headers']['Authorization'] == 'Bearer token-1'
    assert kwargs['timeout'] == 60
    assert kwargs['verify'] is True


def test_execute_follows_next_link():
    client = make_client()
    next_link = 'https://cm01.contoso.com/AdminService/wmi/SMS_R_System?$skiptoken=abc'
    pages = [
        make_response(payload={'value': [{'ResourceId': 1, 'Name': 'PC1'}], '@odata.nextLink': next_link}),
        make_response(payload={'value': [{'ResourceId': 2, 'Name': 'PC2'}]}),
    ]

    with mock.patch.object(client.session, 'get', side_effect=pages) as get:
        rows = list(client.execute(device_lookup_query([1, 2])))

    assert [row['Name'] for row in rows] == ['PC1', 'PC2']
    assert get.call_args_list[1][0][0] == next_link
    assert get.call_args_list[1][1]['params'] is None


def test_execute_is_lazy():
    client = make_client()

    with mock.patch.object(client.session, 'get') as get:
        client.execute(device_lookup_query([1]))

    get.assert_not_called()


def test_token_is_cached():
    client = make_client()

    with mock.patch.object(client.session, 'get', side_effect=lambda *a, **k: make_response(payload={'value': []})):
        list(client.execute(device_lookup_query([1])))
        list(client.execute(device_lookup_query([2])))

    assert client.credential.calls == 1


def test_http_error_raises_inventory_query_error():
    client = make_client()

    with mock.patch.object(client.session, 'get', return_value=make_response(500, text='provider down')):
        with pytest.raises(InventoryQueryError) as excinfo:
            list(client.execute(device_lookup_query([1])))

    assert excinfo.value.status_code == 500


def test_access_denied_raises_inventory_query_error():
    client = make_client()

    with mock.patch.object(client.session, 'get', return_value=make_response(403)):
        with pytest.raises(InventoryQueryError) as excinfo:
            list(client.execute(device_lookup_query([1])))

    assert excinfo.value.status_code == 403


def test_timeout_raises_inventory_query_error():
    client = make_client(timeout=5)

    with mock.patch.object(client.session, 'get', side_effect=requests.exceptions.Timeout()):
        with pytest.raises(InventoryQueryError) as excinfo:
            list(client.execute(device_lookup_query([1])))

    assert '5s' in str(excinfo.value)


def test_invalid_json_raises_inventory_query_error():
    client = make_client()

    with mock.patch.object(client.session, 'get', return_value=make_response(text='<html>login</html>')):
        with pytest.raises(InventoryQueryError) as excinfo:
            list(client.execute(device_lookup_query([1])))

    assert 'invalid JSON' in str(excinfo.value)


def test_authentication_failure_raises_inventory_query_error():
    client = make_client()
    client.credential = mock.Mock()
    client.credential.get_token.side_effect = RuntimeError("AADSTS7000215: Invalid client secret")

    with pytest.raises(InventoryQueryError):
        client.get_access_token()


def test_client_factory_uses_site_settings():
    site = SiteConnection('PS1', 'https://cm01.contoso.com', verify_ssl=False)
    create = client_factory({
        'tenant_id': 'tenant', 'client_id': 'client-id-1234', 'client_secret': 'secret',
        'credential': FakeCredential()
    })

    client = create(site)

    assert client.server_url == 'https://cm01.contoso.com'
    assert client.verify_ssl is False


if __name__ == "__main__":
    print("=" * 60)
    print("ADMINSERVICE CLIENT TESTS")
    print("=" * 60)

    for name, test in sorted(globals().items()):
        if name.startswith('test_') and callable(test):
            test()
            print(f"✅ {name}")
