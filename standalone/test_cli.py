#!/usr/bin/env python3
"""
Tests for the software_devices command line tool
"""

import json
from unittest import mock

import software_devices
from services import InventoryQueryError
from services.queries import ARP_CLASS_64, SYSTEM_CLASS


class WidgetSource:
    def __init__(self, fail=False):
        self.fail = fail

    def execute(self, query):
        if self.fail:
            raise InventoryQueryError("connection refused")
        if query.wmi_class == ARP_CLASS_64:
            term = query.predicates[0].value
            rows = [
                {'DisplayName': 'Widget Pro', 'ResourceID': 1},
                {'DisplayName': 'Widget Lite', 'ResourceID': 2},
            ]
            return iter([row for row in rows if term in row['DisplayName']])
        if query.wmi_class == SYSTEM_CLASS:
            return iter([{'ResourceId': 1, 'Name': 'PC1'}, {'ResourceId': 2, 'Name': 'PC2'}])
        return iter([])


def write_config(tmp_path, **overrides):
    config = {
        'tenant_id': 'tenant',
        'client_id': 'client',
        'client_secret': 'secret',
        'sites': {'PS1': 'cm01.contoso.com'}
    }
    config.update(overrides)
    path = tmp_path / 'config.json'
    path.write_text(json.dumps(config))
    return str(path)


def run_cli(args, source):
    with mock.patch.object(software_devices, 'client_factory', return_value=lambda site: source):
        return software_devices.main(args)


def test_cli_prints_groups(tmp_path, capsys):
    config = write_config(tmp_path)

    code = run_cli(['-s', 'PS1', '-p', 'Widget', '-t', 'Wildcard', '-c', config], WidgetSource())
    out = capsys.readouterr().out

    assert code == 0
    assert out.index('Widget Lite') < out.index('Widget Pro')
    assert 'PC1' in out and 'PC2' in out
    assert 'Display names: 2' in out


def test_cli_export(tmp_path, monkeypatch, capsys):
    config = write_config(tmp_path)
    monkeypatch.chdir(tmp_path)

    code = run_cli(['-s', 'PS1', '-p', 'Widget', '-t', 'Wildcard', '-c', config, '--export'], WidgetSource())

    assert code == 0
    json_files = list(tmp_path.glob('software_widget_*.json'))
    csv_files = list(tmp_path.glob('software_widget_*.csv'))
    assert len(json_files) == 1 and len(csv_files) == 1

    exported = json.loads(json_files[0].read_text())
    assert [item['SoftwareName'] for item in exported] == ['Widget Lite', 'Widget Pro']
    assert csv_files[0].read_text().splitlines()[0] == 'SoftwareName,DeviceName'


def test_cli_show_query(tmp_path, capsys):
    config = write_config(tmp_path)

    run_cli(['-s', 'PS1', '-p', 'Widget', '-c', config, '--show-query'], WidgetSource())
    out = capsys.readouterr().out

    assert "SMS_G_System_ADD_REMOVE_PROGRAMS WHERE DisplayName = 'Widget'" in out
    assert 'COLLECTION QUERY' in out


def test_cli_unknown_site(tmp_path, capsys):
    config = write_config(tmp_path)

    code = run_cli(['-s', 'XYZ', '-p', 'Widget', '-c', config], WidgetSource())

    assert code == 1
    assert 'Configuration error' in capsys.readouterr().out


def test_cli_missing_config(tmp_path, capsys):
    code = run_cli(['-s', 'PS1', '-p', 'Widget', '-c', str(tmp_path / 'missing.json')], WidgetSource())

    assert code == 1
    assert 'not found' in capsys.readouterr().out


def test_cli_incomplete_config(tmp_path, capsys):
    config = write_config(tmp_path, client_secret='')

    code = run_cli(['-s', 'PS1', '-p', 'Widget', '-c', config], WidgetSource())

    assert code == 1
    assert 'client_secret' in capsys.readouterr().out


def test_cli_query_failure(tmp_path, capsys):
    config = write_config(tmp_path)

    code = run_cli(['-s', 'PS1', '-p', 'Widget', '-c', config], WidgetSource(fail=True))

    assert code == 1
    assert 'Query failed' in capsys.readouterr().out


def test_cli_not_found(tmp_path, capsys):
    config = write_config(tmp_path)

    code = run_cli(['-s', 'PS1', '-p', 'Gadget', '-c', config], WidgetSource())

    assert code == 0
    assert "'Gadget' not found" in capsys.readouterr().out
