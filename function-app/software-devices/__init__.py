"""
Azure Function: Software Devices
HTTP triggered function listing the ConfigMgr devices that have a software
title installed, grouped by exact display name
"""

import azure.functions as func
import json
import time
from typing import Any, Callable, Dict, List, Optional

from services import (
    ConfigurationError, InventoryQueryError, KeyVaultConfig, SearchType,
    SiteNotFoundError, build_collection_query, client_factory,
    find_software_devices
)
from services.logging_utils import FunctionLogger

function_logger = FunctionLogger(__name__)


def main(req: func.HttpRequest) -> func.HttpResponse:
    """
    HTTP trigger function to find devices with a software title installed.

    Expected JSON body:
    {
        "site_code": "PS1",                 # required
        "product_name": "Google Chrome",    # required
        "search_type": "Explicit",          # optional: "Explicit" (default) or "Wildcard"
        "sort_devices": false,              # optional, sort devices by name within a group
        "batch_resolution": true            # optional, resolve device names in batches
    }
    """
    function_logger.start_request(req, {
        'function_name': 'software-devices',
        'function_version': '1.0'
    })

    try:
        config = create_config()

        # Validate API key
        expected_key = config.get_api_key()
        if expected_key and req.headers.get('X-API-Key') != expected_key:
            function_logger.log_warning("Invalid API key provided")
            return _respond({"error": "Invalid API key"}, 401, {'auth_failure': True})

        try:
            req_body = req.get_json()
        except ValueError as e:
            function_logger.log_error(e, {'parsing_stage': 'request_body'})
            return _respond({"error": "Invalid JSON in request body"}, 400, {'json_parse_error': True})

        if not isinstance(req_body, dict):
            return _respond({"error": "Request body must be a JSON object"}, 400,
                            {'validation_error': 'body_not_object'})

        site_code = req_body.get('site_code')
        product_name = req_body.get('product_name')
        missing = [name for name, value in (('site_code', site_code), ('product_name', product_name))
                   if not value]
        if missing:
            function_logger.log_warning("Missing required parameters", {
                'missing_params': missing,
                'provided_params': list(req_body.keys())
            })
            return _respond({"error": f"Missing required parameter: {', '.join(missing)}"}, 400,
                            {'validation_error': 'missing_parameters'})

        not_strings = [name for name, value in (('site_code', site_code), ('product_name', product_name))
                       if not isinstance(value, str)]
        if not_strings:
            function_logger.log_warning("Non-string parameters", {'invalid_params': not_strings})
            return _respond({"error": f"Parameter must be a string: {', '.join(not_strings)}"}, 400,
                            {'validation_error': 'invalid_parameter_type'})

        try:
            search_type = SearchType.parse(req_body.get('search_type'))
        except ConfigurationError as e:
            function_logger.log_warning(str(e), {'provided_search_type': req_body.get('search_type')})
            return _respond({"error": str(e)}, 400, {'validation_error': 'invalid_search_type'})

        sort_devices = req_body.get('sort_devices', False)
        batch_resolution = req_body.get('batch_resolution', True)
        not_booleans = [name for name, value in (('sort_devices', sort_devices), ('batch_resolution', batch_resolution))
                        if not isinstance(value, bool)]
        if not_booleans:
            function_logger.log_warning("Non-boolean flags", {'invalid_params': not_booleans})
            return _respond({"error": f"Parameter must be true or false: {', '.join(not_booleans)}"}, 400,
                            {'validation_error': 'invalid_parameter_type'})

        function_logger.log_business_event('SOFTWARE_DEVICES_PARAMETERS', {
            'site_code': site_code,
            'product_name': product_name,
            'search_type': search_type.value,
            'sort_devices': sort_devices,
            'batch_resolution': batch_resolution
        })

        try:
            sites = config.get_site_registry()
            source_factory = create_source_factory(config)
            items = find_software_devices(
                site_code, product_name, search_type,
                sites=sites,
                source_factory=source_factory,
                batch_resolution=batch_resolution,
                sort_devices=sort_devices
            )
        except SiteNotFoundError as e:
            function_logger.log_warning(str(e), {'site_code': site_code, 'known_sites': e.known_sites})
            return _respond({"error": str(e)}, 400, {'validation_error': 'unknown_site_code'})
        except ConfigurationError as e:
            function_logger.log_error(e, {'initialization_stage': 'configuration'})
            return _respond({"error": f"Configuration error: {str(e)}"}, 500, {'configuration_error': True})

        search_start_time = time.time()
        try:
            software_items = _collect(items)
        except InventoryQueryError as e:
            function_logger.log_error(e, {
                'search_stage': 'inventory_query',
                'endpoint': e.endpoint,
                'status_code': e.status_code,
                'duration_ms': round((time.time() - search_start_time) * 1000, 2)
            })
            return _respond({"error": f"AdminService query failed: {str(e)}"}, 502, {'query_error': True})

        results = {
            "status": "success" if software_items else "not_found",
            "site_code": site_code.upper(),
            "product_name": product_name,
            "search_type": search_type.value,
            "total_groups": len(software_items),
            "total_devices": sum(item['DeviceCount'] for item in software_items),
            "software_items": software_items,
            "collection_query": build_collection_query(product_name, search_type)
        }

        function_logger.log_business_event('SOFTWARE_DEVICES_SEARCH_COMPLETE', {
            'site_code': results['site_code'],
            'total_groups': results['total_groups'],
            'total_devices': results['total_devices'],
            'search_duration_ms': round((time.time() - search_start_time) * 1000, 2)
        })

        return _respond(results, 200, {
            'search_results_summary': {
                'total_groups': results['total_groups'],
                'total_devices': results['total_devices']
            }
        })

    except Exception as e:
        function_logger.log_error(e, {
            'error_stage': 'unexpected_error',
            'error_type': type(e).__name__
        })
        return _respond({"error": f"Unexpected error: {str(e)}"}, 500, {'unexpected_error': True})


def _collect(items) -> List[Dict[str, Any]]:
    software_items = []
    for item in items:
        software_items.append(item.to_dict())
        function_logger.log_debug(f"Group complete: {item.software_name}", {
            'device_count': item.device_count
        })
    return software_items


def _respond(body: Dict[str, Any], status_code: int,
             log_context: Optional[Dict[str, Any]] = None) -> func.HttpResponse:
    response = func.HttpResponse(
        json.dumps(body, default=str),
        status_code=status_code,
        mimetype="application/json"
    )
    function_logger.end_request(response, log_context)
    return response


def create_config() -> KeyVaultConfig:
    """Configuration from app settings, falling back to Key Vault."""
    return KeyVaultConfig()


def create_source_factory(config: KeyVaultConfig) -> Callable:
    """Build the site -> AdminService client factory from configured credentials."""
    return client_factory(config.get_adminservice_credentials())
