"""
ConfigMgr AdminService Client
Runs inventory queries against the site's AdminService WMI route
"""

import requests
import time
import logging
from typing import Any, Callable, Dict, Iterator, Optional
from datetime import datetime
from azure.identity import ClientSecretCredential

from .exceptions import InventoryQueryError
from .logging_utils import log_adminservice_operation
from .queries import InventoryQuery
from .site_context import SiteConnection

logger = logging.getLogger(__name__)

DEFAULT_API_SCOPE = 'https://ConfigMgrService/.default'


class AdminServiceClient:
    def __init__(self, server_url: str, tenant_id: str, client_id: str, client_secret: str,
                 api_scope: str = DEFAULT_API_SCOPE, verify_ssl: bool = True,
                 timeout: int = 60, credential: Any = None):
        """
        Initialize AdminService client with an Azure AD app registration.

        Args:
            server_url: Base URL of the SMS Provider (https://cm01.contoso.com)
            tenant_id, client_id, client_secret: App registration used for bearer tokens
            api_scope: Token scope exposed by the AdminService app
            verify_ssl: Verify the provider's TLS certificate
            timeout: Per-request timeout in seconds
            credential: Optional azure-identity credential, built from the
                        client secret when omitted
        """
        self.server_url = server_url.rstrip('/')
        self.client_id = client_id
        self.api_scope = api_scope
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self.credential = credential or ClientSecretCredential(
            tenant_id=tenant_id,
            client_id=client_id,
            client_secret=client_secret
        )
        self.access_token = None
        self.token_expiry = 0
        self.session = requests.Session()

        logger.info("AdminService client initialized", extra={
            'custom_dimensions': {
                'server_url': self.server_url,
                'client_id': self.client_id[:8] + '***',
                'verify_ssl': self.verify_ssl,
                'timestamp': datetime.utcnow().isoformat()
            }
        })

    @classmethod
    def for_site(cls, site: SiteConnection, **credentials) -> 'AdminServiceClient':
        """Create a client for a resolved site."""
        credentials.setdefault('verify_ssl', site.verify_ssl)
        return cls(server_url=site.server_url, **credentials)

    @log_adminservice_operation("get_access_token")
    def get_access_token(self) -> str:
        """Get a bearer token for the AdminService, cached until shortly before expiry."""
        if self.access_token and time.time() < self.token_expiry:
            logger.debug("Using cached access token", extra={
                'custom_dimensions': {
                    'token_expiry': self.token_expiry,
                    'time_remaining': self.token_expiry - time.time()
                }
            })
            return self.access_token

        logger.info("Requesting access token", extra={
            'custom_dimensions': {
                'api_scope': self.api_scope,
                'client_id': self.client_id[:8] + '***'
            }
        })

        try:
            token = self.credential.get_token(self.api_scope)
        except Exception as e:
            logger.error(f"Authentication failed: {e}", extra={
                'custom_dimensions': {
                    'error': str(e),
                    'error_type': type(e).__name__,
                    'api_scope': self.api_scope
                }
            })
            raise InventoryQueryError(f"AdminService authentication failed: {str(e)}")

        self.access_token = token.token
        self.token_expiry = token.expires_on - 300  # 5 min buffer

        return self.access_token

    @log_adminservice_operation("api_request")
    def api_request(self, url: str, params: Optional[Dict] = None) -> Dict:
        """
        Make an authenticated GET request and return the decoded JSON body.

        Raises:
            InventoryQueryError: on connection failure, timeout, non-2xx
                                 status or a body that is not JSON
        """
        start_time = time.time()
        token = self.get_access_token()

        headers = {
            'Authorization': f'Bearer {token}',
            'Accept': 'application/json'
        }

        try:
            response = self.session.get(url, headers=headers, params=params,
                                        verify=self.verify_ssl, timeout=self.timeout)
            duration = time.time() - start_time

            logger.info(f"API request completed: {url}", extra={
                'custom_dimensions': {
                    'url': url,
                    'params': params,
                    'status_code': response.status_code,
                    'duration_ms': round(duration * 1000, 2),
                    'response_size': len(response.content)
                }
            })

            if response.status_code in (401, 403):
                raise InventoryQueryError(
                    f"Access denied to {url} - check the app registration's ConfigMgr security role",
                    endpoint=url, status_code=response.status_code
                )

            response.raise_for_status()
            return response.json()

        except requests.exceptions.Timeout:
            duration = time.time() - start_time
            logger.error(f"API request timeout: {url}", extra={
                'custom_dimensions': {
                    'url': url,
                    'duration_ms': round(duration * 1000, 2),
                    'timeout_seconds': self.timeout
                }
            })
            raise InventoryQueryError(f"AdminService request timed out after {self.timeout}s",
                                      endpoint=url)

        except requests.exceptions.JSONDecodeError as e:
            logger.error(f"JSON parsing error for {url}", extra={
                'custom_dimensions': {
                    'url': url,
                    'error': str(e),
                    'response_preview': response.text[:200]
                }
            })
            raise InventoryQueryError(f"AdminService returned invalid JSON: {str(e)}",
                                      endpoint=url)

        except requests.exceptions.RequestException as e:
            duration = time.time() - start_time
            status_code = e.response.status_code if e.response is not None else None
            logger.error(f"API request failed: {url}", extra={
                'custom_dimensions': {
                    'url': url,
                    'error': str(e),
                    'error_type': type(e).__name__,
                    'status_code': status_code,
                    'duration_ms': round(duration * 1000, 2),
                    'response_preview': e.response.text[:500] if e.response is not None else None
                }
            })
            raise InventoryQueryError(f"AdminService request failed: {str(e)}",
                                      endpoint=url, status_code=status_code)

    def execute(self, query: InventoryQuery) -> Iterator[Dict[str, Any]]:
        """
        Run a query and lazily yield result rows, following server-side paging.

        Args:
            query: The inventory query to run

        Yields:
            One dict per WMI instance, keyed by property name
        """
        url = f"{self.server_url}/AdminService/wmi/{query.wmi_class}"
        params = query.to_odata_params()

        logger.debug(f"Executing inventory query: {query.to_wql()}", extra={
            'custom_dimensions': {
                'wmi_class': query.wmi_class,
                'wql': query.to_wql(),
                'odata_filter': params.get('$filter')
            }
        })

        page = 0
        while url:
            page += 1
            data = self.api_request(url, params)
            rows = data.get('value', [])

            logger.debug(f"Received page {page} from {query.wmi_class}", extra={
                'custom_dimensions': {
                    'wmi_class': query.wmi_class,
                    'page': page,
                    'row_count': len(rows)
                }
            })

            for row in rows:
                yield row

            # nextLink already carries the query options
            url = data.get('@odata.nextLink')
            params = None


def client_factory(credentials: Dict[str, Any]) -> Callable[[SiteConnection], AdminServiceClient]:
    """Bind credentials into a site -> client factory for the pipeline."""
    def create(site: SiteConnection) -> AdminServiceClient:
        return AdminServiceClient.for_site(site, **credentials)
    return create
