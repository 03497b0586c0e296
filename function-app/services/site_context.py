"""
ConfigMgr site resolution and the active site context
"""

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .exceptions import ConfigurationError, SiteNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SiteConnection:
    """Where to reach the AdminService for one site."""
    site_code: str
    server_url: str
    verify_ssl: bool = True

    @property
    def adminservice_url(self) -> str:
        return f"{self.server_url}/AdminService"


def _normalize_server(server: str) -> str:
    server = server.strip().rstrip('/')
    if not server.lower().startswith(('http://', 'https://')):
        server = f"https://{server}"
    # Accept a configured URL that already points at the AdminService root
    if server.lower().endswith('/adminservice'):
        server = server[:-len('/adminservice')]
    return server


class SiteRegistry:
    """Maps site codes to AdminService connections."""

    def __init__(self, sites: Dict[str, Any]):
        """
        Args:
            sites: {"PS1": {"server": "cm01.contoso.com", "verify_ssl": true}}
                   or {"PS1": "cm01.contoso.com"}
        """
        if not isinstance(sites, dict):
            raise ConfigurationError("Site configuration must be a mapping of site code to server")

        self._sites: Dict[str, SiteConnection] = {}
        for code, settings in sites.items():
            if isinstance(settings, str):
                settings = {'server': settings}
            if not isinstance(settings, dict) or not settings.get('server'):
                raise ConfigurationError(f"Site '{code}' has no server configured")

            key = code.strip().upper()
            self._sites[key] = SiteConnection(
                site_code=key,
                server_url=_normalize_server(settings['server']),
                verify_ssl=bool(settings.get('verify_ssl', True))
            )

    @property
    def site_codes(self) -> List[str]:
        return sorted(self._sites)

    def resolve(self, site_code: str) -> SiteConnection:
        """
        Look up a site code (case-insensitive).

        Raises:
            SiteNotFoundError: if the site code is not configured
        """
        site = self._sites.get(str(site_code or '').strip().upper())
        if site is None:
            raise SiteNotFoundError(site_code, self._sites.keys())
        return site


# Separate per thread and per async task
_active_sites: ContextVar[Tuple[SiteConnection, ...]] = ContextVar('active_sites', default=())


def current_site() -> Optional[SiteConnection]:
    """The innermost site entered with site_context, if any."""
    sites = _active_sites.get()
    return sites[-1] if sites else None


@contextmanager
def site_context(site: SiteConnection) -> Iterator[SiteConnection]:
    """Make a site the active one for the enclosed block, restoring the previous one on exit."""
    previous = current_site()
    entered = _active_sites.get() + (site,)
    token = _active_sites.set(entered)
    logger.debug(f"Entered site context {site.site_code}", extra={
        'custom_dimensions': {
            'site_code': site.site_code,
            'server_url': site.server_url,
            'previous_site': previous.site_code if previous else None
        }
    })
    try:
        yield site
    finally:
        sites = _active_sites.get()
        if sites is entered:
            _active_sites.reset(token)
        else:
            # Interleaved generators can exit out of order
            remaining = list(sites)
            for i in range(len(remaining) - 1, -1, -1):
                if remaining[i] is site:
                    del remaining[i]
                    break
            _active_sites.set(tuple(remaining))
        logger.debug(f"Left site context {site.site_code}", extra={
            'custom_dimensions': {
                'site_code': site.site_code,
                'restored_site': current_site().site_code if current_site() else None
            }
        })
