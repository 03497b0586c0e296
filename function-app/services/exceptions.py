"""
Exception types raised by the ConfigMgr software device services
"""

from typing import Optional


class ConfigMgrError(Exception):
    """Base class for all ConfigMgr service errors."""


class ConfigurationError(ConfigMgrError, ValueError):
    """Invalid or missing configuration (credentials, site map, search type)."""


class SiteNotFoundError(ConfigurationError):
    """The requested site code is not present in the site registry."""

    def __init__(self, site_code: str, known_sites=None):
        self.site_code = site_code
        self.known_sites = sorted(known_sites or [])
        message = f"Site code '{site_code}' is not configured"
        if self.known_sites:
            message += f" (known sites: {', '.join(self.known_sites)})"
        super().__init__(message)


class InventoryQueryError(ConfigMgrError):
    """An inventory query could not be executed against the AdminService."""

    def __init__(self, message: str, endpoint: Optional[str] = None,
                 status_code: Optional[int] = None):
        super().__init__(message)
        self.endpoint = endpoint
        self.status_code = status_code
