"""
Data types for software device discovery
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Protocol

from .queries import InventoryQuery


class InventorySource(Protocol):
    """Anything that can run an InventoryQuery and yield rows as dicts."""

    def execute(self, query: InventoryQuery) -> Iterator[Dict[str, Any]]:
        ...


@dataclass(frozen=True)
class InstalledSoftwareRecord:
    display_name: str
    machine_id: Any

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'InstalledSoftwareRecord':
        return cls(
            display_name=row.get('DisplayName') or '',
            machine_id=row.get('ResourceID', row.get('ResourceId'))
        )


@dataclass(frozen=True)
class DeviceNameLookupResult:
    machine_id: Any
    device_name: str = ''


@dataclass(frozen=True)
class SoftwareItemDevice:
    software_name: str
    device_name: str = ''

    def to_dict(self) -> Dict[str, str]:
        return {
            'SoftwareName': self.software_name,
            'DeviceName': self.device_name
        }


@dataclass
class SoftwareItem:
    """All devices that report one exact software display name."""
    software_name: str
    devices: List[SoftwareItemDevice] = field(default_factory=list)

    @property
    def device_count(self) -> int:
        return len(self.devices)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'SoftwareName': self.software_name,
            'DeviceCount': self.device_count,
            'Devices': [device.to_dict() for device in self.devices]
        }
