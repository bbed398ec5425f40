"""Remote call-center platform and CRM integrations."""

from .base import (
    CallCenterPlatform,
    ContactDirectory,
    ContactError,
    PlaceCallResult,
    PlatformAgent,
    PlatformError,
    RecentCall,
)
from .cloudtalk import CloudTalkClient

__all__ = [
    "CallCenterPlatform",
    "ContactDirectory",
    "ContactError",
    "PlaceCallResult",
    "PlatformAgent",
    "PlatformError",
    "RecentCall",
    "CloudTalkClient",
]
