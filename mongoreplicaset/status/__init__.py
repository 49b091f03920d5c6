"""
Status Module

Parses mongo shell transcripts into structured cluster state and gates
supported server versions.
"""

from .parser import StatusParser, WAITING_MSG
from .version import FIRST_SUPPORTED_MONGODB_VERSION, verify_version

__all__ = [
    "StatusParser",
    "WAITING_MSG",
    "FIRST_SUPPORTED_MONGODB_VERSION",
    "verify_version",
]
