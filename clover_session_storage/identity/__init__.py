"""
Identity for pool requests.

Provides the device-local account and user identifiers that tag every
request to the pool service.
"""

from .bootstrap import ACCOUNT_STORAGE_KEY, USER_STORAGE_KEY, IdentityBootstrap

__all__ = [
    "ACCOUNT_STORAGE_KEY",
    "USER_STORAGE_KEY",
    "IdentityBootstrap",
]
