"""Domain layer: caller-facing exceptions.

No dependencies on infrastructure or presentation.
"""

from mangacache.domain.exceptions import (
    AuthenticationException,
    AuthorizationException,
    MangaCacheException,
    ResourceNotFoundException,
    ServiceNotConfiguredException,
    ValidationException,
)

__all__ = [
    "AuthenticationException",
    "AuthorizationException",
    "MangaCacheException",
    "ResourceNotFoundException",
    "ServiceNotConfiguredException",
    "ValidationException",
]
