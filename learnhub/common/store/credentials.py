"""
Credential strategies for the data API.

The credential mode is resolved once at startup into a single strategy; the
client asks that strategy for headers on every call instead of re-deriving
which key to use.
"""

import abc
import enum
import logging
from typing import Dict, Optional

from learnhub.common.error_handling import AuthenticationError, ConfigurationError

logger = logging.getLogger(__name__)


class CredentialMode(enum.Enum):
    """How calls to the data API are authorized."""
    AUTO = "auto"
    SERVICE_ROLE = "service_role"
    USER_TOKEN = "user_token"
    MEMORY = "memory"


def looks_like_jwt(value: Optional[str]) -> bool:
    """True when ``value`` has the shape of a signed JWT."""
    if not value:
        return False
    return len(value.split(".")) == 3 and len(value) > 60


class CredentialStrategy(abc.ABC):
    """Produces the request headers for one data API call."""

    mode: CredentialMode

    @abc.abstractmethod
    def headers(self, user_token: Optional[str] = None) -> Dict[str, str]:
        """
        Build headers for a call.

        Args:
            user_token: The caller's bearer token, passed through when the
                strategy authorizes as the end user

        Returns:
            Header mapping (apikey, Authorization, Content-Type)
        """
        pass


class ServiceRoleCredentials(CredentialStrategy):
    """Authorize every call with the service role key."""

    mode = CredentialMode.SERVICE_ROLE

    def __init__(self, service_key: str):
        self._service_key = service_key

    def headers(self, user_token: Optional[str] = None) -> Dict[str, str]:
        return {
            "apikey": self._service_key,
            "Authorization": f"Bearer {self._service_key}",
            "Content-Type": "application/json",
        }


class UserTokenCredentials(CredentialStrategy):
    """Authorize with the anon key plus the end user's own token."""

    mode = CredentialMode.USER_TOKEN

    def __init__(self, anon_key: str):
        self._anon_key = anon_key

    def headers(self, user_token: Optional[str] = None) -> Dict[str, str]:
        if not user_token:
            raise AuthenticationError("A user token is required to access the data store")
        return {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {user_token}",
            "Content-Type": "application/json",
        }


class NoCredentials(CredentialStrategy):
    """Used with the in-memory store, which performs no authorization."""

    mode = CredentialMode.MEMORY

    def headers(self, user_token: Optional[str] = None) -> Dict[str, str]:
        return {"Content-Type": "application/json"}


def resolve_credentials(
    mode: str,
    service_key: Optional[str] = None,
    anon_key: Optional[str] = None
) -> CredentialStrategy:
    """
    Resolve the configured mode into a concrete credential strategy.

    ``auto`` picks the service role when its key looks like a JWT, otherwise
    the user-token strategy when an anon key exists.

    Raises:
        ConfigurationError: If the selected mode has no usable key
    """
    try:
        selected = CredentialMode(mode.lower() if isinstance(mode, str) else mode)
    except ValueError as e:
        raise ConfigurationError(f"Unknown credential mode: {mode}", "STORE_CREDENTIAL_MODE") from e

    service_key = (service_key or "").strip() or None
    anon_key = (anon_key or "").strip() or None

    if selected is CredentialMode.AUTO:
        if looks_like_jwt(service_key):
            selected = CredentialMode.SERVICE_ROLE
        elif anon_key:
            selected = CredentialMode.USER_TOKEN
        else:
            raise ConfigurationError(
                "Data store keys missing: set SERVICE_ROLE_KEY or ANON_KEY",
                "STORE_CREDENTIAL_MODE"
            )

    if selected is CredentialMode.SERVICE_ROLE:
        if not service_key:
            raise ConfigurationError("SERVICE_ROLE_KEY is not set", "SERVICE_ROLE_KEY")
        strategy: CredentialStrategy = ServiceRoleCredentials(service_key)
    elif selected is CredentialMode.USER_TOKEN:
        if not anon_key:
            raise ConfigurationError("ANON_KEY is not set", "ANON_KEY")
        strategy = UserTokenCredentials(anon_key)
    else:
        strategy = NoCredentials()

    logger.info(f"Data store credential mode resolved to {strategy.mode.value}")
    return strategy
