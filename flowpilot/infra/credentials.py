"""
Credential source for production and distribution targets.

The scheduler asks for a credential right before acting on a target. A
missing or expired credential fails the action immediately with AuthError;
it is never turned into a timeout.

EnvCredentialProvider reads:
- FLOWPILOT_CREDENTIAL_<TARGET>: access token
- FLOWPILOT_CREDENTIAL_<TARGET>_EXPIRES_AT: optional ISO-8601 expiry
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Mapping, Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    """Access token for one target."""

    token: str
    expires_at: Optional[datetime] = None

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        if not self.token:
            return False
        if self.expires_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return now < expires_at


class CredentialProvider(Protocol):
    """Returns the current credential for a target, or None when unavailable."""

    async def get_credential(self, target: str) -> Optional[Credential]:
        ...


class StaticCredentialProvider:
    """Fixed credentials, keyed by target."""

    def __init__(self, credentials: Optional[Mapping[str, Credential]] = None):
        self._credentials = dict(credentials or {})

    def set(self, target: str, credential: Optional[Credential]) -> None:
        if credential is None:
            self._credentials.pop(target, None)
        else:
            self._credentials[target] = credential

    async def get_credential(self, target: str) -> Optional[Credential]:
        return self._credentials.get(target)


class EnvCredentialProvider:
    """Credentials from environment variables, read on every request."""

    def __init__(self, prefix: str = "FLOWPILOT_CREDENTIAL_"):
        self.prefix = prefix

    async def get_credential(self, target: str) -> Optional[Credential]:
        key = f"{self.prefix}{target.upper()}"
        token = os.getenv(key)
        if not token:
            return None

        expires_at = None
        raw_expiry = os.getenv(f"{key}_EXPIRES_AT")
        if raw_expiry:
            try:
                expires_at = datetime.fromisoformat(raw_expiry.replace("Z", "+00:00"))
            except ValueError:
                logger.warning(f"Ignoring unparseable expiry in {key}_EXPIRES_AT: {raw_expiry}")
                return None

        return Credential(token=token, expires_at=expires_at)
