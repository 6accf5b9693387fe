"""
Short-lived AWS credentials via STS role assumption.

The provisioner moves between three states: no lease yet, a valid lease,
and an expired lease. Expiry is checked lazily right before each use.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from llm_cost_exporter.config.logger import get_logger
from llm_cost_exporter.core.errors import ConfigError

LOGGER = get_logger("llm_cost_exporter.credentials")


class LeaseState(Enum):
    """Lifecycle of the credential lease."""
    NO_LEASE = "no_lease"
    LEASED = "leased"
    EXPIRED = "expired"


@dataclass(frozen=True)
class CredentialLease:
    """Temporary AWS credentials returned by AssumeRole."""
    access_key: str
    secret_key: str
    session_token: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialProvisioner:
    """Obtains and renews a CredentialLease for one provider.

    A lease is renewed once it is within ``refresh_ahead_seconds`` of its
    expiry. If renewal fails, the old lease keeps being handed out for as
    long as it has not actually expired.
    """

    def __init__(
        self,
        role_arn: str,
        session_name: str,
        duration_seconds: int = 3600,
        region: Optional[str] = None,
        timeout: float = 30.0,
        sts_client: Any = None,
        clock: Callable[[], datetime] = _utcnow,
        refresh_ahead_seconds: float = 60.0,
    ):
        """Initialize the provisioner.

        Args:
            role_arn: Role to assume (required)
            session_name: STS role session name
            duration_seconds: Requested lease lifetime
            region: Region for the STS endpoint
            timeout: Connect/read timeout for STS calls
            sts_client: boto3 STS client (one is created if omitted)
            clock: Returns the current UTC time
            refresh_ahead_seconds: Renewal margin before expiry

        Raises:
            ValueError: If role_arn is missing/empty
        """
        if not role_arn or not role_arn.strip():
            raise ValueError("role_arn is required and cannot be empty")

        self.role_arn = role_arn
        self.session_name = session_name
        self.duration_seconds = duration_seconds
        self._clock = clock
        self._refresh_ahead = timedelta(seconds=refresh_ahead_seconds)
        self._sts = sts_client or boto3.client(
            "sts",
            region_name=region,
            config=Config(
                connect_timeout=timeout,
                read_timeout=timeout,
                retries={"max_attempts": 1, "mode": "standard"},
            ),
        )
        self._lease: Optional[CredentialLease] = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> LeaseState:
        if self._lease is None:
            return LeaseState.NO_LEASE
        if self._lease.is_expired(self._clock()):
            return LeaseState.EXPIRED
        return LeaseState.LEASED

    async def get_lease(self) -> CredentialLease:
        """Return a usable lease, assuming the role when needed.

        Raises:
            ConfigError: If the exchange fails and no unexpired lease is held
        """
        async with self._lock:
            now = self._clock()
            if self._lease is not None and now < self._lease.expires_at - self._refresh_ahead:
                return self._lease

            try:
                self._lease = await asyncio.to_thread(self._assume_role)
            except ConfigError:
                if self._lease is not None and not self._lease.is_expired(now):
                    LOGGER.warning(
                        "Role assumption failed; reusing current lease until expiry",
                        extra={"role_arn": self.role_arn, "expires_at": self._lease.expires_at.isoformat()},
                    )
                    return self._lease
                raise

            LOGGER.info(
                "Assumed role",
                extra={"role_arn": self.role_arn, "expires_at": self._lease.expires_at.isoformat()},
            )
            return self._lease

    def _assume_role(self) -> CredentialLease:
        try:
            response = self._sts.assume_role(
                RoleArn=self.role_arn,
                RoleSessionName=self.session_name,
                DurationSeconds=self.duration_seconds,
            )
        except (BotoCoreError, ClientError) as e:
            raise ConfigError(f"AssumeRole for {self.role_arn} failed: {e}") from e

        try:
            credentials = response["Credentials"]
            expires_at = credentials["Expiration"]
            lease = CredentialLease(
                access_key=credentials["AccessKeyId"],
                secret_key=credentials["SecretAccessKey"],
                session_token=credentials["SessionToken"],
                expires_at=expires_at if expires_at.tzinfo else expires_at.replace(tzinfo=timezone.utc),
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise ConfigError(f"AssumeRole response for {self.role_arn} is missing credentials") from e

        if not (lease.access_key and lease.secret_key and lease.session_token):
            raise ConfigError(f"AssumeRole response for {self.role_arn} has empty credentials")
        return lease
