"""
AWS Bedrock usage via CloudWatch.

Bedrock publishes per-model token and invocation counts to the
``AWS/Bedrock`` CloudWatch namespace; there is no billing endpoint, so
cost is derived from the pricing table.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, EndpointConnectionError

from llm_cost_exporter.core.errors import AuthError, DecodeError, NetworkError
from llm_cost_exporter.core.normalizer import normalize_bedrock_usage
from llm_cost_exporter.core.pricing import PricingTable, price_usage
from llm_cost_exporter.core.usage import ProviderIdentity, UsageRecord

from .credentials import CredentialLease, CredentialProvisioner

NAMESPACE = "AWS/Bedrock"
METRICS = ("InputTokenCount", "OutputTokenCount", "Invocations")

AUTH_ERROR_CODES = {
    "AccessDenied",
    "AccessDeniedException",
    "ExpiredToken",
    "ExpiredTokenException",
    "InvalidClientTokenId",
    "UnrecognizedClientException",
    "SignatureDoesNotMatch",
}


class BedrockUsageProvider:
    """Polls CloudWatch for one Bedrock model's usage over the last window.

    With a provisioner, every poll asks it for a lease first; without one,
    boto3's default credential chain is used unmodified.
    """

    def __init__(
        self,
        model_id: str,
        region: str = "us-east-1",
        provisioner: Optional[CredentialProvisioner] = None,
        pricing: Optional[PricingTable] = None,
        window_seconds: float = 300.0,
        timeout: float = 30.0,
        client_factory: Callable[..., Any] = boto3.client,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.identity = ProviderIdentity("bedrock", model_id)
        self.region = region
        self.provisioner = provisioner
        self.pricing = pricing
        self.window = timedelta(seconds=window_seconds)
        self._client_factory = client_factory
        self._boto_config = Config(
            connect_timeout=timeout,
            read_timeout=timeout,
            retries={"max_attempts": 1, "mode": "standard"},
        )
        self._now = now
        self._cloudwatch = None
        self._cloudwatch_lease: Optional[CredentialLease] = None

    def _client_for(self, lease: Optional[CredentialLease]):
        if self._cloudwatch is not None and lease == self._cloudwatch_lease:
            return self._cloudwatch

        kwargs: Dict[str, Any] = {"region_name": self.region, "config": self._boto_config}
        if lease is not None:
            kwargs.update(
                aws_access_key_id=lease.access_key,
                aws_secret_access_key=lease.secret_key,
                aws_session_token=lease.session_token,
            )
        self._cloudwatch = self._client_factory("cloudwatch", **kwargs)
        self._cloudwatch_lease = lease
        return self._cloudwatch

    def _collect_metric_sums(self, lease: Optional[CredentialLease]) -> Dict[str, Optional[float]]:
        cloudwatch = self._client_for(lease)
        end = self._now()
        start = end - self.window
        period = max(60, int(self.window.total_seconds()) // 60 * 60)
        provider_name = self.identity.provider_name

        sums: Dict[str, Optional[float]] = {}
        for metric in METRICS:
            try:
                response = cloudwatch.get_metric_statistics(
                    Namespace=NAMESPACE,
                    MetricName=metric,
                    Dimensions=[{"Name": "ModelId", "Value": self.identity.model_name}],
                    StartTime=start,
                    EndTime=end,
                    Period=period,
                    Statistics=["Sum"],
                )
            except ClientError as e:
                code = e.response.get("Error", {}).get("Code", "")
                if code in AUTH_ERROR_CODES:
                    raise AuthError(f"bedrock: CloudWatch rejected credentials ({code})", provider_name) from e
                raise NetworkError(f"bedrock: CloudWatch call failed ({code})", provider_name) from e
            except EndpointConnectionError as e:
                raise NetworkError(f"bedrock: cannot reach CloudWatch: {e}", provider_name) from e
            except BotoCoreError as e:
                raise NetworkError(f"bedrock: CloudWatch call failed: {e}", provider_name) from e

            try:
                datapoints = response["Datapoints"]
                sums[metric] = sum(point["Sum"] for point in datapoints) if datapoints else None
            except (KeyError, TypeError) as e:
                raise DecodeError(f"bedrock: malformed {metric} statistics", provider_name) from e
        return sums

    async def fetch_usage(self) -> UsageRecord:
        """Fetch the last window's token and invocation sums.

        Raises:
            ConfigError: If a lease cannot be obtained
            NetworkError, AuthError, DecodeError: From CloudWatch
        """
        lease = await self.provisioner.get_lease() if self.provisioner is not None else None
        sums = await asyncio.to_thread(self._collect_metric_sums, lease)

        try:
            reported = normalize_bedrock_usage(sums)
        except DecodeError as e:
            e.provider_name = self.identity.provider_name
            raise
        return price_usage(self.identity.model_name, reported, self.pricing)

    async def aclose(self) -> None:
        self._cloudwatch = None
        self._cloudwatch_lease = None
