"""Linode API client construction.

Clients are built on the azure-core pipeline: a bearer token header, a
user agent, connection/read timeouts, and a retry policy whose retry
count is fixed at zero by build_clients(). Retrying transient provider
errors belongs to the reconcile loop, which re-derives a fresh scope on
every attempt.
"""

from __future__ import annotations

import logging
from typing import Any

from azure.core import PipelineClient
from azure.core.exceptions import HttpResponseError
from azure.core.pipeline.policies import (
    ContentDecodePolicy,
    HeadersPolicy,
    NetworkTraceLoggingPolicy,
    RetryPolicy,
    UserAgentPolicy,
)
from azure.core.pipeline.transport import RequestsTransport
from azure.core.rest import HttpRequest

from .config import DEFAULT_CLIENT_TIMEOUT_SECONDS, DEFAULT_LINODE_URL, DEFAULT_USER_AGENT, ScopeConfig
from .credentials import ResolvedCredentials
from .errors import ClientConstructionError

logger = logging.getLogger(__name__)

# Retry count used for every scope client
SCOPE_CLIENT_RETRY_COUNT = 0


class LinodeClient:
    """Thin Linode API v4 client over an azure-core pipeline."""

    def __init__(self, pipeline_client: PipelineClient, *, timeout: int, retry_count: int) -> None:
        self._client = pipeline_client
        self.timeout = timeout
        self.retry_count = retry_count

    def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Send a single request and return the decoded JSON body.

        Raises:
            HttpResponseError: On any non-2xx response.
        """
        request = HttpRequest(method, path.lstrip("/"), json=json, params=params)
        response = self._client.send_request(request)
        if response.status_code >= 400:
            raise HttpResponseError(response=response)
        if not response.content:
            return None
        return response.json()

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> LinodeClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


def _validate_token(token: str) -> None:
    if not token or not token.strip():
        raise ClientConstructionError("missing Linode API token")
    if any(c in token for c in "\r\n") or token != token.strip():
        raise ClientConstructionError("malformed Linode API token")


def create_linode_client(
    token: str,
    timeout: int = DEFAULT_CLIENT_TIMEOUT_SECONDS,
    *,
    retry_count: int = SCOPE_CLIENT_RETRY_COUNT,
    base_url: str = DEFAULT_LINODE_URL,
    user_agent: str = DEFAULT_USER_AGENT,
) -> LinodeClient:
    """Create a Linode API client for a token.

    Args:
        token: Personal access token.
        timeout: Connection and read timeout in seconds.
        retry_count: Built-in retries for failed requests.
        base_url: Linode API base URL.
        user_agent: User agent prefix.

    Returns:
        Configured LinodeClient.

    Raises:
        ClientConstructionError: If the token is empty or malformed.
    """
    _validate_token(token)

    policies = [
        HeadersPolicy({"Authorization": f"Bearer {token}", "Accept": "application/json"}),
        UserAgentPolicy(user_agent),
        RetryPolicy(retry_total=retry_count, timeout=timeout),
        ContentDecodePolicy(),
        NetworkTraceLoggingPolicy(),
    ]
    transport = RequestsTransport(connection_timeout=timeout, read_timeout=timeout)

    try:
        pipeline_client = PipelineClient(
            base_url=base_url.rstrip("/") + "/",
            policies=policies,
            transport=transport,
        )
    except (TypeError, ValueError) as e:
        raise ClientConstructionError(f"failed to create linode client: {e}") from e

    return LinodeClient(pipeline_client, timeout=timeout, retry_count=retry_count)


def build_clients(
    credentials: ResolvedCredentials,
    config: ScopeConfig,
) -> tuple[LinodeClient, LinodeClient]:
    """Build the primary and Domains API clients for a scope.

    Returns:
        (linode_client, linode_domains_client)

    Raises:
        ClientConstructionError: If either token cannot build a client.
    """
    linode_client = create_linode_client(
        credentials.api_token,
        config.client_timeout_seconds,
        retry_count=SCOPE_CLIENT_RETRY_COUNT,
        base_url=config.linode_url,
        user_agent=config.user_agent,
    )
    try:
        linode_domains_client = create_linode_client(
            credentials.dns_token,
            config.client_timeout_seconds,
            retry_count=SCOPE_CLIENT_RETRY_COUNT,
            base_url=config.linode_url,
            user_agent=config.user_agent,
        )
    except ClientConstructionError:
        linode_client.close()
        raise

    logger.debug(
        "Built Linode clients",
        extra={"tier": credentials.source.tier, "timeout": config.client_timeout_seconds},
    )
    return linode_client, linode_domains_client
