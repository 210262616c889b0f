"""Controller configuration with validation.

The controller's own Linode credentials are the last tier of the
credential precedence chain; they are loaded here once at startup and
handed to every scope.
"""

from __future__ import annotations

import os
from dataclasses import dataclass


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_LINODE_URL = "https://api.linode.com/v4"
DEFAULT_USER_AGENT = "cluster-api-provider-linode"

DEFAULT_CLIENT_TIMEOUT_SECONDS = 10
MIN_CLIENT_TIMEOUT_SECONDS = 1
MAX_CLIENT_TIMEOUT_SECONDS = 300

DEFAULT_KUBE_REQUEST_TIMEOUT_SECONDS = 30
MIN_KUBE_REQUEST_TIMEOUT_SECONDS = 1
MAX_KUBE_REQUEST_TIMEOUT_SECONDS = 600


@dataclass(frozen=True)
class ControllerCredentials:
    """Default tokens used when no credentials reference applies.

    Never logged or printed; repr is redacted.
    """

    api_token: str = ""
    dns_token: str = ""

    def __repr__(self) -> str:
        api_token = "<redacted>" if self.api_token else "<empty>"
        dns_token = "<redacted>" if self.dns_token else "<empty>"
        return f"ControllerCredentials(api_token={api_token}, dns_token={dns_token})"


@dataclass(frozen=True)
class ScopeConfig:
    """Scope configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-reconcile.
    """

    # Controller credentials
    api_token: str
    dns_token: str = ""

    # Linode API
    linode_url: str = DEFAULT_LINODE_URL
    user_agent: str = DEFAULT_USER_AGENT
    client_timeout_seconds: int = DEFAULT_CLIENT_TIMEOUT_SECONDS

    # Kubernetes API
    kube_request_timeout_seconds: int = DEFAULT_KUBE_REQUEST_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.api_token:
            errors.append("LINODE_TOKEN is required")

        if not self.linode_url.startswith(("https://", "http://")):
            errors.append(f"LINODE_URL must be an http(s) URL: {self.linode_url}")

        if not (
            MIN_CLIENT_TIMEOUT_SECONDS
            <= self.client_timeout_seconds
            <= MAX_CLIENT_TIMEOUT_SECONDS
        ):
            errors.append(
                f"LINODE_CLIENT_TIMEOUT must be between {MIN_CLIENT_TIMEOUT_SECONDS} "
                f"and {MAX_CLIENT_TIMEOUT_SECONDS} seconds"
            )

        if not (
            MIN_KUBE_REQUEST_TIMEOUT_SECONDS
            <= self.kube_request_timeout_seconds
            <= MAX_KUBE_REQUEST_TIMEOUT_SECONDS
        ):
            errors.append(
                f"KUBE_REQUEST_TIMEOUT must be between {MIN_KUBE_REQUEST_TIMEOUT_SECONDS} "
                f"and {MAX_KUBE_REQUEST_TIMEOUT_SECONDS} seconds"
            )

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    def __repr__(self) -> str:
        return (
            f"ScopeConfig(linode_url={self.linode_url!r}, user_agent={self.user_agent!r}, "
            f"client_timeout_seconds={self.client_timeout_seconds}, "
            f"kube_request_timeout_seconds={self.kube_request_timeout_seconds})"
        )

    @property
    def defaults(self) -> ControllerCredentials:
        """Controller credentials for the last precedence tier."""
        return ControllerCredentials(api_token=self.api_token, dns_token=self.dns_token)

    @classmethod
    def from_env(cls) -> ScopeConfig:
        """Load configuration from environment variables.

        Environment Variables:
            LINODE_TOKEN: Controller API token (required)
            LINODE_DNS_TOKEN: Controller token for the Domains API (default: LINODE_TOKEN)
            LINODE_URL: Linode API base URL (default: https://api.linode.com/v4)
            LINODE_USER_AGENT: User agent sent to the Linode API
            LINODE_CLIENT_TIMEOUT: Per-request Linode API timeout in seconds (default: 10)
            KUBE_REQUEST_TIMEOUT: Per-request Kubernetes API timeout in seconds (default: 30)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        return cls(
            api_token=os.environ.get("LINODE_TOKEN", ""),
            dns_token=os.environ.get("LINODE_DNS_TOKEN", ""),
            linode_url=os.environ.get("LINODE_URL", DEFAULT_LINODE_URL),
            user_agent=os.environ.get("LINODE_USER_AGENT", DEFAULT_USER_AGENT),
            client_timeout_seconds=get_int("LINODE_CLIENT_TIMEOUT", DEFAULT_CLIENT_TIMEOUT_SECONDS),
            kube_request_timeout_seconds=get_int(
                "KUBE_REQUEST_TIMEOUT", DEFAULT_KUBE_REQUEST_TIMEOUT_SECONDS
            ),
        )
