"""
Configuration management for the KV gateway.

This module provides:
- Pydantic-based configuration validation
- Secrets management integration (environment variables, AWS Secrets Manager)
- Namespace -> Cloudflare KV namespace id bindings
- CORS, logging and metrics settings
"""

import json
import logging
import os
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from kv_gateway.validation import Namespace

logger = logging.getLogger(__name__)


# ============================================================================
# Secrets Management
# ============================================================================

class SecretsProvider(str, Enum):
    """Supported secrets management providers."""
    ENV = "env"
    AWS_SECRETS_MANAGER = "aws_secrets_manager"


class SecretsManager:
    """
    Retrieves secrets (the Cloudflare API token) from the configured provider.
    """

    def __init__(self, provider: SecretsProvider = SecretsProvider.ENV):
        self.provider = provider
        self._aws_client = None

    def get_secret(self, secret_name: str, default: Optional[str] = None) -> Optional[str]:
        """
        Retrieve a secret from the configured provider.

        Args:
            secret_name: Name/key of the secret
            default: Default value if secret not found

        Raises:
            ValueError: If secret not found and no default provided
        """
        if self.provider == SecretsProvider.ENV:
            value = os.getenv(secret_name, default)
            if value is None:
                raise ValueError(f"Secret '{secret_name}' not found in environment variables")
            return value
        return self._get_from_aws(secret_name, default)

    def _get_from_aws(self, secret_name: str, default: Optional[str] = None) -> Optional[str]:
        try:
            import boto3
            from botocore.exceptions import ClientError
        except ImportError:
            raise ImportError(
                "AWS Secrets Manager requires boto3. Install with: pip install boto3"
            )

        if self._aws_client is None:
            self._aws_client = boto3.client("secretsmanager")

        try:
            response = self._aws_client.get_secret_value(SecretId=secret_name)
        except ClientError as e:
            if e.response["Error"]["Code"] == "ResourceNotFoundException" and default is not None:
                logger.warning(f"Secret '{secret_name}' not found in AWS, using default")
                return default
            raise ValueError(f"Failed to retrieve secret '{secret_name}': {e}")

        secret_value = response.get("SecretString")
        if secret_value is None:
            raise ValueError(f"Secret '{secret_name}' has no string value")

        # {"api_token": "..."} style secrets
        try:
            parsed = json.loads(secret_value)
        except json.JSONDecodeError:
            return secret_value
        if isinstance(parsed, dict) and "api_token" in parsed:
            return parsed["api_token"]
        return secret_value


# ============================================================================
# Configuration Models
# ============================================================================

class CORSConfig(BaseModel):
    """CORS headers applied to every response."""

    allow_origins: list[str] = Field(
        default=["*"],
        description="Allowed origins"
    )

    allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        description="Allowed methods"
    )

    allow_headers: list[str] = Field(
        default=["Content-Type", "Authorization", "X-KV-Namespace"],
        description="Allowed request headers"
    )

    max_age: int = Field(
        default=86400,
        ge=0,
        description="Preflight cache duration in seconds"
    )


class CloudflareConfig(BaseModel):
    """Cloudflare KV REST API settings."""

    account_id: Optional[str] = Field(
        default=None,
        description="Cloudflare account id"
    )

    api_token: Optional[str] = Field(
        default=None,
        description="API token with Workers KV Storage edit permission"
    )

    api_token_secret_name: Optional[str] = Field(
        default=None,
        description="Secret name for the API token (if using secrets manager)"
    )

    base_url: str = Field(
        default="https://api.cloudflare.com/client/v4",
        description="Cloudflare API base URL"
    )

    timeout: float = Field(
        default=10.0,
        ge=1.0,
        le=120.0,
        description="Request timeout in seconds"
    )

    namespace_ids: dict[str, str] = Field(
        default_factory=dict,
        description="Gateway namespace name -> Cloudflare KV namespace id"
    )

    @field_validator("namespace_ids")
    @classmethod
    def validate_namespace_ids(cls, v):
        """Only known namespaces may be bound."""
        normalized = {}
        for name, namespace_id in v.items():
            upper = name.upper()
            if upper not in Namespace.names():
                raise ValueError(
                    f"Unknown namespace '{name}'. Must be one of: {', '.join(Namespace.names())}"
                )
            normalized[upper] = namespace_id
        return normalized


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root log level"
    )

    format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format"
    )

    @field_validator("level", mode="before")
    @classmethod
    def upper_level(cls, v):
        return v.upper() if isinstance(v, str) else v


class MetricsConfig(BaseModel):
    """Metrics and tracing configuration."""

    enabled: bool = Field(
        default=True,
        description="Collect Prometheus metrics and serve /metrics"
    )

    tracing_enabled: bool = Field(
        default=False,
        description="Emit OpenTelemetry spans for KV operations"
    )


class GatewayConfig(BaseModel):
    """
    Complete configuration for the KV gateway.

    Example usage:
        config = GatewayConfig(
            backend="cloudflare",
            cloudflare=CloudflareConfig(
                account_id="abc123",
                api_token_secret_name="prod/kv/api_token",
                namespace_ids={"USER_DATA": "0f2ac74b498b48028cb68387c421e279"},
            ),
        )
        app = create_app(config)
    """

    api_version: str = Field(
        default="v1",
        description="Version segment of the /api/{version}/kv prefix"
    )

    environment: str = Field(
        default="development",
        description="Deployment environment reported by /health"
    )

    debug: bool = Field(
        default=False,
        description="Expose unexpected exception messages in 500 responses"
    )

    host: str = Field(
        default="0.0.0.0",
        description="Bind address for the HTTP server"
    )

    port: int = Field(
        default=8787,
        ge=1,
        le=65535,
        description="Bind port for the HTTP server"
    )

    backend: Literal["memory", "cloudflare"] = Field(
        default="memory",
        description="Store backend for all namespaces"
    )

    actor: str = Field(
        default="api",
        description="Actor tag stamped into createdBy/updatedBy metadata"
    )

    cors: CORSConfig = Field(
        default_factory=CORSConfig,
        description="CORS configuration"
    )

    cloudflare: CloudflareConfig = Field(
        default_factory=CloudflareConfig,
        description="Cloudflare KV configuration"
    )

    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration"
    )

    metrics: MetricsConfig = Field(
        default_factory=MetricsConfig,
        description="Metrics configuration"
    )

    secrets_provider: SecretsProvider = Field(
        default=SecretsProvider.ENV,
        description="Secrets management provider"
    )

    model_config = ConfigDict(
        use_enum_values=True,
        validate_assignment=True
    )

    @field_validator("api_version")
    @classmethod
    def validate_api_version(cls, v):
        if not v or not v.replace("_", "").replace(".", "").isalnum():
            raise ValueError("api_version must be alphanumeric (e.g. 'v1')")
        return v

    @model_validator(mode="after")
    def validate_backend(self):
        """Cloudflare backend needs credentials and namespace bindings."""
        if self.backend == "cloudflare":
            cf = self.cloudflare
            if not cf.account_id:
                raise ValueError("Cloudflare backend requires 'account_id'")
            if not cf.api_token and not cf.api_token_secret_name:
                raise ValueError(
                    "Cloudflare backend requires either 'api_token' or 'api_token_secret_name'"
                )
            if not cf.namespace_ids:
                raise ValueError("Cloudflare backend requires at least one namespace binding")
        return self

    @property
    def api_prefix(self) -> str:
        return f"/api/{self.api_version}/kv"

    def get_secrets_manager(self) -> SecretsManager:
        return SecretsManager(provider=SecretsProvider(self.secrets_provider))

    def resolve_secrets(self) -> None:
        """Replace secret references with values from the secrets provider."""
        if self.cloudflare.api_token_secret_name:
            self.cloudflare.api_token = self.get_secrets_manager().get_secret(
                self.cloudflare.api_token_secret_name
            )
            self.cloudflare.api_token_secret_name = None


def load_config_from_env() -> GatewayConfig:
    """
    Load configuration from environment variables.

    Environment variables:
        KV_API_VERSION: API version segment (default: v1)
        KV_ENVIRONMENT: Environment name (default: development)
        KV_DEBUG: Expose error details (true/false)
        KV_HOST: Bind address (default: 0.0.0.0)
        KV_PORT: Bind port (default: 8787)
        KV_BACKEND: memory or cloudflare (default: memory)
        KV_ACTOR: Actor tag for audit metadata (default: api)
        KV_CORS_ORIGINS: Comma-separated allowed origins (default: *)
        CF_ACCOUNT_ID: Cloudflare account id
        CF_API_TOKEN: Cloudflare API token (not recommended - use secret)
        CF_API_TOKEN_SECRET: Secret name for the API token
        CF_BASE_URL: Cloudflare API base URL
        CF_NAMESPACE_<NAME>: KV namespace id for each gateway namespace
        KV_LOG_LEVEL: Log level (default: INFO)
        KV_LOG_FORMAT: json or text (default: json)
        KV_METRICS_ENABLED: Serve Prometheus metrics (default: true)
        KV_TRACING_ENABLED: Emit OpenTelemetry spans (default: false)
        SECRETS_PROVIDER: Secrets provider (env, aws_secrets_manager)

    Returns:
        Validated configuration with secrets resolved
    """
    namespace_ids = {
        ns.value: os.environ[f"CF_NAMESPACE_{ns.value}"]
        for ns in Namespace
        if os.getenv(f"CF_NAMESPACE_{ns.value}")
    }
    origins = [o.strip() for o in os.getenv("KV_CORS_ORIGINS", "*").split(",") if o.strip()]

    config = GatewayConfig(
        api_version=os.getenv("KV_API_VERSION", "v1"),
        environment=os.getenv("KV_ENVIRONMENT", "development"),
        debug=os.getenv("KV_DEBUG", "false").lower() == "true",
        host=os.getenv("KV_HOST", "0.0.0.0"),
        port=int(os.getenv("KV_PORT", "8787")),
        backend=os.getenv("KV_BACKEND", "memory").lower(),
        actor=os.getenv("KV_ACTOR", "api"),
        cors=CORSConfig(allow_origins=origins or ["*"]),
        cloudflare=CloudflareConfig(
            account_id=os.getenv("CF_ACCOUNT_ID"),
            api_token=os.getenv("CF_API_TOKEN"),
            api_token_secret_name=os.getenv("CF_API_TOKEN_SECRET"),
            base_url=os.getenv("CF_BASE_URL", "https://api.cloudflare.com/client/v4"),
            namespace_ids=namespace_ids,
        ),
        logging=LoggingConfig(
            level=os.getenv("KV_LOG_LEVEL", "INFO"),
            format=os.getenv("KV_LOG_FORMAT", "json").lower(),
        ),
        metrics=MetricsConfig(
            enabled=os.getenv("KV_METRICS_ENABLED", "true").lower() == "true",
            tracing_enabled=os.getenv("KV_TRACING_ENABLED", "false").lower() == "true",
        ),
        secrets_provider=SecretsProvider(os.getenv("SECRETS_PROVIDER", "env")),
    )

    config.resolve_secrets()

    return config
