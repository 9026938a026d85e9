"""Configuration for nsscache-http.

nsscache-http is configured by a YAML file. The LDAP bind password and the
Slack webhook URL are secrets and are normally injected via environment
variables instead, which take precedence over the file. Only the settings
with explicit ``validation_alias`` settings are intended to be set via
environment variable.
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Annotated, Any, Self

import yaml
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    UrlConstraints,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel
from pydantic_core import Url
from typing_extensions import override
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)
from safir.logging import LogLevel, Profile, configure_logging
from safir.pydantic import HumanTimedelta

from .constants import (
    DEFAULT_CACHE_TTL,
    DEFAULT_LDAP_TIMEOUT,
    DEFAULT_REFRESH_TIMEOUT,
    STALE_TTL_MULTIPLE,
)

LdapDsn = Annotated[
    Url, UrlConstraints(allowed_schemes=["ldap", "ldaps"], host_required=True)
]
"""DSN for connecting to an LDAP server."""

__all__ = [
    "CacheConfig",
    "CamelCaseSettings",
    "Config",
    "EnvFirstSettings",
    "LDAPConfig",
    "LdapDsn",
    "ServerConfig",
]


class CamelCaseSettings(BaseSettings):
    """Base class for Pydantic settings supporting camel-case.

    This base class also forbids all extra attributes. It should be used as
    the base class (possibly indirectly) for all configuration models that
    support environment variable overrides.
    """

    model_config = SettingsConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )


class EnvFirstSettings(CamelCaseSettings):
    """Base class for Pydantic settings with environment overrides.

    Classes that inherit from this base class will prioritize environment
    variables over arguments to the class constructor.
    """

    @override
    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Override the sources of settings.

        Deactivate :file:`.env` and secret file support. Allow environment
        variables to override init parameters, since init parameters come
        from the YAML configuration file and secrets injected into the
        environment should take precedence.
        """
        return (env_settings, init_settings)


class LDAPConfig(EnvFirstSettings):
    """Configuration for the LDAP server holding the POSIX entries."""

    url: LdapDsn = Field(
        ...,
        title="LDAP server URL",
        description=(
            "URL of the LDAP server. Use the ``ldaps`` scheme for a TLS"
            " connection, or ``ldap`` optionally combined with ``startTls``."
        ),
    )

    start_tls: bool = Field(
        False,
        title="Use StartTLS",
        description=(
            "Whether to upgrade an ``ldap`` connection to TLS with StartTLS"
        ),
    )

    skip_verify: bool = Field(
        False,
        title="Skip certificate verification",
        description=(
            "If set to true, do not verify the certificate of the LDAP"
            " server. Only intended for testing against servers with"
            " self-signed certificates."
        ),
    )

    bind_dn: str | None = Field(
        None,
        title="Simple bind DN",
        description=(
            "DN of user to bind as with simple bind when querying the LDAP"
            " server. If not set, the bind is anonymous."
        ),
    )

    bind_password: SecretStr | None = Field(
        None,
        title="Simple bind password",
        description=(
            "Password for simple bind authentication to the LDAP server."
            " Only used if ``bindDn`` is set."
        ),
        validation_alias=AliasChoices(
            "NSSCACHE_HTTP_LDAP_BIND_PASSWORD",
            "LDAP_BIND_PASSWORD",
            "bindPassword",
        ),
    )

    base_dn: str = Field(
        ...,
        title="Base DN for searches",
        description="Base DN used for account, group, and shadow searches",
    )

    user_filter: str = Field(
        "(objectClass=posixAccount)",
        title="Account search filter",
        description="Filter used to search for passwd entries",
    )

    group_filter: str = Field(
        "(objectClass=posixGroup)",
        title="Group search filter",
        description="Filter used to search for group entries",
    )

    shadow_filter: str | None = Field(
        "(objectClass=shadowAccount)",
        title="Shadow search filter",
        description=(
            "Filter used to search for shadow entries, or `None` to not"
            " search for shadow entries at all and serve an empty shadow map"
        ),
    )

    user_name_attr: str = Field(
        "uid",
        title="Username attribute",
        description=(
            "Attribute holding the username of accounts and shadow entries."
            " This is also the attribute searched for in the DNs listed in"
            " the ``member`` attribute of groups."
        ),
    )

    search_timeout: HumanTimedelta = Field(
        DEFAULT_LDAP_TIMEOUT,
        title="Search timeout",
        description="Timeout for connecting and for each LDAP search",
    )

    @model_validator(mode="after")
    def _validate_bind_password(self) -> Self:
        """Ensure a password was provided if a bind DN was set."""
        if self.bind_dn and not self.bind_password:
            raise ValueError("bindPassword required if bindDn is set")
        return self

    @model_validator(mode="after")
    def _validate_start_tls(self) -> Self:
        """Ensure StartTLS is only requested for unencrypted URLs."""
        if self.start_tls and self.url.scheme != "ldap":
            raise ValueError("startTls requires an ldap:// URL")
        return self

    @property
    def fetch_shadow(self) -> bool:
        """Whether to search for shadow entries."""
        return self.shadow_filter is not None


class CacheConfig(BaseModel):
    """Configuration for the snapshot cache."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    ttl: HumanTimedelta = Field(
        DEFAULT_CACHE_TTL,
        title="Refresh interval",
        description=(
            "How frequently to refresh the cache from LDAP. Integers are"
            " interpreted as seconds."
        ),
    )

    refresh_timeout: HumanTimedelta = Field(
        DEFAULT_REFRESH_TIMEOUT,
        title="Refresh deadline",
        description=(
            "Maximum duration of one refresh. A refresh that takes longer is"
            " abandoned and the previous data continues to be served."
        ),
    )

    stale_after: HumanTimedelta | None = Field(
        None,
        title="Stale threshold",
        description=(
            "Age of the cached data after which the health check reports"
            " the cache as stale. Defaults to three times ``ttl``."
        ),
    )

    @field_validator("ttl", "refresh_timeout")
    @classmethod
    def _validate_positive(cls, v: timedelta) -> timedelta:
        if v <= timedelta(0):
            raise ValueError("must be positive")
        return v

    @property
    def stale_threshold(self) -> timedelta:
        """Age after which the cached data is considered stale."""
        if self.stale_after is not None:
            return self.stale_after
        return self.ttl * STALE_TTL_MULTIPLE


class ServerConfig(BaseModel):
    """Configuration for the HTTP server started by the ``run`` command."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    host: str = Field(
        "0.0.0.0",  # noqa: S104
        title="Listen address",
        description="Address on which to listen for HTTP requests",
    )

    port: int = Field(
        8080,
        title="Listen port",
        description="Port on which to listen for HTTP requests",
        ge=1,
        le=65535,
    )


class Config(EnvFirstSettings):
    """Configuration for nsscache-http."""

    log_level: LogLevel = Field(
        LogLevel.INFO,
        title="Logging level",
        description="Python logging level",
    )

    log_profile: Profile = Field(
        Profile.production,
        title="Logging profile",
        description=(
            "Logging profile: ``production`` for JSON logs or ``development``"
            " for human-readable logs"
        ),
    )

    slack_alerts: bool = Field(
        False,
        title="Enable Slack alerts",
        description=(
            "Whether to enable Slack alerts for failed refreshes. If true,"
            " ``slackWebhook`` must also be set."
        ),
    )

    slack_webhook: SecretStr | None = Field(
        None,
        title="Slack webhook for alerts",
        description="If set, alerts will be posted to this Slack webhook",
        validation_alias=AliasChoices(
            "NSSCACHE_HTTP_SLACK_WEBHOOK", "slackWebhook"
        ),
    )

    ldap: LDAPConfig = Field(
        ...,
        title="LDAP configuration",
        description="Configuration for retrieving entries from LDAP",
    )

    cache: CacheConfig = Field(
        default_factory=CacheConfig,
        title="Cache configuration",
        description="Configuration for the refresh schedule",
    )

    server: ServerConfig = Field(
        default_factory=ServerConfig,
        title="Server configuration",
        description="Configuration for the HTTP listener",
    )

    @model_validator(mode="after")
    def _validate_slack(self) -> Self:
        """Ensure a webhook is configured if Slack alerts are enabled."""
        if self.slack_alerts and not self.slack_webhook:
            raise ValueError("slackWebhook required if slackAlerts is set")
        return self

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Construct a Config object from a configuration file.

        Parameters
        ----------
        path
            Path to the configuration file in YAML.

        Returns
        -------
        Config
            The corresponding `Config` object.
        """
        with path.open("r") as f:
            data: Any = yaml.safe_load(f)
        return cls.model_validate(data)

    def configure_logging(self) -> None:
        """Configure logging based on the configuration."""
        configure_logging(
            name="nsscache-http",
            profile=self.log_profile,
            log_level=self.log_level,
        )
