"""Allowlist configuration settings.

Environment-based configuration for the local store and the remote
rules list.
"""

from pathlib import Path

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_API_BASE_URL = "https://api.cloudflare.com/client/v4"


class AllowlistSettings(BaseSettings):
    """Configuration for the local allowlist store.

    Attributes:
        database_path: SQLite file holding entries and config
        default_credential: Plaintext used to seed the admin credential hash
        seed_file: Optional YAML file overriding the bootstrap entries
        log_level: Logging level name for the CLI
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    database_path: str = Field(
        default="data/allowlist.db",
        alias="ALLOWLIST_DB_PATH",
        description="SQLite database file (or :memory:)",
    )
    default_credential: SecretStr = Field(
        default=SecretStr("admin123"),
        alias="ALLOWLIST_DEFAULT_CREDENTIAL",
        description="Initial admin credential, hashed on first initialization",
    )
    seed_file: Path | None = Field(
        default=None,
        alias="ALLOWLIST_SEED_FILE",
        description="YAML file with bootstrap entries",
    )
    log_level: str = Field(
        default="INFO",
        alias="ALLOWLIST_LOG_LEVEL",
        description="Logging level",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a standard level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            msg = f"Invalid log level: {v}. Must be one of: {', '.join(sorted(valid_levels))}"
            raise ValueError(msg)
        return v.upper()


class RulesListSettings(BaseSettings):
    """Configuration for the remote rules-list client.

    Remote sync is enabled only when both the API token and the account id
    are present.

    Attributes:
        cloudflare_api_token: Bearer token with list edit permission
        cloudflare_account_id: Account owning the rules list
        cloudflare_list_id: Explicit list identifier
        cloudflare_list_name: List name to resolve when no id is given
        api_base_url: API root URL
        request_timeout: HTTP request timeout in seconds
        max_redirects: Redirects followed before failing
        max_retries: Connection retries performed by the transport
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    cloudflare_api_token: SecretStr | None = Field(
        default=None,
        alias="CLOUDFLARE_API_TOKEN",
        description="API token with rules list permissions",
    )
    cloudflare_account_id: str | None = Field(
        default=None,
        alias="CLOUDFLARE_ACCOUNT_ID",
        description="Account identifier",
    )
    cloudflare_list_id: str | None = Field(
        default=None,
        alias="CLOUDFLARE_LIST_ID",
        description="Explicit rules list identifier",
    )
    cloudflare_list_name: str | None = Field(
        default=None,
        alias="CLOUDFLARE_LIST_NAME",
        description="Rules list name to resolve",
    )

    api_base_url: str = Field(
        default=DEFAULT_API_BASE_URL,
        alias="CF_API_BASE_URL",
        description="API root URL",
    )
    request_timeout: float = Field(
        default=15,
        alias="CF_REQUEST_TIMEOUT",
        description="HTTP request timeout in seconds",
    )
    max_redirects: int = Field(
        default=3,
        alias="CF_MAX_REDIRECTS",
        description="Maximum redirects to follow",
    )
    max_retries: int = Field(
        default=0,
        alias="CF_MAX_RETRIES",
        description="Connection retries for failed requests",
    )

    @field_validator(
        "cloudflare_account_id", "cloudflare_list_id", "cloudflare_list_name"
    )
    @classmethod
    def empty_to_none(cls, v: str | None) -> str | None:
        """Treat empty environment values as unset."""
        if v is not None and not v.strip():
            return None
        return v

    @property
    def is_configured(self) -> bool:
        """Whether enough is configured to talk to the remote list."""
        return bool(self.get_token_value() and self.cloudflare_account_id)

    def get_token_value(self) -> str:
        """Get the API token as a plain string.

        Returns:
            The API token value, or an empty string when unset.
        """
        if self.cloudflare_api_token is None:
            return ""
        return self.cloudflare_api_token.get_secret_value()


_settings_instance: AllowlistSettings | None = None
_rules_list_settings_instance: RulesListSettings | None = None


def get_allowlist_settings() -> AllowlistSettings:
    """Get default store settings (singleton, reads from environment)."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = AllowlistSettings()
    return _settings_instance


def get_rules_list_settings() -> RulesListSettings:
    """Get default rules-list settings (singleton, reads from environment)."""
    global _rules_list_settings_instance
    if _rules_list_settings_instance is None:
        _rules_list_settings_instance = RulesListSettings()
    return _rules_list_settings_instance


def reset_settings() -> None:
    """Reset singletons (for testing)."""
    global _settings_instance, _rules_list_settings_instance
    _settings_instance = None
    _rules_list_settings_instance = None
