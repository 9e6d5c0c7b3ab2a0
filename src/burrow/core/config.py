"""Core configuration - centralized config for the burrow package.

All environment-based configuration should flow through this module.
This provides a single source of truth and consistent defaults.

Usage:
    from burrow.core.config import get_config
    config = get_config()

    data_dir = config.data_path
    relays = config.relay_list
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_RELAYS: tuple[str, ...] = (
    "wss://relay.damus.io",
    "wss://nos.lol",
    "wss://relay.primal.net",
    "wss://relay.ditto.pub",
)


class BurrowSettings(BaseSettings):
    """Configuration settings for Burrow.

    Every setting can be supplied through a ``BURROW_`` environment variable
    or a ``.env`` file in the working directory.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==========================================================================
    # STORAGE SETTINGS
    # ==========================================================================

    data_dir: str = Field(
        default="~/.burrow",
        description="Directory holding groups, MLS state, messages and audit logs",
        validation_alias="BURROW_DATA_DIR",
    )
    key_path: str = Field(
        default="~/.clawstr/secret.key",
        description="Path of the Nostr secret key file (hex or nsec)",
        validation_alias="BURROW_KEY_PATH",
    )

    # ==========================================================================
    # RELAY SETTINGS
    # ==========================================================================

    relays: str = Field(
        default=",".join(DEFAULT_RELAYS),
        description="Comma-separated list of relay URLs",
        validation_alias="BURROW_RELAYS",
    )
    relay_timeout: float = Field(
        default=10.0,
        description="Seconds to wait for a relay to connect or answer",
        validation_alias="BURROW_RELAY_TIMEOUT",
    )
    reconnect_delay: float = Field(
        default=5.0,
        description="Fixed backoff in seconds before the daemon reconnects a group",
        validation_alias="BURROW_RECONNECT_DELAY",
    )

    # ==========================================================================
    # ACCESS CONTROL SETTINGS
    # ==========================================================================

    owner_hex: str | None = Field(
        default=None,
        description="Owner pubkey (hex); overrides owner.hex in access-control.json",
        validation_alias="BURROW_OWNER_HEX",
    )
    owner_npub: str | None = Field(
        default=None,
        description="Owner pubkey (npub); decoded when no hex owner is available",
        validation_alias="BURROW_OWNER_NPUB",
    )

    # ==========================================================================
    # LOGGING SETTINGS
    # ==========================================================================

    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
        validation_alias="BURROW_LOG_LEVEL",
    )
    log_format: str = Field(
        default="",
        description="Log format: 'json', 'text', or '' (auto-detect)",
        validation_alias="BURROW_LOG_FORMAT",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (optional)",
        validation_alias="BURROW_LOG_FILE",
    )

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def data_path(self) -> Path:
        """Expanded data directory."""
        return Path(self.data_dir).expanduser()

    @property
    def key_file(self) -> Path:
        """Expanded secret key path."""
        return Path(self.key_path).expanduser()

    @property
    def relay_list(self) -> list[str]:
        """Relay URLs with blanks dropped."""
        return [r.strip() for r in self.relays.split(",") if r.strip()]


# ==========================================================================
# GLOBAL CONFIG INSTANCE (lazy loaded)
# ==========================================================================

_config: BurrowSettings | None = None


def get_config() -> BurrowSettings:
    """Get the global configuration instance.

    Returns:
        The singleton BurrowSettings instance.
    """
    global _config
    if _config is None:
        _config = BurrowSettings()
    return _config


def clear_config_cache() -> None:
    """Clear the config cache. Useful for testing."""
    global _config
    _config = None
