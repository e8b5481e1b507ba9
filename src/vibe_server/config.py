"""
Server configuration management.

This module handles loading and accessing server configuration from multiple sources
with a clear priority order:

    1. Environment variables (highest priority) - for containerized deployments
    2. Config file (config/server.ini) - for static deployments
    3. Built-in defaults (lowest priority) - sensible fallbacks

Configuration is loaded once at module import time and cached. The ServerConfig
dataclass provides typed access to all settings.

Usage:
    from vibe_server.config import config

    print(config.server.port)
    print(config.rooms.max_connections)
    print(config.oracle.model)

Environment Variable Mapping:
    VIBE_HOST                   -> server.host
    VIBE_PORT                   -> server.port
    VIBE_PRODUCTION             -> security.production
    VIBE_CORS_ORIGINS           -> security.cors_origins
    VIBE_CLIENT_IP_HEADER       -> security.client_ip_header
    VIBE_ROOMS_DIR              -> database.rooms_dir
    VIBE_LOG_LEVEL              -> logging.level
    VIBE_RATE_LIMIT_ENABLED     -> rate_limit.enabled
    VIBE_ALLOWED_ROOMS          -> rooms.allowed_ids
    VIBE_MAX_CONNECTIONS        -> rooms.max_connections
    VIBE_OLLAMA_BASE_URL        -> oracle.base_url
    VIBE_OLLAMA_MODEL           -> oracle.model
    VIBE_OLLAMA_TIMEOUT_SECONDS -> oracle.timeout_seconds
    VIBE_TURNSTILE_SECRET       -> verification.secret
"""

import configparser
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

# =============================================================================
# PATH CONFIGURATION
# =============================================================================

# Project root directory (contains src/, config/, data/)
PROJECT_ROOT = Path(__file__).parent.parent.parent

CONFIG_DIR = PROJECT_ROOT / "config"
CONFIG_FILE = CONFIG_DIR / "server.ini"
CONFIG_EXAMPLE = CONFIG_DIR / "server.example.ini"


# =============================================================================
# CONFIGURATION DATACLASSES
# =============================================================================


@dataclass
class ServerSettings:
    """Network server configuration."""

    host: str = "0.0.0.0"  # nosec B104 - intentional for server binding
    port: int = 8000


@dataclass
class SecuritySettings:
    """Security-related configuration."""

    production: bool = False
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:5173"])
    client_ip_header: str = "CF-Connecting-IP"
    security_headers: bool = True


@dataclass
class DatabaseSettings:
    """Room storage configuration. Each room gets its own SQLite file."""

    rooms_dir: str = "data/rooms"

    @property
    def absolute_rooms_dir(self) -> Path:
        """Get absolute path to the rooms directory."""
        p = Path(self.rooms_dir)
        if p.is_absolute():
            return p
        return PROJECT_ROOT / p


@dataclass
class LoggingSettings:
    """Logging configuration."""

    level: str = "INFO"
    format: Literal["simple", "detailed"] = "detailed"


@dataclass
class RateLimitSettings:
    """Sliding-window limits applied to prompt submissions."""

    enabled: bool = True
    window_seconds: int = 60
    global_writes: int = 30
    per_source_writes: int = 3


@dataclass
class RoomSettings:
    """Per-room capacity and text limits."""

    allowed_ids: list[str] = field(default_factory=lambda: ["room"])
    max_connections: int = 100
    history_limit: int = 20
    prompt_max_chars: int = 200
    author_max_chars: int = 50
    description_max_chars: int = 200


@dataclass
class OracleSettings:
    """Ollama endpoint used for moderation and interpretation."""

    base_url: str = "http://localhost:11434"
    model: str = "llama3.1:8b"
    timeout_seconds: float = 20.0
    temperature: float = 0.7
    moderation_max_tokens: int = 5
    interpretation_max_tokens: int = 200

    @property
    def chat_endpoint(self) -> str:
        """Full ``/api/chat`` URL."""
        return self.base_url.rstrip("/") + "/api/chat"


@dataclass
class VerificationSettings:
    """Turnstile bot verification. Disabled while ``secret`` is empty."""

    secret: str = ""
    verify_url: str = "https://challenges.cloudflare.com/turnstile/v0/siteverify"
    timeout_seconds: float = 10.0

    @property
    def enabled(self) -> bool:
        return bool(self.secret)


@dataclass
class ServerConfig:
    """
    Complete server configuration.

    This is the main configuration object that aggregates all settings sections.
    Access via the module-level `config` singleton.
    """

    server: ServerSettings = field(default_factory=ServerSettings)
    security: SecuritySettings = field(default_factory=SecuritySettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)
    rooms: RoomSettings = field(default_factory=RoomSettings)
    oracle: OracleSettings = field(default_factory=OracleSettings)
    verification: VerificationSettings = field(default_factory=VerificationSettings)

    @property
    def is_production(self) -> bool:
        """Convenience property for production mode check."""
        return self.security.production


# =============================================================================
# CONFIGURATION LOADING
# =============================================================================


def _parse_bool(value: str) -> bool:
    """Parse a string value to boolean."""
    return value.lower() in ("true", "yes", "1", "on", "enabled")


def _parse_list(value: str) -> list[str]:
    """Parse a comma-separated string to list, stripping whitespace."""
    if not value or value.strip() == "":
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _load_from_ini(parser: configparser.ConfigParser, cfg: ServerConfig) -> None:
    """Load configuration from parsed INI file into ServerConfig."""
    # Server section
    if parser.has_section("server"):
        if parser.has_option("server", "host"):
            cfg.server.host = parser.get("server", "host")
        if parser.has_option("server", "port"):
            cfg.server.port = parser.getint("server", "port")

    # Security section
    if parser.has_section("security"):
        if parser.has_option("security", "production"):
            cfg.security.production = _parse_bool(parser.get("security", "production"))
        if parser.has_option("security", "cors_origins"):
            cfg.security.cors_origins = _parse_list(parser.get("security", "cors_origins"))
        if parser.has_option("security", "client_ip_header"):
            cfg.security.client_ip_header = parser.get("security", "client_ip_header").strip()
        if parser.has_option("security", "security_headers"):
            cfg.security.security_headers = _parse_bool(parser.get("security", "security_headers"))

    # Database section
    if parser.has_section("database"):
        if parser.has_option("database", "rooms_dir"):
            cfg.database.rooms_dir = parser.get("database", "rooms_dir")

    # Logging section
    if parser.has_section("logging"):
        if parser.has_option("logging", "level"):
            cfg.logging.level = parser.get("logging", "level").upper()
        if parser.has_option("logging", "format"):
            val = parser.get("logging", "format").lower()
            if val in ("simple", "detailed"):
                cfg.logging.format = val  # type: ignore[assignment]

    # Rate limit section
    if parser.has_section("rate_limit"):
        if parser.has_option("rate_limit", "enabled"):
            cfg.rate_limit.enabled = _parse_bool(parser.get("rate_limit", "enabled"))
        if parser.has_option("rate_limit", "window_seconds"):
            cfg.rate_limit.window_seconds = parser.getint("rate_limit", "window_seconds")
        if parser.has_option("rate_limit", "global_writes"):
            cfg.rate_limit.global_writes = parser.getint("rate_limit", "global_writes")
        if parser.has_option("rate_limit", "per_source_writes"):
            cfg.rate_limit.per_source_writes = parser.getint("rate_limit", "per_source_writes")

    # Rooms section
    if parser.has_section("rooms"):
        if parser.has_option("rooms", "allowed_ids"):
            cfg.rooms.allowed_ids = _parse_list(parser.get("rooms", "allowed_ids"))
        for option in (
            "max_connections",
            "history_limit",
            "prompt_max_chars",
            "author_max_chars",
            "description_max_chars",
        ):
            if parser.has_option("rooms", option):
                setattr(cfg.rooms, option, parser.getint("rooms", option))

    # Oracle section
    if parser.has_section("oracle"):
        if parser.has_option("oracle", "base_url"):
            cfg.oracle.base_url = parser.get("oracle", "base_url")
        if parser.has_option("oracle", "model"):
            cfg.oracle.model = parser.get("oracle", "model")
        if parser.has_option("oracle", "timeout_seconds"):
            cfg.oracle.timeout_seconds = parser.getfloat("oracle", "timeout_seconds")
        if parser.has_option("oracle", "temperature"):
            cfg.oracle.temperature = parser.getfloat("oracle", "temperature")
        if parser.has_option("oracle", "moderation_max_tokens"):
            cfg.oracle.moderation_max_tokens = parser.getint("oracle", "moderation_max_tokens")
        if parser.has_option("oracle", "interpretation_max_tokens"):
            cfg.oracle.interpretation_max_tokens = parser.getint(
                "oracle", "interpretation_max_tokens"
            )

    # Verification section
    if parser.has_section("verification"):
        if parser.has_option("verification", "secret"):
            cfg.verification.secret = parser.get("verification", "secret").strip()
        if parser.has_option("verification", "verify_url"):
            cfg.verification.verify_url = parser.get("verification", "verify_url")
        if parser.has_option("verification", "timeout_seconds"):
            cfg.verification.timeout_seconds = parser.getfloat("verification", "timeout_seconds")


def _apply_env_overrides(cfg: ServerConfig) -> None:
    """Apply environment variable overrides to configuration."""
    # Server settings
    if env_host := os.getenv("VIBE_HOST"):
        cfg.server.host = env_host
    if env_port := os.getenv("VIBE_PORT"):
        cfg.server.port = int(env_port)

    # Security settings
    if env_production := os.getenv("VIBE_PRODUCTION"):
        cfg.security.production = _parse_bool(env_production)
    if env_cors := os.getenv("VIBE_CORS_ORIGINS"):
        cfg.security.cors_origins = _parse_list(env_cors)
    if env_ip_header := os.getenv("VIBE_CLIENT_IP_HEADER"):
        cfg.security.client_ip_header = env_ip_header

    # Database settings
    if env_rooms_dir := os.getenv("VIBE_ROOMS_DIR"):
        cfg.database.rooms_dir = env_rooms_dir

    # Logging settings
    if env_log := os.getenv("VIBE_LOG_LEVEL"):
        cfg.logging.level = env_log.upper()

    # Rate limiting and rooms
    if env_rate := os.getenv("VIBE_RATE_LIMIT_ENABLED"):
        cfg.rate_limit.enabled = _parse_bool(env_rate)
    if env_rooms := os.getenv("VIBE_ALLOWED_ROOMS"):
        cfg.rooms.allowed_ids = _parse_list(env_rooms)
    if env_max_conn := os.getenv("VIBE_MAX_CONNECTIONS"):
        cfg.rooms.max_connections = int(env_max_conn)

    # Oracle settings
    if env_ollama_url := os.getenv("VIBE_OLLAMA_BASE_URL"):
        cfg.oracle.base_url = env_ollama_url
    if env_model := os.getenv("VIBE_OLLAMA_MODEL"):
        cfg.oracle.model = env_model
    if env_timeout := os.getenv("VIBE_OLLAMA_TIMEOUT_SECONDS"):
        cfg.oracle.timeout_seconds = float(env_timeout)

    # Verification settings
    if env_secret := os.getenv("VIBE_TURNSTILE_SECRET"):
        cfg.verification.secret = env_secret


def load_config() -> ServerConfig:
    """
    Load configuration from all sources with proper priority.

    Priority (highest wins):
        1. Environment variables
        2. config/server.ini
        3. config/server.example.ini (fallback for development)
        4. Built-in defaults

    Returns:
        ServerConfig: Fully populated configuration object.
    """
    cfg = ServerConfig()

    config_file = None
    if CONFIG_FILE.exists():
        config_file = CONFIG_FILE
    elif CONFIG_EXAMPLE.exists():
        config_file = CONFIG_EXAMPLE

    if config_file:
        parser = configparser.ConfigParser()
        parser.read(config_file)
        _load_from_ini(parser, cfg)

    _apply_env_overrides(cfg)

    return cfg


# =============================================================================
# MODULE-LEVEL SINGLETON
# =============================================================================

config = load_config()


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def get_config_status() -> dict:
    """
    Get configuration status for diagnostics.

    Returns a dictionary with configuration source information,
    useful for debugging and the CLI.
    """
    return {
        "config_file_exists": CONFIG_FILE.exists(),
        "config_file_path": str(CONFIG_FILE),
        "using_example": not CONFIG_FILE.exists() and CONFIG_EXAMPLE.exists(),
        "production_mode": config.is_production,
        "rooms_dir": str(config.database.absolute_rooms_dir),
        "allowed_rooms": list(config.rooms.allowed_ids),
        "verification_enabled": config.verification.enabled,
        "rate_limit_enabled": config.rate_limit.enabled,
    }


def print_config_summary() -> None:
    """Print a summary of current configuration to stdout."""
    status = get_config_status()
    print("\n" + "=" * 60)
    print("SERVER CONFIGURATION")
    print("=" * 60)
    print(f"Config file: {status['config_file_path']}")
    print(f"File exists: {status['config_file_exists']}")
    if status["using_example"]:
        print("WARNING: Using example config (copy to server.ini for production)")
    print("-" * 60)
    print(f"Server:       {config.server.host}:{config.server.port}")
    print(f"Production:   {config.is_production}")
    print(f"Rooms:        {', '.join(status['allowed_rooms'])}")
    print(f"Rooms dir:    {status['rooms_dir']}")
    print(f"Oracle:       {config.oracle.model} @ {config.oracle.base_url}")
    print(f"Verification: {status['verification_enabled']}")
    print(f"Rate limits:  {status['rate_limit_enabled']}")
    print(f"Log level:    {config.logging.level}")
    print("=" * 60 + "\n")


# =============================================================================
# TEST HELPERS
# =============================================================================


class use_test_rooms_dir:
    """
    Context manager for using a temporary rooms directory.

    Usage:
        from vibe_server.config import use_test_rooms_dir

        def test_something(tmp_path):
            with use_test_rooms_dir(tmp_path):
                store = RoomStore.for_room("room")

    Args:
        rooms_dir: Directory that will hold the per-room database files
    """

    def __init__(self, rooms_dir: Path | str):
        self.rooms_dir = Path(rooms_dir)
        self.original_dir: str | None = None

    def __enter__(self) -> Path:
        self.original_dir = config.database.rooms_dir
        config.database.rooms_dir = str(self.rooms_dir)
        return self.rooms_dir

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.original_dir is not None:
            config.database.rooms_dir = self.original_dir
        return None
