"""Configuration management for rtc-chat.

This module handles loading configuration from multiple sources with the following priority:
1. CLI arguments (handled by caller)
2. Environment variables (RTC_CHAT_SIGNALING_URL, RTC_CHAT_HOST, RTC_CHAT_PORT)
3. TOML configuration file
4. Default values

Configuration files are loaded from:
- rtc-chat.toml in current working directory
- ~/.rtc-chat/config.toml

Environment selection via RTC_CHAT_ENV (development, staging, production).
Defaults to production if not set.

Example file:

    [server]
    host = "0.0.0.0"
    port = 3001

    [client]
    max_reconnect_attempts = 3
    candidate_queue_limit = 256
    auto_reconnect = false
    ice_servers = [{ urls = "stun:stun.l.google.com:19302" }]

    [environments.development]
    signaling_url = "ws://localhost:3001"
"""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from loguru import logger


DEFAULT_SIGNALING_URL = "ws://localhost:3001"
DEFAULT_HOST = "localhost"
DEFAULT_PORT = 3001
DEFAULT_STUN_SERVER = "stun:stun.l.google.com:19302"
DEFAULT_MAX_RECONNECT_ATTEMPTS = 3
DEFAULT_CANDIDATE_QUEUE_LIMIT = 256
DEFAULT_CONNECT_TIMEOUT = 10.0

# Valid environment names
VALID_ENVIRONMENTS = {"development", "staging", "production"}


@dataclass
class IceServerConfig:
    """A single STUN/TURN server entry.

    Attributes:
        urls: Server URL, e.g. ``stun:stun.l.google.com:19302``.
        username: TURN username, if any.
        credential: TURN credential, if any.
    """

    urls: str
    username: Optional[str] = None
    credential: Optional[str] = None

    def __post_init__(self):
        if not self.urls:
            raise ValueError("ICE server urls cannot be empty")

    def to_dict(self) -> dict:
        """Keyword arguments for ``aiortc.RTCIceServer``."""
        data = {"urls": self.urls}
        if self.username is not None:
            data["username"] = self.username
        if self.credential is not None:
            data["credential"] = self.credential
        return data


@dataclass
class ClientConfig:
    """Peer-side settings.

    Attributes:
        ice_servers: STUN/TURN servers handed to the peer connection.
        max_reconnect_attempts: Reconnect budget per session.
        candidate_queue_limit: Maximum number of buffered early candidates.
        auto_reconnect: Reconnect automatically when the transport fails.
        connect_timeout: Seconds to wait for the relay's connect message.
    """

    ice_servers: List[IceServerConfig] = field(
        default_factory=lambda: [IceServerConfig(urls=DEFAULT_STUN_SERVER)]
    )
    max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS
    candidate_queue_limit: int = DEFAULT_CANDIDATE_QUEUE_LIMIT
    auto_reconnect: bool = False
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT

    @classmethod
    def from_dict(cls, data: dict) -> "ClientConfig":
        """Create ClientConfig from the TOML [client] table.

        Invalid entries are skipped with a warning and the default is kept.
        """
        config = cls()

        if "ice_servers" in data:
            servers = []
            for entry in data["ice_servers"]:
                if not isinstance(entry, dict) or "urls" not in entry:
                    logger.warning(f"Skipping invalid ICE server entry: {entry}")
                    continue
                try:
                    servers.append(
                        IceServerConfig(
                            urls=entry["urls"],
                            username=entry.get("username"),
                            credential=entry.get("credential"),
                        )
                    )
                except ValueError as e:
                    logger.warning(f"Skipping invalid ICE server entry: {e}")
            config.ice_servers = servers

        # A zero queue limit would drop every early candidate.
        for name, minimum in (("max_reconnect_attempts", 0), ("candidate_queue_limit", 1)):
            if name in data:
                value = data[name]
                if isinstance(value, int) and not isinstance(value, bool) and value >= minimum:
                    setattr(config, name, value)
                else:
                    logger.warning(f"Ignoring invalid {name}: {value!r}")

        if "auto_reconnect" in data:
            config.auto_reconnect = bool(data["auto_reconnect"])

        if "connect_timeout" in data:
            try:
                config.connect_timeout = float(data["connect_timeout"])
            except (TypeError, ValueError):
                logger.warning(
                    f"Ignoring invalid connect_timeout: {data['connect_timeout']!r}"
                )

        return config

    def ice_server_dicts(self) -> List[dict]:
        return [server.to_dict() for server in self.ice_servers]


class Config:
    """Configuration manager for rtc-chat."""

    def __init__(self):
        """Initialize configuration with defaults."""
        self.signaling_url: str = DEFAULT_SIGNALING_URL
        self.host: str = DEFAULT_HOST
        self.port: int = DEFAULT_PORT
        self.client: ClientConfig = ClientConfig()
        self.environment: str = "production"
        self._config_data: dict = {}

    def load(self) -> None:
        """Load configuration from all sources.

        Priority order:
        1. Environment variables
        2. TOML configuration file
        3. Default values
        """
        self.environment = self._get_environment()

        config_file = self._find_config_file()
        if config_file:
            self._load_config_file(config_file)

        self._apply_env_overrides()

    def _get_environment(self) -> str:
        """Get the current environment from RTC_CHAT_ENV.

        Returns:
            Environment name (development, staging, or production).
            Defaults to production if not set or invalid.
        """
        env = os.getenv("RTC_CHAT_ENV", "production").lower()
        if env not in VALID_ENVIRONMENTS:
            logger.warning(
                f"Invalid RTC_CHAT_ENV value '{env}'. "
                f"Valid values are: {', '.join(sorted(VALID_ENVIRONMENTS))}. "
                f"Defaulting to 'production'."
            )
            env = "production"
        return env

    def _find_config_file(self) -> Optional[Path]:
        """Find the configuration file.

        Searches in order:
        1. rtc-chat.toml in current working directory
        2. ~/.rtc-chat/config.toml

        Returns:
            Path to config file if found, None otherwise.
        """
        cwd_config = Path.cwd() / "rtc-chat.toml"
        if cwd_config.exists():
            logger.info(f"Loading config from {cwd_config}")
            return cwd_config

        home_config = self._home_config_path()
        if home_config.exists():
            logger.info(f"Loading config from {home_config}")
            return home_config

        logger.debug("No config file found, using defaults")
        return None

    def _home_config_path(self) -> Path:
        return Path.home() / ".rtc-chat" / "config.toml"

    def _load_config_file(self, config_file: Path) -> None:
        """Load configuration from TOML file.

        Args:
            config_file: Path to the TOML configuration file.
        """
        try:
            with open(config_file, "rb") as f:
                self._config_data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning(
                f"Failed to load config file {config_file}: {e}. Using defaults."
            )
            return

        server_config = self._config_data.get("server", {})
        if "host" in server_config:
            self.host = str(server_config["host"])
        if "port" in server_config:
            self._set_port(server_config["port"], source=str(config_file))

        self.client = ClientConfig.from_dict(self._config_data.get("client", {}))

        environments = self._config_data.get("environments", {})
        env_config = environments.get(self.environment, {})
        if not env_config:
            logger.debug(
                f"No configuration found for environment '{self.environment}' "
                f"in {config_file}, using defaults"
            )
            return

        if "signaling_url" in env_config:
            self.signaling_url = env_config["signaling_url"]
            logger.debug(f"Loaded signaling_url from config: {self.signaling_url}")

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides.

        Environment variables take precedence over config file settings
        but are overridden by CLI arguments (handled by caller).
        """
        url_override = os.getenv("RTC_CHAT_SIGNALING_URL")
        if url_override:
            self.signaling_url = url_override
            logger.info(f"Overriding signaling_url from env: {self.signaling_url}")

        host_override = os.getenv("RTC_CHAT_HOST")
        if host_override:
            self.host = host_override
            logger.info(f"Overriding host from env: {self.host}")

        port_override = os.getenv("RTC_CHAT_PORT") or os.getenv("PORT")
        if port_override:
            self._set_port(port_override, source="environment")

    def _set_port(self, value, source: str) -> None:
        try:
            port = int(value)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring invalid port {value!r} from {source}")
            return
        if not 0 <= port <= 65535:
            logger.warning(f"Ignoring out-of-range port {port} from {source}")
            return
        self.port = port
        logger.debug(f"Loaded port {port} from {source}")

    def as_dict(self) -> dict:
        """Effective configuration, for display."""
        return {
            "environment": self.environment,
            "signaling_url": self.signaling_url,
            "host": self.host,
            "port": self.port,
            "ice_servers": self.client.ice_server_dicts(),
            "max_reconnect_attempts": self.client.max_reconnect_attempts,
            "candidate_queue_limit": self.client.candidate_queue_limit,
            "auto_reconnect": self.client.auto_reconnect,
            "connect_timeout": self.client.connect_timeout,
        }


# Global configuration instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance.

    Loads configuration on first call.

    Returns:
        Global Config instance.
    """
    global _config
    if _config is None:
        _config = Config()
        _config.load()
    return _config


def reload_config() -> Config:
    """Reload configuration from sources.

    Useful for testing or runtime reconfiguration.

    Returns:
        Reloaded Config instance.
    """
    global _config
    _config = Config()
    _config.load()
    return _config
