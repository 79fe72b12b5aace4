"""Service configuration loaded from environment variables."""

import logging
import os
import re
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from vulnrelay.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

VALID_MODES = ("cluster", "docker", "local")
VALID_AUTH_TYPES = ("none", "api_key", "basic_auth")
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(h|m|s)")
_UNIT_SECONDS = {"h": 3600.0, "m": 60.0, "s": 1.0}


def parse_duration(value: str) -> float:
    """Parse a duration string into seconds.

    Accepts plain seconds ("300", "2.5") or unit-suffixed parts as used by
    Prometheus and Kubernetes tooling ("30s", "5m", "1h30m").

    Raises:
        ConfigurationError: If the value cannot be parsed
    """
    value = value.strip().lower()
    if not value:
        raise ConfigurationError("empty duration")

    try:
        return float(value)
    except ValueError:
        pass

    position = 0
    total = 0.0
    for match in _DURATION_PART.finditer(value):
        if match.start() != position:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        position = match.end()

    if position == 0 or position != len(value):
        raise ConfigurationError(f"invalid duration: {value!r}")
    return total


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Runtime settings for VulnRelay.

    Durations are stored in seconds.
    """

    mode: str = "cluster"
    port: int = 9090
    image_list_file: str = ""
    kube_namespaces: List[str] = field(default_factory=list)
    scrape_interval: float = 300.0
    fetch_concurrency: int = 10
    cache_ttl: float = 1800.0
    cache_cleanup_interval: float = 600.0
    mock_mode: bool = False
    vulnforge_url: str = ""
    vulnforge_auth_type: str = "none"
    vulnforge_api_key: Optional[str] = None
    vulnforge_username: Optional[str] = None
    vulnforge_password: Optional[str] = None
    vulnforge_timeout: float = 30.0
    log_level: str = "INFO"
    debug: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables and validate them.

        Raises:
            ConfigurationError: If a value is malformed or the combination
                of values cannot run
        """
        env = os.environ if environ is None else environ

        def get(name: str, default: str = "") -> str:
            return env.get(name, default).strip()

        def get_duration(name: str, default: str) -> float:
            try:
                return parse_duration(get(name, default) or default)
            except ConfigurationError as e:
                raise ConfigurationError(f"{name}: {e}") from e

        def get_int(name: str, default: str) -> int:
            raw = get(name, default) or default
            try:
                return int(raw)
            except ValueError:
                raise ConfigurationError(f"{name}: invalid integer {raw!r}") from None

        settings = cls(
            mode=get("MODE", "cluster").lower() or "cluster",
            port=get_int("PORT", "9090"),
            image_list_file=get("IMAGE_LIST_FILE"),
            kube_namespaces=[ns.strip() for ns in get("KUBE_NAMESPACES").split(",") if ns.strip()],
            scrape_interval=get_duration("SCRAPE_INTERVAL", "5m"),
            fetch_concurrency=get_int("FETCH_CONCURRENCY", "10"),
            cache_ttl=get_duration("CACHE_TTL", "30m"),
            cache_cleanup_interval=get_duration("CACHE_CLEANUP_INTERVAL", "10m"),
            mock_mode=_parse_bool(get("MOCK_MODE", "false")),
            vulnforge_url=get("VULNFORGE_URL"),
            vulnforge_auth_type=get("VULNFORGE_AUTH_TYPE", "none").lower() or "none",
            vulnforge_api_key=get("VULNFORGE_API_KEY") or None,
            vulnforge_username=get("VULNFORGE_USERNAME") or None,
            vulnforge_password=env.get("VULNFORGE_PASSWORD") or None,
            vulnforge_timeout=get_duration("VULNFORGE_TIMEOUT", "30s"),
            log_level=get("LOG_LEVEL", "INFO").upper() or "INFO",
            debug=_parse_bool(get("VULNRELAY_DEBUG", "false")),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Check that the settings describe a runnable service.

        Raises:
            ConfigurationError: On the first problem found
        """
        if self.mode not in VALID_MODES:
            raise ConfigurationError(
                f"invalid MODE {self.mode!r}, expected one of: {', '.join(VALID_MODES)}"
            )
        if not 1 <= self.port <= 65535:
            raise ConfigurationError(f"PORT must be between 1 and 65535, got {self.port}")
        if self.log_level not in VALID_LOG_LEVELS:
            raise ConfigurationError(
                f"invalid LOG_LEVEL {self.log_level!r}, "
                f"expected one of: {', '.join(VALID_LOG_LEVELS)}"
            )
        if self.fetch_concurrency < 1:
            raise ConfigurationError(
                f"FETCH_CONCURRENCY must be >= 1, got {self.fetch_concurrency}"
            )

        for name, value in (
            ("SCRAPE_INTERVAL", self.scrape_interval),
            ("CACHE_TTL", self.cache_ttl),
            ("CACHE_CLEANUP_INTERVAL", self.cache_cleanup_interval),
            ("VULNFORGE_TIMEOUT", self.vulnforge_timeout),
        ):
            if value <= 0:
                raise ConfigurationError(f"{name} must be positive, got {value}")

        if self.mock_mode:
            return

        if self.mode == "local" and not self.image_list_file:
            raise ConfigurationError("IMAGE_LIST_FILE is required when MODE=local")

        if not self.vulnforge_url:
            raise ConfigurationError("VULNFORGE_URL is required unless MOCK_MODE is enabled")
        if self.vulnforge_auth_type not in VALID_AUTH_TYPES:
            raise ConfigurationError(
                f"invalid VULNFORGE_AUTH_TYPE {self.vulnforge_auth_type!r}, "
                f"expected one of: {', '.join(VALID_AUTH_TYPES)}"
            )
        if self.vulnforge_auth_type == "api_key" and not self.vulnforge_api_key:
            raise ConfigurationError("VULNFORGE_API_KEY is required for api_key authentication")
        if self.vulnforge_auth_type == "basic_auth" and not (
            self.vulnforge_username and self.vulnforge_password
        ):
            raise ConfigurationError(
                "VULNFORGE_USERNAME and VULNFORGE_PASSWORD are required for basic_auth"
            )

    def log_summary(self) -> None:
        """Log the effective configuration, secrets excluded."""
        if self.cache_ttl < self.scrape_interval:
            logger.warning(
                f"CACHE_TTL ({self.cache_ttl:.0f}s) is shorter than SCRAPE_INTERVAL "
                f"({self.scrape_interval:.0f}s); every cycle will refetch all images"
            )

        logger.info(
            f"Configuration: mode={self.mode}, mock_mode={self.mock_mode}, port={self.port}, "
            f"scrape_interval={self.scrape_interval:.0f}s, concurrency={self.fetch_concurrency}, "
            f"cache_ttl={self.cache_ttl:.0f}s"
        )
