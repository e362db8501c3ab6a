"""
Configuration management for SBDI Downloader.

All runtime settings live in an explicit :class:`SBDIConfig` object that is
handed to the client, so two clients with different settings can coexist in
one process. Settings (and optionally a stored query) can be loaded from and
saved to YAML files.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from sbdi_downloader.utils import get_logger

if TYPE_CHECKING:
    from sbdi_downloader.query import OccurrenceQuery

# Default config directory
DEFAULT_CONFIG_DIR = Path.home() / ".sbdi_downloader"

CACHING_MODES = ("on", "off", "refresh")


@dataclass
class ServerConfig:
    """
    Base URLs of the SBDI web services.

    Attributes:
        biocache_url: Occurrence (biocache) web service
        download_url: Static location of finished offline downloads
        spatial_url: Spatial portal web service (layer metadata)
        logger_url: Logger service (download reasons)
        notify: Text appended to protocol errors telling the user where to report them
    """

    biocache_url: str = "https://records.biodiversitydata.se/ws/"
    download_url: str = "https://records.biodiversitydata.se/biocache-download/"
    spatial_url: str = "https://spatial.biodiversitydata.se/ws/"
    logger_url: str = "https://logger.biodiversitydata.se/service/logger/"
    notify: str = (
        "If this problem persists please notify the SBDI support at "
        "support@biodiversitydata.se"
    )

    def __post_init__(self) -> None:
        # urljoin drops the last path segment of a base without a trailing slash
        for name in ("biocache_url", "download_url", "spatial_url", "logger_url"):
            value = getattr(self, name)
            if not value.endswith("/"):
                setattr(self, name, value + "/")


@dataclass
class SBDIConfig:
    """
    Runtime configuration for the SBDI client.

    Attributes:
        email: Email address of the user performing downloads
        download_reason_id: Default download justification (id or name)
        caching: Archive cache mode: "on" (reuse), "off" (never reuse), "refresh" (re-fetch)
        cache_dir: Directory holding downloaded archives
        verbose: Log progress details
        warn_on_empty: Warn when a download returns no records
        text_encoding: Encoding of the files inside the archive
        poll_interval: Seconds between job status checks
        poll_timeout: Give up on a job after this many seconds (None: never)
        max_poll_attempts: Give up after this many status checks (None: no limit)
        metadata_ttl: Seconds to keep field/assertion/reason vocabularies (0: don't cache)
        timeout: Request timeout as (connect, read) seconds
        max_retries: HTTP retry attempts for failed GET requests
        source_type_id: Source type reported to the logger service
        server: Service base URLs
    """

    email: str | None = None
    download_reason_id: int | str | None = None
    caching: str = "on"
    cache_dir: Path = field(default_factory=lambda: DEFAULT_CONFIG_DIR / "cache")
    verbose: bool = False
    warn_on_empty: bool = True
    text_encoding: str = "utf-8"
    poll_interval: float = 2.0
    poll_timeout: float | None = 3600.0
    max_poll_attempts: int | None = None
    metadata_ttl: float = 86400.0
    timeout: tuple[int, int] = (10, 60)
    max_retries: int = 3
    source_type_id: int = 2001
    server: ServerConfig = field(default_factory=ServerConfig)

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        # YAML reads unquoted on/off as booleans
        if isinstance(self.caching, bool):
            self.caching = "on" if self.caching else "off"

        self.caching = str(self.caching).lower()
        if self.caching not in CACHING_MODES:
            raise ValueError(
                f"caching must be one of {', '.join(CACHING_MODES)}, got {self.caching!r}"
            )

        self.cache_dir = Path(self.cache_dir).expanduser()

        if self.email is not None:
            self.email = self.email.strip() or None

        if self.poll_interval < 0:
            raise ValueError(f"poll_interval must be >= 0, got {self.poll_interval}")

        if self.poll_timeout is not None and self.poll_timeout <= 0:
            raise ValueError(f"poll_timeout must be > 0, got {self.poll_timeout}")

        if self.max_poll_attempts is not None and self.max_poll_attempts < 1:
            raise ValueError(
                f"max_poll_attempts must be >= 1, got {self.max_poll_attempts}"
            )

        if self.metadata_ttl < 0:
            raise ValueError(f"metadata_ttl must be >= 0, got {self.metadata_ttl}")

        self.timeout = tuple(self.timeout)

        if isinstance(self.server, dict):
            self.server = ServerConfig(**self.server)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SBDIConfig:
        """
        Create SBDIConfig from a dictionary (e.g., from YAML config).

        Unknown keys are ignored.
        """
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data = asdict(self)
        data["cache_dir"] = str(self.cache_dir)
        data["timeout"] = list(self.timeout)
        return data


class Config:
    """
    Configuration file for SBDI Downloader.

    Holds the client settings and, optionally, a stored query.

    Example:
        # Load from file
        config = Config.load("my_search.yaml")
        client = SBDIClient(config.settings)

        # Save to file
        config = Config(settings=SBDIConfig(email="me@example.org"), query=query)
        config.save("my_search.yaml")
    """

    def __init__(
        self,
        settings: SBDIConfig | None = None,
        query: OccurrenceQuery | None = None,
    ):
        """
        Initialize configuration.

        Args:
            settings: SBDIConfig instance (defaults if omitted)
            query: Stored OccurrenceQuery
        """
        self.settings = settings or SBDIConfig()
        self.query = query
        self.logger = get_logger()

    @classmethod
    def load(cls, path: str | Path) -> Config:
        """
        Load configuration from a YAML file.

        Args:
            path: Path to YAML file

        Returns:
            Config instance

        Raises:
            FileNotFoundError: If file doesn't exist
            yaml.YAMLError: If file is invalid YAML
            ValueError: If file is empty
        """
        from sbdi_downloader.query import OccurrenceQuery

        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)

        if not data:
            raise ValueError(f"Empty config file: {path}")

        settings = SBDIConfig.from_dict(data.get("settings", {}))

        query = None
        if data.get("query"):
            query = OccurrenceQuery.from_dict(data["query"])

        return cls(settings=settings, query=query)

    def save(self, path: str | Path) -> None:
        """
        Save configuration to a YAML file.

        Args:
            path: Path to save to
        """
        path = Path(path)

        # Ensure directory exists
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

        self.logger.info(f"Configuration saved to: {path}")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {"settings": self.settings.to_dict()}

        if self.query is not None:
            result["query"] = self.query.to_dict()

        return result


def get_config_dir() -> Path:
    """
    Get the configuration directory, creating it if needed.

    Returns:
        Path to config directory
    """
    DEFAULT_CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    return DEFAULT_CONFIG_DIR


def list_presets() -> list[str]:
    """
    List available preset configurations.

    Returns:
        List of preset names (without .yaml extension)
    """
    config_dir = get_config_dir()
    return sorted(path.stem for path in config_dir.glob("*.yaml"))


def load_preset(name: str) -> Config:
    """
    Load a preset configuration by name.

    Args:
        name: Preset name (without .yaml extension)

    Returns:
        Config instance

    Raises:
        FileNotFoundError: If preset doesn't exist
    """
    path = get_config_dir() / f"{name}.yaml"
    return Config.load(path)


# Example configuration template
EXAMPLE_CONFIG = """# SBDI Downloader Configuration
# Save this file and use with: sbdi-download --config my_search.yaml

settings:
  email: your.name@example.org
  # Download reason id, see: sbdi-download reasons
  download_reason_id: 10
  caching: "on"  # on, off, or refresh
  poll_interval: 2
  poll_timeout: 3600

query:
  taxon: genus:Accipiter
  # Restrict to a polygon (WKT, longitude latitude):
  # wkt: POLYGON((16.551 60.760,18.836 59.801,17.606 58.860,16.551 60.760))
  fq:
    - data_resource_uid:dr5
  # Uncomment to choose the returned columns:
  # fields:
  #   - latitude
  #   - longitude
  #   - species
  qa: none
"""


def create_example_config(path: str | Path | None = None) -> Path:
    """
    Create an example configuration file.

    Args:
        path: Where to save (default: config_dir/example.yaml)

    Returns:
        Path to created file
    """
    if path is None:
        path = get_config_dir() / "example.yaml"
    else:
        path = Path(path)

    with open(path, "w", encoding="utf-8") as f:
        f.write(EXAMPLE_CONFIG)

    return path
