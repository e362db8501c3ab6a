"""
Utility functions and logging configuration for SBDI Downloader.
"""

import hashlib
import logging
import re
import sys
from pathlib import Path
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from shapely import wkt as shapely_wkt
from shapely.errors import ShapelyError


def setup_logging(
    level: int = logging.INFO,
    log_file: str | None = None,
    verbose: bool = False,
) -> logging.Logger:
    """
    Configure logging for the application.

    Args:
        level: Logging level (default: INFO)
        log_file: Optional file path to write logs
        verbose: If True, set level to DEBUG

    Returns:
        Configured logger instance
    """
    if verbose:
        level = logging.DEBUG

    logger = logging.getLogger("sbdi_downloader")
    logger.setLevel(level)

    # Clear existing handlers
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    # Format: timestamp - level - message
    formatter = logging.Formatter(
        "%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger() -> logging.Logger:
    """Get the application logger."""
    return logging.getLogger("sbdi_downloader")


def clean_string_list(items: str | list[str] | None) -> list[str]:
    """
    Clean a list of strings, keeping case.

    Handles:
    - None -> empty list
    - Comma-separated string -> list
    - List with empty strings -> filtered list

    Args:
        items: Input string or list

    Returns:
        Clean list of non-empty strings
    """
    if items is None:
        return []

    if isinstance(items, str):
        items = items.split(",")

    return [item.strip() for item in items if item and item.strip()]


def is_all(items: list[str]) -> bool:
    """Check whether a field selection is the single keyword "all"."""
    return len(items) == 1 and items[0].lower() == "all"


def to_camel_case(name: str) -> str:
    """
    Convert a free-text column header to camelCase.

    Words are split on any non-alphanumeric character. The first letter of
    the first word is lowercased and the first letter of every following
    word is uppercased; the rest of each word is left untouched, so a name
    that is already camelCase comes back unchanged.

    Example:
        >>> to_camel_case("Scientific Name")
        'scientificName'
        >>> to_camel_case("scientificName")
        'scientificName'
    """
    words = [w for w in re.split(r"[^0-9A-Za-z]+", name) if w]
    if not words:
        return name

    first = words[0][0].lower() + words[0][1:]
    rest = [w[0].upper() + w[1:] for w in words[1:]]
    return first + "".join(rest)


def normalize_url(url: str) -> str:
    """
    Normalize a request URL so equivalent requests share a cache entry.

    Lowercases scheme and host, drops any fragment and sorts the query
    parameters (stable, so repeated ``fq`` keys keep their order).
    """
    parts = urlsplit(url.strip())
    query = sorted(parse_qsl(parts.query, keep_blank_values=True), key=lambda kv: kv[0])
    return urlunsplit(
        (parts.scheme.lower(), parts.netloc.lower(), parts.path, urlencode(query), "")
    )


def cache_filename(url: str, cache_dir: str | Path, suffix: str = ".zip") -> Path:
    """
    Get the cache file path for a request URL.

    Args:
        url: Request URL
        cache_dir: Cache directory
        suffix: File extension

    Returns:
        Path named after the MD5 digest of the normalized URL
    """
    digest = hashlib.md5(normalize_url(url).encode("utf-8")).hexdigest()
    return Path(cache_dir) / f"{digest}{suffix}"


def check_wkt(wkt: str) -> bool:
    """
    Check that a WKT string describes a valid polygon or multipolygon.

    Args:
        wkt: Well-Known Text string

    Returns:
        True if the geometry parses, is a (multi)polygon and is valid
    """
    try:
        geometry = shapely_wkt.loads(wkt)
    except (ShapelyError, ValueError, TypeError):
        return False

    if geometry.geom_type not in ("Polygon", "MultiPolygon"):
        return False

    return bool(geometry.is_valid)
