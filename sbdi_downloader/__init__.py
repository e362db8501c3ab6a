"""
SBDI Downloader - Download biodiversity occurrence data from SBDI.

This package downloads occurrence records from the Swedish Biodiversity
Data Infrastructure (SBDI) through its offline download service and
returns them as typed pandas tables.

Features:
- Search by taxon, WKT polygon and filter queries
- Field, extra field and quality assertion selection
- Offline download jobs with bounded polling
- Archive cache keyed by request URL
- Quality-assertion checks on the returned records

Example CLI usage:
    sbdi-download --taxon "genus:Accipiter" --fq data_resource_uid:dr5 --reason-id 10
    sbdi-download --config my_search.yaml

Example Python usage:
    from sbdi_downloader import SBDIClient, SBDIConfig, OccurrenceQuery, occurrences

    client = SBDIClient(SBDIConfig(email="me@example.org", download_reason_id=10))
    query = OccurrenceQuery(taxon="Callitriche cophocarpa", fq=["data_resource_uid:dr5"])
    table = occurrences(client, query)
"""

__version__ = "1.0.0"

from sbdi_downloader.api import (
    APIError,
    DownloadError,
    InvalidRequestError,
    JobTimeoutError,
    RateLimitError,
    SBDIClient,
    SBDIError,
)
from sbdi_downloader.config import Config, SBDIConfig, ServerConfig
from sbdi_downloader.occurrences import count_occurrences, occurrences
from sbdi_downloader.query import OccurrenceQuery
from sbdi_downloader.table import OccurrenceTable

__all__ = [
    "SBDIClient",
    "SBDIError",
    "InvalidRequestError",
    "APIError",
    "RateLimitError",
    "DownloadError",
    "JobTimeoutError",
    "Config",
    "SBDIConfig",
    "ServerConfig",
    "OccurrenceQuery",
    "OccurrenceTable",
    "occurrences",
    "count_occurrences",
    "__version__",
]
