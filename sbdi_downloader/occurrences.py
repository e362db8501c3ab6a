"""
Occurrence downloads.

Ties together query building, the offline download job and archive
reading:

    client = SBDIClient(SBDIConfig(email="me@example.org", download_reason_id=10))
    query = OccurrenceQuery(taxon="genus:Accipiter", fq=["data_resource_uid:dr5"])
    table = occurrences(client, query)
    print(len(table), table.citation_text)
"""

from __future__ import annotations

from urllib.parse import urljoin

from sbdi_downloader.api import OCCURRENCE_SEARCH_ENDPOINT, SBDIClient
from sbdi_downloader.download import OfflineDownload
from sbdi_downloader.query import OccurrenceQuery, build_count_params, build_download_params
from sbdi_downloader.table import OccurrenceTable, read_occurrence_archive
from sbdi_downloader.utils import get_logger


def occurrences(
    client: SBDIClient,
    query: OccurrenceQuery,
    email: str | None = None,
    download_reason_id: int | str | None = None,
    use_layer_names: bool = True,
) -> OccurrenceTable:
    """
    Download the occurrence records matching a query.

    The archive is stored in the client's cache directory and reused by
    later identical requests when caching is "on".

    Args:
        client: SBDI client
        query: Occurrence query
        email: Requester email (default: client configuration)
        download_reason_id: Download reason id or name (default: client configuration)
        use_layer_names: Name layer columns after the layer instead of its id

    Returns:
        OccurrenceTable with the records and citation

    Raises:
        InvalidRequestError: If the query or its parameters are invalid
        DownloadError: If the download job fails
        JobTimeoutError: If the download job does not finish in time
        APIError: For transport errors
    """
    logger = get_logger()

    params = build_download_params(
        query, client, email=email, download_reason_id=download_reason_id
    )
    download = OfflineDownload(client, params)
    archive = download.run()

    logger.debug(f"Reading archive {archive}")
    return read_occurrence_archive(
        archive,
        layers=client.layers() if use_layer_names else (),
        assertions=client.assertions(),
        use_layer_names=use_layer_names,
        encoding=client.config.text_encoding,
        warn_on_empty=client.config.warn_on_empty,
        wkt=query.wkt,
        url=download.url,
    )


def count_occurrences(client: SBDIClient, query: OccurrenceQuery) -> int:
    """
    Count the records matching a query without downloading them.

    The count is always fetched from the server, so it can differ from the
    size of a cached download of the same query.

    Args:
        client: SBDI client
        query: Occurrence query

    Returns:
        Number of matching records
    """
    url = urljoin(client.config.server.biocache_url, OCCURRENCE_SEARCH_ENDPOINT)
    data = client.get_json(url, params=build_count_params(query))
    return int(data.get("totalRecords", 0))
