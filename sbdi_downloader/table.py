"""
Occurrence tables read from offline download archives.

An archive holds a tab-delimited ``data.csv`` and, when it has records, a
citation file: ``citation.csv`` (tab-delimited) or, on newer servers,
``README.html``. The service quotes every value as text, so column types
are inferred after reading.
"""

from __future__ import annotations

import csv
import io
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar, Iterable

import pandas as pd

from sbdi_downloader.api import DownloadError
from sbdi_downloader.fields import FieldInfo, rename_columns, unique_columns, unwanted_columns
from sbdi_downloader.utils import check_wkt, get_logger

DATA_FILE = "data.csv"
CITATION_FILE = "citation.csv"
README_FILE = "README.html"

LOGICAL_VALUES = {"true": True, "false": False}


@dataclass
class OccurrenceTable:
    """
    Occurrence records returned by a download.

    Attributes:
        data: One row per occurrence record
        citation: Citation information, if the archive had any
        path: Archive the table was read from
        url: Request URL that produced the archive
    """

    data: pd.DataFrame
    citation: pd.DataFrame | None = None
    path: Path | None = None
    url: str | None = None

    # Lets downstream helpers recognize tables produced by this package
    kind: ClassVar[str] = "occurrences"

    def __len__(self) -> int:
        return len(self.data)

    @property
    def empty(self) -> bool:
        """True if the table has no records."""
        return self.data.empty

    @property
    def columns(self) -> list[str]:
        """Column names of the records."""
        return list(self.data.columns)

    @property
    def citation_text(self) -> str | None:
        """Citation as plain text, one line per citation row."""
        if self.citation is None or self.citation.empty:
            return None

        if list(self.citation.columns) == ["citation"]:
            return "\n".join(self.citation["citation"].astype(str))

        return self.citation.to_csv(sep="\t", index=False).strip()

    def subset(self, mask: pd.Series) -> OccurrenceTable:
        """Get a table with the rows selected by a boolean mask."""
        return OccurrenceTable(
            data=self.data.loc[mask].reset_index(drop=True),
            citation=self.citation,
            path=self.path,
            url=self.url,
        )


def infer_column_type(values: pd.Series) -> pd.Series:
    """
    Convert a text column to boolean or numeric when all its values allow it.

    Empty strings and missing values are ignored when deciding. A column
    with no values at all is left as text.

    Args:
        values: Column of strings

    Returns:
        Nullable boolean, numeric or the original column
    """
    text = values.fillna("").astype(str)
    present = text != ""

    if not present.any():
        return values

    if text[present].isin(list(LOGICAL_VALUES)).all():
        return text.map(LOGICAL_VALUES).astype("boolean")

    numeric = pd.to_numeric(text.where(present), errors="coerce")
    if numeric[present].notna().all():
        return numeric

    return values


def _find_member(archive: zipfile.ZipFile, name: str) -> str | None:
    """Find a file in an archive, ignoring directories."""
    for member in archive.namelist():
        if member == name or member.rsplit("/", 1)[-1] == name:
            return member
    return None


def _read_tab_delimited(raw: bytes, encoding: str, **kwargs) -> pd.DataFrame:
    return pd.read_csv(
        io.BytesIO(raw),
        sep="\t",
        dtype=str,
        keep_default_na=False,
        na_values=["NA"],
        escapechar="\\",
        quoting=csv.QUOTE_MINIMAL,
        encoding=encoding,
        **kwargs,
    )


def _read_data_file(raw: bytes, encoding: str, path: Path) -> pd.DataFrame:
    """
    Read the records of an archive.

    Malformed lines (e.g. a row with more fields than the header) make the
    C parser fail. The file is then read again with the python engine,
    skipping those lines.

    Raises:
        DownloadError: If the file cannot be parsed at all
    """
    try:
        return _read_tab_delimited(raw, encoding)
    except pd.errors.ParserError as e:
        get_logger().warning(
            f"{DATA_FILE} in {path} has malformed lines, skipping them ({e})"
        )

    try:
        return _read_tab_delimited(raw, encoding, engine="python", on_bad_lines="skip")
    except (pd.errors.ParserError, UnicodeDecodeError) as e:
        raise DownloadError(f"cannot parse {DATA_FILE} in {path}: {e}")


def read_citation(archive: zipfile.ZipFile, encoding: str = "utf-8") -> pd.DataFrame | None:
    """
    Read the citation information of an archive.

    Tries ``citation.csv`` first, then ``README.html``.

    Returns:
        Citation frame, or None if the archive has no readable citation
    """
    logger = get_logger()

    member = _find_member(archive, CITATION_FILE)
    if member:
        try:
            return _read_tab_delimited(archive.read(member), encoding)
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
            logger.debug(f"Could not read {CITATION_FILE}: {e}")

    member = _find_member(archive, README_FILE)
    if member:
        text = archive.read(member).decode(encoding, errors="replace")
        return pd.DataFrame({"citation": ["".join(text.splitlines())]})

    return None


def read_occurrence_archive(
    path: str | Path,
    layers: Iterable[FieldInfo] = (),
    assertions: Iterable[FieldInfo] = (),
    use_layer_names: bool = True,
    encoding: str = "utf-8",
    warn_on_empty: bool = True,
    wkt: str | None = None,
    url: str | None = None,
) -> OccurrenceTable:
    """
    Read an offline download archive into an OccurrenceTable.

    Args:
        path: Zip archive
        layers: Layer dictionary used to name layer columns
        assertions: Assertion dictionary used to name assertion columns
        use_layer_names: Name layer columns after the layer instead of its id
        encoding: Encoding of the files in the archive
        warn_on_empty: Log a warning when there are no records
        wkt: Polygon of the query, checked when there are no records
        url: Request URL, kept on the table

    Returns:
        OccurrenceTable, empty if the archive holds no records

    Raises:
        DownloadError: If the archive is corrupt or has no data file
    """
    logger = get_logger()
    path = Path(path)

    data = pd.DataFrame()
    citation = None

    if path.exists() and path.stat().st_size > 0:
        try:
            with zipfile.ZipFile(path) as archive:
                member = _find_member(archive, DATA_FILE)
                if member is None:
                    raise DownloadError(f"{DATA_FILE} not found in archive {path}")

                raw = archive.read(member)
                # an empty result still has a header line
                if len(raw.strip()) > 0:
                    data = _read_data_file(raw, encoding, path)

                if not data.empty:
                    citation = read_citation(archive, encoding)
        except zipfile.BadZipFile as e:
            raise DownloadError(f"downloaded file {path} is not a valid zip archive: {e}")

    if data.empty:
        if warn_on_empty:
            logger.warning("no matching records were returned")
        if wkt and not check_wkt(wkt):
            logger.warning(f"WKT string may not be valid: {wkt}")
        return OccurrenceTable(data=data, citation=None, path=path, url=url)

    for column in data.columns:
        data[column] = infer_column_type(data[column])

    data.columns = unique_columns(
        rename_columns(
            [str(c) for c in data.columns],
            layers=layers,
            assertions=assertions,
            use_layer_names=use_layer_names,
        )
    )
    data = data.drop(columns=unwanted_columns(data.columns))

    if citation is None:
        logger.warning("citation file not found within downloaded zip file")

    logger.info(f"Read {len(data):,} records with {len(data.columns)} columns")
    return OccurrenceTable(data=data, citation=citation, path=path, url=url)
