"""
Occurrence queries and request parameters.

An :class:`OccurrenceQuery` describes what to download. It is checked for
search criteria as soon as it is created; field, assertion and reason
names are checked against the server vocabularies when the request
parameters are built, before anything is submitted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from sbdi_downloader.api import DownloadReason, InvalidRequestError, SBDIClient
from sbdi_downloader.fields import FieldInfo, fq_field_names, names_to_ids
from sbdi_downloader.utils import clean_string_list, get_logger, is_all

ParamList = list[tuple[str, str]]


@dataclass
class OccurrenceQuery:
    """
    An occurrence search.

    At least one of ``taxon``, ``wkt`` or ``fq`` must be given.

    Attributes:
        taxon: Free text ("Alaba vibex") or a field:value expression ("genus:Macropus")
        wkt: WKT polygon to search within
        fq: Filter-query clauses, ANDed together ("field1:a OR field2:b" for OR)
        fields: Fields to return, as ids or descriptions, or ["all"]
        extra: Fields to return in addition to ``fields``, or ["all"]
        qa: Quality assertions to include, ["all"] or ["none"]
        reason: Free text describing why the data is downloaded
    """

    taxon: str | None = None
    wkt: str | None = None
    fq: list[str] = field(default_factory=list)
    fields: list[str] = field(default_factory=list)
    extra: list[str] = field(default_factory=list)
    qa: list[str] = field(default_factory=list)
    reason: str | None = None

    def __post_init__(self) -> None:
        """Validate the query after initialization."""
        self.taxon = _clean_optional(self.taxon)
        self.wkt = _clean_optional(self.wkt)
        self.reason = _clean_optional(self.reason)

        # fq clauses may legitimately contain commas, so a string is one clause
        if isinstance(self.fq, str):
            self.fq = [self.fq]
        self.fq = [clause.strip() for clause in self.fq or [] if clause and clause.strip()]

        self.fields = clean_string_list(self.fields)
        self.extra = clean_string_list(self.extra)
        self.qa = clean_string_list(self.qa)

        if not (self.taxon or self.wkt or self.fq):
            raise InvalidRequestError(
                "invalid request: need at least one of taxon, fq, or wkt to be specified"
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OccurrenceQuery:
        """
        Create OccurrenceQuery from a dictionary (e.g., from YAML config).

        Args:
            data: Dictionary with query values

        Returns:
            OccurrenceQuery instance
        """
        return cls(
            taxon=data.get("taxon"),
            wkt=data.get("wkt"),
            fq=data.get("fq", []),
            fields=data.get("fields", []),
            extra=data.get("extra", []),
            qa=data.get("qa", []),
            reason=data.get("reason"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data: dict[str, Any] = {}
        for key in ("taxon", "wkt", "fq", "fields", "extra", "qa", "reason"):
            value = getattr(self, key)
            if value:
                data[key] = value
        return data

    def search_params(self) -> ParamList:
        """
        Get the search criteria as request parameters.

        Each fq clause becomes its own ``fq`` parameter.
        """
        params: ParamList = []
        if self.taxon:
            params.append(("q", self.taxon))
        if self.wkt:
            params.append(("wkt", self.wkt))
        params.extend(("fq", clause) for clause in self.fq)
        return params


def _clean_optional(value: Any) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def convert_reason(reason_id: int | str | None, reasons: list[DownloadReason]) -> int:
    """
    Resolve a download reason to its numeric id.

    Args:
        reason_id: Reason id (10 or "10") or reason name (case-insensitive)
        reasons: Valid reasons from the server

    Returns:
        Reason id

    Raises:
        InvalidRequestError: If the reason is missing or not a valid reason
    """
    valid = {r.id for r in reasons}
    resolved = None

    if isinstance(reason_id, bool):
        resolved = None
    elif isinstance(reason_id, int):
        resolved = reason_id
    elif isinstance(reason_id, str) and reason_id.strip():
        text = reason_id.strip()
        if text.isdigit():
            resolved = int(text)
        else:
            by_name = {r.name.lower(): r.id for r in reasons}
            resolved = by_name.get(text.lower())

    if resolved is None or resolved not in valid:
        listing = "; ".join(f"{r.id}: {r.name}" for r in reasons)
        raise InvalidRequestError(
            f"download_reason_id must be a valid reason id, got {reason_id!r}. "
            f"Valid reasons are: {listing} (see: sbdi-download reasons)"
        )

    return resolved


def resolve_fields(
    names: list[str],
    valid_fields: list[FieldInfo],
    layers: list[FieldInfo],
    label: str = "fields",
) -> list[str]:
    """
    Resolve requested field names to field ids.

    Args:
        names: Requested names (ids, descriptions, or ["all"])
        valid_fields: Occurrence fields valid for the request
        layers: Layer fields, also accepted by name
        label: Parameter name used in error messages

    Returns:
        Field ids

    Raises:
        InvalidRequestError: If any name is unknown
    """
    if is_all(names):
        return [f.name for f in valid_fields]

    candidates = valid_fields + layers
    ids = names_to_ids(names, candidates)
    known = {f.name for f in candidates}
    unknown = [name for name, resolved in zip(names, ids) if resolved not in known]

    if unknown:
        raise InvalidRequestError(
            f"invalid {label} requested: {', '.join(unknown)}. "
            f"See: sbdi-download fields occurrence"
        )

    return ids


def resolve_assertions(names: list[str], assertions: list[FieldInfo]) -> list[str]:
    """
    Resolve requested quality assertions.

    Args:
        names: Assertion names, ["all"] or ["none"]
        assertions: Assertions known to the server

    Returns:
        Assertion names (or ["none"])

    Raises:
        InvalidRequestError: If any name is unknown
    """
    if is_all(names):
        return [a.name for a in assertions]

    valid = {"none"} | {a.name for a in assertions}
    unknown = [name for name in names if name not in valid]

    if unknown:
        raise InvalidRequestError(
            f"invalid qa fields requested: {', '.join(unknown)}. "
            f"See: sbdi-download fields assertions"
        )

    return names


def check_fq(fq: Iterable[str], indexed_fields: list[FieldInfo]) -> list[str]:
    """
    Check that fq clauses only use indexed fields.

    Unknown fields are reported as a warning rather than an error, because
    filter queries can be arbitrarily complex.

    Returns:
        Unknown field names
    """
    known = {f.name for f in indexed_fields}
    unknown = [name for name in fq_field_names(fq) if name not in known]

    if unknown:
        get_logger().warning(
            f"fq uses fields that are not indexed: {', '.join(unknown)}. "
            "The query may fail or return no records."
        )

    return unknown


def build_download_params(
    query: OccurrenceQuery,
    client: SBDIClient,
    email: str | None = None,
    download_reason_id: int | str | None = None,
) -> ParamList:
    """
    Build the request parameters of an offline download.

    Email and download reason default to the client configuration.

    Args:
        query: The occurrence query
        client: Client used to look up vocabularies
        email: Requester email
        download_reason_id: Download reason id or name

    Returns:
        Request parameters as (name, value) pairs

    Raises:
        InvalidRequestError: If the email is missing or any name is invalid
    """
    email = _clean_optional(email) or client.config.email
    if not email:
        raise InvalidRequestError("email is required for downloads")

    if download_reason_id is None:
        download_reason_id = client.config.download_reason_id
    reason_type_id = convert_reason(download_reason_id, client.reasons())

    params = query.search_params()

    if query.fq:
        check_fq(query.fq, client.fields("occurrence_indexed"))

    params.append(("email", email))

    if query.fields or query.extra:
        valid_fields = client.fields("occurrence")
        layers = client.layers()

        if query.fields:
            ids = resolve_fields(query.fields, valid_fields, layers, "fields")
            params.append(("fields", ",".join(ids)))

        if query.extra:
            ids = resolve_fields(query.extra, valid_fields, layers, "extra fields")
            params.append(("extra", ",".join(ids)))

    if query.qa:
        qa = resolve_assertions(query.qa, client.assertions())
        params.append(("qa", ",".join(qa)))

    if query.reason:
        params.append(("reason", query.reason))

    params.extend(
        [
            ("reasonTypeId", str(reason_type_id)),
            ("sourceTypeId", str(client.config.source_type_id)),
            # backslash-escape quotes instead of doubling them
            ("esc", "\\"),
            ("sep", "\t"),
            # names the payload data.csv inside the archive
            ("file", "data"),
        ]
    )

    return params


def build_count_params(query: OccurrenceQuery) -> ParamList:
    """Build the request parameters of a record count (no records returned)."""
    return query.search_params() + [("pageSize", "0"), ("facet", "off")]
