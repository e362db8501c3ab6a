"""
Field dictionaries for SBDI occurrence data.

The biocache service describes its fields, quality assertions and
environmental/contextual layers through metadata endpoints. This module
turns those descriptions into lookups used in two directions:

- user-facing names -> field ids when building a query
  (e.g. "Radiation - lowest period (Bio22)" -> "el871")
- column headers of a downloaded archive -> tidy camelCase column names
  (e.g. "el871" -> "radiationLowestPeriodBio22", "Latitude - processed" -> "latitude")

Column renaming is idempotent: applying it to already-renamed columns
returns them unchanged.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable

from sbdi_downloader.utils import to_camel_case

FIELD_TYPES = (
    "occurrence",
    "occurrence_stored",
    "occurrence_indexed",
    "assertions",
    "layers",
)

# Columns returned by the service that carry no information for users
UNWANTED_COLUMNS = frozenset(
    {
        "lft",
        "rgt",
        "rankId",
        "rankID",
        "left",
        "right",
        "idxtype",
        "idxType",
        "highlight",
        "linkIdentifier",
        "isExcluded",
        "rawRank",
        "rawRankString",
    }
)

# Renames applied after camelCasing occurrence headers. Values must never
# appear as keys, otherwise renaming would not be idempotent.
OCCURRENCE_RENAMES = {
    "decimalLatitude": "latitude",
    "decimalLongitude": "longitude",
    "vernacularName": "commonName",
}

_LAYER_ID = re.compile(r"^(el|cl)\.?([0-9]+)$")
_DOTTED_LAYER_ID = re.compile(r"^(el|cl)\.([0-9]+)")
_OCC_PREFIX = re.compile(r"^occ\.")
_PROCESSED_SUFFIX = re.compile(r"[\s.\-_]+processed$", re.IGNORECASE)


@dataclass
class FieldInfo:
    """
    Description of a single field, assertion or layer.

    Attributes:
        name: Field id as used by the web service (e.g. "data_resource_uid", "el871")
        description: Human readable name
        data_type: Data type reported by the service (fields only)
        indexed: Field can be used in queries and fq clauses
        stored: Field can be returned in downloads
        fatal: Assertion marks the record as unusable (assertions only)
        category: Assertion category or layer type
    """

    name: str
    description: str = ""
    data_type: str | None = None
    indexed: bool = False
    stored: bool = False
    fatal: bool = False
    category: str | None = None

    @classmethod
    def from_index_field(cls, data: dict[str, Any]) -> FieldInfo:
        """Create FieldInfo from an ``index/fields`` entry."""
        name = data.get("name", "")
        return cls(
            name=name,
            description=data.get("description") or name,
            data_type=data.get("dataType"),
            indexed=bool(data.get("indexed", False)),
            stored=bool(data.get("stored", False)),
            category=data.get("classs"),
        )

    @classmethod
    def from_assertion(cls, data: dict[str, Any]) -> FieldInfo:
        """Create FieldInfo from an ``assertions/codes`` entry."""
        name = data.get("name", "")
        return cls(
            name=name,
            description=data.get("description") or name,
            fatal=bool(data.get("fatal", data.get("isFatal", False))),
            category=data.get("category"),
        )

    @classmethod
    def from_layer(cls, data: dict[str, Any]) -> FieldInfo:
        """Create FieldInfo from a spatial ``layers`` entry."""
        layer_type = data.get("type") or ""
        prefix = "el" if layer_type.lower() == "environmental" else "cl"
        return cls(
            name=f"{prefix}{data.get('id')}",
            description=data.get("displayname") or data.get("name") or "",
            indexed=True,
            stored=True,
            category=layer_type or None,
        )


def filter_fields(fields: Iterable[FieldInfo], fields_type: str) -> list[FieldInfo]:
    """
    Restrict a list of occurrence fields to those valid for a use.

    Args:
        fields: Fields from ``index/fields``
        fields_type: "occurrence" (all), "occurrence_stored" or "occurrence_indexed"

    Returns:
        Matching fields
    """
    if fields_type == "occurrence_stored":
        return [f for f in fields if f.stored]
    if fields_type == "occurrence_indexed":
        return [f for f in fields if f.indexed]
    return list(fields)


def names_to_ids(names: Iterable[str], fields: Iterable[FieldInfo]) -> list[str]:
    """
    Replace human readable field names by field ids.

    Names are matched against descriptions case-insensitively. Names that
    are already ids, or that match nothing, are returned as given so the
    caller can report them.

    Example:
        >>> names_to_ids(["Radiation - lowest period (Bio22)"], layers)
        ['el871']
    """
    fields = list(fields)
    ids = {f.name for f in fields}
    by_description = {f.description.lower(): f.name for f in fields if f.description}

    result = []
    for name in names:
        if name in ids:
            result.append(name)
        else:
            result.append(by_description.get(name.lower(), name))
    return result


def fq_field_names(fq: Iterable[str]) -> list[str]:
    """
    Extract the field names used in filter-query clauses.

    Handles negation ("-field:value"), grouping and OR/AND clauses
    ("field1:abc OR field2:def").
    """
    names = []
    for clause in fq:
        for match in re.finditer(r"(?:^|[\s(])[-+!]?([A-Za-z_][\w.]*):", clause):
            names.append(match.group(1))
    return names


def rename_layer_columns(columns: Iterable[str], layers: Iterable[FieldInfo]) -> list[str]:
    """
    Rename layer id columns ("el871", "cl10009", "el.871") to layer names.

    Columns that are not layer ids are returned unchanged.
    """
    names = {f.name: f.description for f in layers if f.description}

    result = []
    for column in columns:
        match = _LAYER_ID.match(column)
        if match:
            layer_id = match.group(1) + match.group(2)
            result.append(names.get(layer_id, layer_id))
        else:
            result.append(column)
    return result


def rename_assertion_columns(
    columns: Iterable[str], assertions: Iterable[FieldInfo]
) -> list[str]:
    """
    Rename assertion columns to assertion names.

    The archive may label assertion columns with their description
    ("Coordinates are out of range for species"); those are mapped to the
    assertion name ("coordinatesOutOfRange"). Columns already carrying an
    assertion name are left alone.
    """
    assertions = list(assertions)
    known = {a.name for a in assertions}
    lookup = {}
    for assertion in assertions:
        label = to_camel_case(assertion.description)
        if label and label not in known:
            lookup[label] = assertion.name

    result = []
    for column in columns:
        if column in known:
            result.append(column)
        else:
            result.append(lookup.get(to_camel_case(column), column))
    return result


def rename_occurrence_columns(columns: Iterable[str]) -> list[str]:
    """
    Tidy occurrence column headers.

    Strips "occ." prefixes and "processed" suffixes, converts to camelCase
    and applies OCCURRENCE_RENAMES.

    Example:
        >>> rename_occurrence_columns(["Latitude - processed", "Scientific Name"])
        ['latitude', 'scientificName']
    """
    result = []
    for column in columns:
        name = _OCC_PREFIX.sub("", column)
        name = _PROCESSED_SUFFIX.sub("", name) or name
        name = to_camel_case(name)
        result.append(OCCURRENCE_RENAMES.get(name, name))
    return result


def rename_columns(
    columns: Iterable[str],
    layers: Iterable[FieldInfo] = (),
    assertions: Iterable[FieldInfo] = (),
    use_layer_names: bool = True,
) -> list[str]:
    """
    Rename archive column headers in two passes.

    1. Layer ids to layer names (skipped with ``use_layer_names=False``,
       which only normalizes dotted ids like "el.871" to "el871").
    2. Assertion descriptions to assertion names, then occurrence headers
       to camelCase.

    Args:
        columns: Original column headers
        layers: Layer dictionary
        assertions: Assertion dictionary
        use_layer_names: Replace layer ids by their names

    Returns:
        New column names, in the same order
    """
    names = [_DOTTED_LAYER_ID.sub(r"\1\2", c) for c in columns]

    if use_layer_names:
        names = rename_layer_columns(names, layers)

    names = rename_assertion_columns(names, assertions)
    return rename_occurrence_columns(names)


def unwanted_columns(columns: Iterable[str]) -> list[str]:
    """Get the columns that should be dropped from a downloaded table."""
    return [c for c in columns if c in UNWANTED_COLUMNS]


def unique_columns(columns: Iterable[str]) -> list[str]:
    """
    Make column names unique by numbering repeats.

    Two headers can be renamed to the same name (for example
    "decimalLatitude" and "Latitude - processed" both become "latitude").
    The first keeps the name, later ones get a number: "latitude1",
    "latitude2". Numbered names are stable under camelCasing.
    """
    columns = list(columns)
    seen = set(columns)
    taken: set[str] = set()

    result = []
    for column in columns:
        name = column
        if name in taken:
            n = 1
            while f"{column}{n}" in seen or f"{column}{n}" in taken:
                n += 1
            name = f"{column}{n}"
        taken.add(name)
        result.append(name)
    return result
