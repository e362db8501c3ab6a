"""Shared fixtures for the test suite."""

import zipfile
from unittest.mock import Mock

import pytest

from sbdi_downloader.api import DownloadReason, SBDIClient
from sbdi_downloader.config import SBDIConfig
from sbdi_downloader.fields import FieldInfo, filter_fields

INDEX_FIELDS = [
    FieldInfo(name="taxon_name", description="Scientific Name", indexed=True, stored=True),
    FieldInfo(name="genus", description="Genus", indexed=True, stored=True),
    FieldInfo(name="latitude", description="Latitude", indexed=True, stored=True),
    FieldInfo(name="longitude", description="Longitude", indexed=True, stored=True),
    FieldInfo(
        name="data_resource_uid", description="Data Resource UID", indexed=True, stored=True
    ),
    FieldInfo(name="occurrence_remarks", description="Remarks", indexed=False, stored=True),
]

ASSERTIONS = [
    FieldInfo(
        name="coordinatesOutOfRange",
        description="Coordinates are out of range for species",
        fatal=True,
    ),
    FieldInfo(name="zeroCoordinates", description="Supplied coordinates are zero", fatal=True),
    FieldInfo(name="missingCollectionDate", description="Missing collection date"),
]

LAYERS = [
    FieldInfo(
        name="el871",
        description="Radiation - lowest period (Bio22)",
        category="Environmental",
    ),
    FieldInfo(name="cl10009", description="Counties", category="Contextual"),
]

REASONS = [
    DownloadReason(id=4, name="scientific research"),
    DownloadReason(id=10, name="testing"),
]

DATA_CSV = (
    '"Record ID"\t"Scientific Name"\t"Latitude - processed"\t"Longitude - processed"\t'
    '"data_resource_uid"\t"el871"\t"Coordinates are out of range for species"\t'
    '"missingCollectionDate"\t"lft"\n'
    '"a1"\t"Callitriche cophocarpa"\t"59.85"\t"17.63"\t"dr5"\t"12.5"\t"false"\t"true"\t"3"\n'
    '"a2"\t"Callitriche cophocarpa"\t"60.10"\t"18.00"\t"dr5"\t""\t"true"\t"false"\t"4"\n'
    '"a3"\t"Callitriche cophocarpa"\t"58.20"\t"16.40"\t"dr5"\t"9"\t"false"\t"false"\t"5"\n'
)

CITATION_CSV = (
    '"Data resource name"\t"Citation"\t"Number of records"\n'
    '"Artportalen"\t"SLU Artdatabanken (2024). Artportalen"\t"3"\n'
)

HEADER_ONLY_CSV = '"Record ID"\t"Scientific Name"\n'


def index_fields(fields_type: str = "occurrence"):
    """Mimic SBDIClient.fields for the sample metadata."""
    if fields_type == "assertions":
        return ASSERTIONS
    if fields_type == "layers":
        return LAYERS
    return filter_fields(INDEX_FIELDS, fields_type)


@pytest.fixture
def config(tmp_path):
    """Create a config that caches into a temporary directory."""
    return SBDIConfig(
        email="tester@example.org",
        download_reason_id=10,
        cache_dir=tmp_path / "cache",
        poll_interval=0,
    )


@pytest.fixture
def client(config):
    """Create an SBDIClient instance."""
    with SBDIClient(config) as c:
        yield c


@pytest.fixture
def metadata_client(client):
    """Create an SBDIClient whose vocabularies come from the sample metadata."""
    client.fields = Mock(side_effect=index_fields)
    client.assertions = Mock(return_value=ASSERTIONS)
    client.layers = Mock(return_value=LAYERS)
    client.reasons = Mock(return_value=REASONS)
    return client


@pytest.fixture
def make_archive(tmp_path):
    """Factory writing a zip archive laid out like an SBDI offline download."""

    def _make(name="archive.zip", data=DATA_CSV, citation=CITATION_CSV, readme=None):
        path = tmp_path / name
        with zipfile.ZipFile(path, "w") as archive:
            if data is not None:
                archive.writestr("data.csv", data)
            if citation is not None:
                archive.writestr("citation.csv", citation)
            if readme is not None:
                archive.writestr("README.html", readme)
        return path

    return _make
