"""Tests for the query module."""

import logging
from unittest.mock import Mock

import pytest
from conftest import ASSERTIONS, INDEX_FIELDS, LAYERS, REASONS

from sbdi_downloader.api import InvalidRequestError, SBDIClient
from sbdi_downloader.config import SBDIConfig
from sbdi_downloader.query import (
    OccurrenceQuery,
    build_count_params,
    build_download_params,
    check_fq,
    convert_reason,
    resolve_assertions,
    resolve_fields,
)


class TestOccurrenceQuery:
    """Tests for OccurrenceQuery."""

    def test_missing_criteria_raises_error(self):
        """Test that a query needs taxon, wkt or fq."""
        with pytest.raises(InvalidRequestError, match="need at least one of taxon, fq, or wkt"):
            OccurrenceQuery()

    def test_missing_criteria_is_value_error(self):
        """Test that invalid requests can be caught as ValueError."""
        with pytest.raises(ValueError):
            OccurrenceQuery(taxon="  ", fq=["", " "], fields=["latitude"])

    def test_single_fq_string(self):
        """Test that an fq string is one clause, even with commas."""
        query = OccurrenceQuery(fq="taxon_name:\"Alaba vibex, 1850\"")
        assert query.fq == ["taxon_name:\"Alaba vibex, 1850\""]

    def test_field_lists_cleaned(self):
        """Test that comma-separated field selections are split."""
        query = OccurrenceQuery(taxon="genus:Accipiter", fields="latitude, longitude,", qa="none")
        assert query.fields == ["latitude", "longitude"]
        assert query.qa == ["none"]

    def test_search_params(self):
        """Test that repeated fq clauses become repeated parameters."""
        query = OccurrenceQuery(
            taxon="genus:Accipiter",
            wkt="POLYGON((16.5 60.7,18.8 59.8,17.6 58.8,16.5 60.7))",
            fq=["data_resource_uid:dr5", "-basis_of_record:FossilSpecimen"],
        )
        assert query.search_params() == [
            ("q", "genus:Accipiter"),
            ("wkt", "POLYGON((16.5 60.7,18.8 59.8,17.6 58.8,16.5 60.7))"),
            ("fq", "data_resource_uid:dr5"),
            ("fq", "-basis_of_record:FossilSpecimen"),
        ]

    def test_from_dict_and_to_dict(self):
        """Test dictionary conversion."""
        query = OccurrenceQuery.from_dict(
            {"taxon": "Callitriche cophocarpa", "fq": ["data_resource_uid:dr5"], "qa": "all"}
        )
        assert query.taxon == "Callitriche cophocarpa"
        assert query.to_dict() == {
            "taxon": "Callitriche cophocarpa",
            "fq": ["data_resource_uid:dr5"],
            "qa": ["all"],
        }


class TestConvertReason:
    """Tests for download reason resolution."""

    def test_numeric_id(self):
        """Test integer and digit-string ids."""
        assert convert_reason(10, REASONS) == 10
        assert convert_reason("4", REASONS) == 4

    def test_reason_name(self):
        """Test resolving a reason by name."""
        assert convert_reason("Scientific Research", REASONS) == 4

    @pytest.mark.parametrize("reason_id", [None, "", 99, "bogus", True])
    def test_invalid_reason(self, reason_id):
        """Test that invalid reasons list the valid ones."""
        with pytest.raises(InvalidRequestError, match="4: scientific research; 10: testing"):
            convert_reason(reason_id, REASONS)


class TestResolution:
    """Tests for field, assertion and fq checks."""

    def test_resolve_fields_by_name(self):
        """Test mixing ids and descriptions."""
        ids = resolve_fields(
            ["latitude", "Scientific Name", "Radiation - lowest period (Bio22)"],
            INDEX_FIELDS,
            LAYERS,
        )
        assert ids == ["latitude", "taxon_name", "el871"]

    def test_resolve_fields_all(self):
        """Test that "all" expands to every valid field."""
        ids = resolve_fields(["all"], INDEX_FIELDS, LAYERS)
        assert ids == [f.name for f in INDEX_FIELDS]

    def test_resolve_fields_unknown(self):
        """Test that unknown fields are reported."""
        with pytest.raises(InvalidRequestError, match="invalid extra fields requested: bogus"):
            resolve_fields(["latitude", "bogus"], INDEX_FIELDS, LAYERS, "extra fields")

    def test_resolve_assertions(self):
        """Test assertion selections."""
        assert resolve_assertions(["none"], ASSERTIONS) == ["none"]
        assert resolve_assertions(["zeroCoordinates"], ASSERTIONS) == ["zeroCoordinates"]
        assert resolve_assertions(["ALL"], ASSERTIONS) == [a.name for a in ASSERTIONS]

    def test_resolve_assertions_unknown(self):
        """Test that unknown assertions are reported."""
        with pytest.raises(InvalidRequestError, match="invalid qa fields requested"):
            resolve_assertions(["noSuchAssertion"], ASSERTIONS)

    def test_check_fq_warns(self, caplog):
        """Test that non-indexed fq fields only warn."""
        indexed = [f for f in INDEX_FIELDS if f.indexed]
        with caplog.at_level(logging.WARNING, logger="sbdi_downloader"):
            unknown = check_fq(["genus:Alaba OR occurrence_remarks:dead"], indexed)
        assert unknown == ["occurrence_remarks"]
        assert "not indexed: occurrence_remarks" in caplog.text

    def test_check_fq_known_fields(self, caplog):
        """Test that indexed fq fields do not warn."""
        with caplog.at_level(logging.WARNING, logger="sbdi_downloader"):
            assert check_fq(["data_resource_uid:dr5"], INDEX_FIELDS) == []
        assert caplog.text == ""


class TestBuildDownloadParams:
    """Tests for offline download parameters."""

    def test_basic_params(self, metadata_client):
        """Test the parameters of a simple download."""
        query = OccurrenceQuery(taxon="Callitriche cophocarpa", fq=["data_resource_uid:dr5"])
        params = build_download_params(query, metadata_client)

        assert params == [
            ("q", "Callitriche cophocarpa"),
            ("fq", "data_resource_uid:dr5"),
            ("email", "tester@example.org"),
            ("reasonTypeId", "10"),
            ("sourceTypeId", "2001"),
            ("esc", "\\"),
            ("sep", "\t"),
            ("file", "data"),
        ]

    def test_fields_extra_qa_reason(self, metadata_client):
        """Test field, assertion and reason parameters."""
        query = OccurrenceQuery(
            taxon="genus:Accipiter",
            fields=["latitude", "longitude"],
            extra=["Counties"],
            qa=["zeroCoordinates", "coordinatesOutOfRange"],
            reason="course work",
        )
        params = dict(build_download_params(query, metadata_client, download_reason_id="testing"))

        assert params["fields"] == "latitude,longitude"
        assert params["extra"] == "cl10009"
        assert params["qa"] == "zeroCoordinates,coordinatesOutOfRange"
        assert params["reason"] == "course work"
        assert params["reasonTypeId"] == "10"

    def test_explicit_email_overrides_config(self, metadata_client):
        """Test passing an email per call."""
        query = OccurrenceQuery(taxon="genus:Accipiter")
        params = dict(build_download_params(query, metadata_client, email="other@example.org"))
        assert params["email"] == "other@example.org"

    def test_missing_email_fails_before_network(self, tmp_path):
        """Test that a missing email is reported before any lookup."""
        client = SBDIClient(SBDIConfig(download_reason_id=10, cache_dir=tmp_path))
        client.reasons = Mock()
        client.fields = Mock()
        client.session.get = Mock()

        with pytest.raises(InvalidRequestError, match="email is required"):
            build_download_params(OccurrenceQuery(taxon="genus:Accipiter"), client)

        client.reasons.assert_not_called()
        client.fields.assert_not_called()
        client.session.get.assert_not_called()

    def test_missing_reason(self, metadata_client):
        """Test that a missing reason is an invalid request."""
        metadata_client.config.download_reason_id = None
        with pytest.raises(InvalidRequestError, match="download_reason_id"):
            build_download_params(OccurrenceQuery(taxon="genus:Accipiter"), metadata_client)

    def test_invalid_fields(self, metadata_client):
        """Test that unknown fields fail the request."""
        query = OccurrenceQuery(taxon="genus:Accipiter", fields=["bogus"])
        with pytest.raises(InvalidRequestError, match="invalid fields requested: bogus"):
            build_download_params(query, metadata_client)

    def test_fields_all(self, metadata_client):
        """Test that fields="all" requests every field."""
        query = OccurrenceQuery(taxon="genus:Accipiter", fields="all")
        params = dict(build_download_params(query, metadata_client))
        assert params["fields"] == ",".join(f.name for f in INDEX_FIELDS)


def test_build_count_params():
    """Test that counting asks for no records."""
    query = OccurrenceQuery(taxon="genus:Accipiter", fq=["data_resource_uid:dr5"])
    assert build_count_params(query) == [
        ("q", "genus:Accipiter"),
        ("fq", "data_resource_uid:dr5"),
        ("pageSize", "0"),
        ("facet", "off"),
    ]
