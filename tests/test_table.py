"""Tests for the table module."""

import logging
import zipfile

import pandas as pd
import pytest
from conftest import ASSERTIONS, HEADER_ONLY_CSV, LAYERS

from sbdi_downloader.api import DownloadError
from sbdi_downloader.table import OccurrenceTable, infer_column_type, read_occurrence_archive


class TestInferColumnType:
    """Tests for column type inference."""

    def test_numeric(self):
        """Test that numeric text becomes numeric."""
        result = infer_column_type(pd.Series(["1.5", "2", "-3e2"]))
        assert pd.api.types.is_numeric_dtype(result)
        assert result.tolist() == [1.5, 2.0, -300.0]

    def test_numeric_with_blanks(self):
        """Test that blanks become missing values in numeric columns."""
        result = infer_column_type(pd.Series(["1", "", None]))
        assert pd.api.types.is_numeric_dtype(result)
        assert result.iloc[0] == 1
        assert result.iloc[1:].isna().all()

    def test_logical(self):
        """Test that true/false text becomes nullable boolean."""
        result = infer_column_type(pd.Series(["true", "false", ""]))
        assert str(result.dtype) == "boolean"
        assert result.iloc[:2].tolist() == [True, False]
        assert pd.isna(result.iloc[2])

    def test_mixed_text_stays_text(self):
        """Test that a column with any non-numeric value is left alone."""
        values = pd.Series(["1", "two", "3"])
        result = infer_column_type(values)
        assert result.tolist() == ["1", "two", "3"]

    def test_empty_column_stays_text(self):
        """Test that an all-empty column is not converted."""
        values = pd.Series(["", ""])
        result = infer_column_type(values)
        assert result.tolist() == ["", ""]


class TestReadOccurrenceArchive:
    """Tests for reading offline download archives."""

    def test_reads_and_renames(self, make_archive):
        """Test reading a complete archive."""
        path = make_archive()
        table = read_occurrence_archive(path, layers=LAYERS, assertions=ASSERTIONS)

        assert isinstance(table, OccurrenceTable)
        assert table.kind == "occurrences"
        assert len(table) == 3
        assert table.columns == [
            "recordID",
            "scientificName",
            "latitude",
            "longitude",
            "dataResourceUid",
            "radiationLowestPeriodBio22",
            "coordinatesOutOfRange",
            "missingCollectionDate",
        ]
        assert table.data["latitude"].tolist() == [59.85, 60.10, 58.20]
        assert table.data["coordinatesOutOfRange"].tolist() == [False, True, False]
        assert table.data["radiationLowestPeriodBio22"].isna().tolist() == [False, True, False]
        assert (table.data["dataResourceUid"] == "dr5").all()

    def test_unwanted_columns_dropped(self, make_archive):
        """Test that denylisted columns are removed."""
        table = read_occurrence_archive(make_archive())
        assert "lft" not in table.columns

    def test_layer_ids_kept(self, make_archive):
        """Test reading with layer ids as column names."""
        table = read_occurrence_archive(
            make_archive(), layers=LAYERS, assertions=ASSERTIONS, use_layer_names=False
        )
        assert "el871" in table.columns

    def test_citation_csv(self, make_archive):
        """Test that citation.csv is attached."""
        table = read_occurrence_archive(make_archive())
        assert table.citation is not None
        assert table.citation["Data resource name"].tolist() == ["Artportalen"]
        assert "SLU Artdatabanken" in table.citation_text

    def test_readme_citation_fallback(self, make_archive):
        """Test falling back to README.html for the citation."""
        path = make_archive(citation=None, readme="<html>\n<p>Cite SBDI</p>\n</html>\n")
        table = read_occurrence_archive(path)
        assert table.citation_text == "<html><p>Cite SBDI</p></html>"

    def test_missing_citation_warns(self, make_archive, caplog):
        """Test that a missing citation only warns."""
        path = make_archive(citation=None)
        with caplog.at_level(logging.WARNING, logger="sbdi_downloader"):
            table = read_occurrence_archive(path)
        assert len(table) == 3
        assert table.citation is None
        assert "citation file not found" in caplog.text

    def test_empty_result_warns(self, make_archive, caplog):
        """Test that a header-only data file gives an empty table and a warning."""
        path = make_archive(data=HEADER_ONLY_CSV, citation=None)
        with caplog.at_level(logging.WARNING, logger="sbdi_downloader"):
            table = read_occurrence_archive(path)
        assert table.empty
        assert table.citation is None
        assert "no matching records were returned" in caplog.text

    def test_empty_data_file(self, make_archive):
        """Test an archive whose data file has no content at all."""
        table = read_occurrence_archive(make_archive(data="", citation=None))
        assert table.empty

    def test_empty_warning_can_be_disabled(self, make_archive, caplog):
        """Test warn_on_empty=False."""
        path = make_archive(data=HEADER_ONLY_CSV, citation=None)
        with caplog.at_level(logging.WARNING, logger="sbdi_downloader"):
            read_occurrence_archive(path, warn_on_empty=False)
        assert "no matching records" not in caplog.text

    def test_zero_size_file(self, tmp_path):
        """Test that a zero-byte download is an empty table."""
        path = tmp_path / "empty.zip"
        path.write_bytes(b"")
        table = read_occurrence_archive(path)
        assert table.empty

    def test_malformed_wkt_warns(self, make_archive, caplog):
        """Test that an invalid polygon is reported without failing."""
        path = make_archive(data=HEADER_ONLY_CSV, citation=None)
        with caplog.at_level(logging.WARNING, logger="sbdi_downloader"):
            table = read_occurrence_archive(path, wkt="POLYGON((16.5 60.7, 18.8 59.8")
        assert table.empty
        assert "WKT string may not be valid" in caplog.text

    def test_valid_wkt_does_not_warn(self, make_archive, caplog):
        """Test that a valid polygon is not reported."""
        path = make_archive(data=HEADER_ONLY_CSV, citation=None)
        wkt = "POLYGON((16.5 60.7,18.8 59.8,17.6 58.8,16.5 60.7))"
        with caplog.at_level(logging.WARNING, logger="sbdi_downloader"):
            read_occurrence_archive(path, wkt=wkt)
        assert "WKT" not in caplog.text

    def test_missing_data_file(self, make_archive):
        """Test that an archive without data.csv is an error."""
        path = make_archive(data=None)
        with pytest.raises(DownloadError, match="data.csv not found"):
            read_occurrence_archive(path)

    def test_not_a_zip(self, tmp_path):
        """Test that a corrupt download is an error."""
        path = tmp_path / "broken.zip"
        path.write_text("<html>Service unavailable</html>")
        with pytest.raises(DownloadError, match="not a valid zip"):
            read_occurrence_archive(path)

    def test_data_file_in_subdirectory(self, tmp_path):
        """Test that data.csv is found regardless of its directory."""
        path = tmp_path / "nested.zip"
        with zipfile.ZipFile(path, "w") as archive:
            archive.writestr("download/data.csv", HEADER_ONLY_CSV + '"a1"\t"Alaba vibex"\n')
        table = read_occurrence_archive(path)
        assert table.data["scientificName"].tolist() == ["Alaba vibex"]

    def test_backslash_escaped_quotes(self, tmp_path):
        """Test that backslash-escaped quotes are read as quotes."""
        path = tmp_path / "quotes.zip"
        with zipfile.ZipFile(path, "w") as archive:
            archive.writestr(
                "data.csv", '"Record ID"\t"Locality"\n"a1"\t"near \\"the\\" lake"\n'
            )
        table = read_occurrence_archive(path)
        assert table.data["locality"].tolist() == ['near "the" lake']

    def test_headers_renamed_to_same_name(self, tmp_path):
        """Test that headers renamed to one name stay separate columns."""
        path = tmp_path / "coords.zip"
        with zipfile.ZipFile(path, "w") as archive:
            archive.writestr(
                "data.csv",
                '"decimalLatitude"\t"Latitude - processed"\n"59.8"\t"59.85"\n',
            )
        table = read_occurrence_archive(path)

        assert table.columns == ["latitude", "latitude1"]
        assert isinstance(table.data["latitude"], pd.Series)
        assert table.data["latitude"].tolist() == [59.8]
        assert table.data["latitude1"].tolist() == [59.85]

    def test_malformed_line_skipped(self, tmp_path, caplog):
        """Test that a row with too many fields is skipped with a warning."""
        path = tmp_path / "ragged.zip"
        with zipfile.ZipFile(path, "w") as archive:
            archive.writestr("data.csv", '"a"\t"b"\n"1"\t"2"\n"3"\t"4"\t"5"\n')

        with caplog.at_level(logging.WARNING, logger="sbdi_downloader"):
            table = read_occurrence_archive(path)

        assert len(table) == 1
        assert table.data["a"].tolist() == [1]
        assert "malformed lines" in caplog.text


class TestOccurrenceTable:
    """Tests for OccurrenceTable."""

    def test_subset(self, make_archive):
        """Test selecting rows keeps citation and path."""
        table = read_occurrence_archive(make_archive(), assertions=ASSERTIONS)
        subset = table.subset(table.data["latitude"] > 59)
        assert len(subset) == 2
        assert subset.citation is table.citation
        assert subset.path == table.path
        assert subset.data.index.tolist() == [0, 1]
