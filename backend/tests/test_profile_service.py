import json

import pytest

from app.middleware.error_handler import ValidationError
from app.services.profile_service import (
    CSV_MIME,
    JSON_MIME,
    build_sample_info,
    check_file_size,
    extract_sample_data,
    header_delimiter,
    parse_project_meta,
    profile_file,
    resolve_mime_type,
)


class TestResolveMimeType:
    def test_declared_type_kept(self):
        assert resolve_mime_type("text/csv", "data.bin") == CSV_MIME

    def test_parameters_ignored(self):
        assert resolve_mime_type("application/json; charset=utf-8", "a.json") == JSON_MIME

    def test_generic_type_resolved_from_extension(self):
        assert resolve_mime_type("application/octet-stream", "events.NDJSON") == JSON_MIME
        assert resolve_mime_type(None, "sales.csv") == CSV_MIME
        assert resolve_mime_type("text/plain", "feed.xml") == "application/xml"

    def test_unsupported_type(self):
        with pytest.raises(ValidationError, match="Unsupported file type"):
            resolve_mime_type("application/pdf", "report.pdf")

    def test_generic_type_unknown_extension(self):
        with pytest.raises(ValidationError, match="Unsupported file type"):
            resolve_mime_type("application/octet-stream", "archive.zip")


class TestLimits:
    def test_json_over_100mb_rejected(self):
        with pytest.raises(ValidationError, match="JSON file too large"):
            check_file_size(JSON_MIME, 101 * 1024 * 1024)

    def test_csv_over_100mb_allowed(self):
        check_file_size(CSV_MIME, 101 * 1024 * 1024)

    def test_over_5gb_rejected(self):
        with pytest.raises(ValidationError, match="max 5GB"):
            check_file_size(CSV_MIME, 6 * 1024 * 1024 * 1024)

    def test_sample_info_percent(self):
        info = build_sample_info(1000, 250)
        assert info.percent == 25.0
        assert not info.is_full_file

    def test_sample_info_zero_size(self):
        assert build_sample_info(0, 0).percent == 100.0


class TestParseProjectMeta:
    def test_defaults_when_absent(self):
        assert parse_project_meta(None) == ("File Analysis Project", "Automated file analysis for data pipeline")

    def test_defaults_when_unparsable(self):
        assert parse_project_meta("{broken")[0] == "File Analysis Project"

    def test_values_used(self):
        raw = json.dumps({"name": " Sales ", "description": "Daily load"})
        assert parse_project_meta(raw) == ("Sales", "Daily load")

    def test_blank_name_keeps_default(self):
        raw = json.dumps({"name": "  ", "description": "Daily load"})
        assert parse_project_meta(raw) == ("File Analysis Project", "Daily load")


class TestProfileFile:
    def test_csv(self, csv_bytes, sample_info):
        profiled = profile_file(csv_bytes, CSV_MIME, sample_info)
        assert profiled.profile.format == "csv"
        assert profiled.profile.columns == ["id", "amount", "created_at"]
        assert profiled.text.startswith("id,amount")

    def test_profiling_is_deterministic(self, csv_bytes, sample_info):
        first = profile_file(csv_bytes, CSV_MIME, sample_info).profile
        second = profile_file(csv_bytes, CSV_MIME, sample_info).profile
        assert first == second

    def test_bom_reported_as_encoding(self, csv_bytes, sample_info):
        profiled = profile_file(b"\xef\xbb\xbf" + csv_bytes, CSV_MIME, sample_info)
        assert profiled.profile.encoding == "utf-8-bom"
        assert profiled.profile.columns[0] == "id"

    def test_empty_file_rejected(self, sample_info):
        with pytest.raises(ValidationError, match="File is empty"):
            profile_file(b"", CSV_MIME, sample_info)

    def test_json_array_uses_structural_analysis(self, sample_info):
        data = json.dumps([{"id": 1}, {"id": 2}]).encode()
        profile = profile_file(data, JSON_MIME, sample_info).profile
        assert profile.format == "json"
        assert profile.json_analysis is not None

    def test_ndjson_falls_back_to_line_profiler(self, sample_info):
        data = b'{"id": 1}\n{"id": 2}\n'
        profile = profile_file(data, JSON_MIME, sample_info).profile
        assert profile.format == "ndjson"
        assert profile.json_analysis is None
        assert profile.sample_rows_count == 2

    def test_xml(self, sample_info):
        profile = profile_file(b"<rows><row a='1'/><row a='2'/></rows>", "application/xml", sample_info).profile
        assert profile.format == "xml"
        assert profile.columns == ["row", "a"]


class TestExtractSampleData:
    def test_csv_rows(self, csv_bytes):
        rows = extract_sample_data(csv_bytes.decode(), CSV_MIME)
        assert len(rows) == 3
        assert rows[1] == {"id": "2", "amount": "", "created_at": "2024-01-02 11:00:00"}

    def test_csv_row_limit(self):
        text = "a\n" + "\n".join(str(i) for i in range(100))
        rows = extract_sample_data(text, CSV_MIME, max_rows=5)
        assert rows == [{"a": str(i)} for i in range(5)]

    def test_header_only_csv(self):
        assert extract_sample_data("a,b", CSV_MIME) == []

    def test_json_array(self):
        assert extract_sample_data('[{"a": 1}, {"a": 2}]', JSON_MIME, max_rows=1) == [{"a": 1}]

    def test_json_object(self):
        assert extract_sample_data('{"a": 1}', JSON_MIME) == [{"a": 1}]

    def test_ndjson(self):
        assert extract_sample_data('{"a": 1}\nbad\n{"a": 2}', JSON_MIME) == [{"a": 1}, {"a": 2}]

    def test_invalid_json_gives_empty_list(self):
        assert extract_sample_data("[{", JSON_MIME) == []

    def test_xml_gives_empty_list(self):
        assert extract_sample_data("<a/>", "application/xml") == []

    def test_header_delimiter_prefers_most_columns(self):
        assert header_delimiter("a;b;c,d") == ";"
        assert header_delimiter("single") == ","
