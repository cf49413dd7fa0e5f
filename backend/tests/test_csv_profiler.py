import pandas as pd
import pytest

from app.middleware.error_handler import ValidationError
from app.services.csv_profiler import detect_delimiter, infer_text_type, profile_csv
from app.services.encoding_sniffer import decode_bytes, truncate_to_last_line


# --- encoding ---


class TestDecodeBytes:
    def test_plain_utf8(self):
        assert decode_bytes("имя,город".encode("utf-8")) == ("имя,город", "utf-8")

    def test_utf8_bom_stripped(self):
        text, encoding = decode_bytes(b"\xef\xbb\xbfid,name")
        assert text == "id,name"
        assert encoding == "utf-8-bom"

    def test_utf16le_bom(self):
        text, encoding = decode_bytes(b"\xff\xfe" + "id,name".encode("utf-16-le"))
        assert text == "id,name"
        assert encoding == "utf-16le"

    def test_invalid_utf8_falls_back_to_latin1(self):
        text, encoding = decode_bytes(b"caf\xe9")
        assert text == "café"
        assert encoding == "latin1"


class TestTruncateToLastLine:
    def test_short_input_untouched(self):
        assert truncate_to_last_line(b"a\nb\n", 100) == b"a\nb\n"

    def test_cut_at_last_newline(self):
        assert truncate_to_last_line(b"a,b\nc,d\ne,f", 9) == b"a,b\nc,d\n"

    def test_no_newline_hard_cut(self):
        assert truncate_to_last_line(b"abcdefgh", 4) == b"abcd"


# --- delimiter and type detection ---


class TestDetectDelimiter:
    @pytest.mark.parametrize("delimiter", [",", ";", "\t", "|"])
    def test_consistent_delimiter(self, delimiter):
        lines = [delimiter.join(["a", "b", "c"]), delimiter.join(["1", "2", "3"])]
        assert detect_delimiter(lines) == delimiter

    def test_comma_split_body_beats_mixed_header(self):
        assert detect_delimiter(["a,b;c", "1,2", "3,4"]) == ","

    def test_comma_wins_ties(self):
        assert detect_delimiter(["single", "column"]) == ","

    def test_inconsistent_falls_back_to_highest_count(self):
        lines = ["a;b;c", "1,2|x\ty"]
        assert detect_delimiter(lines) == ";"


class TestInferTextType:
    @pytest.mark.parametrize(
        "values, expected",
        [
            (["1", "-2", "30"], "integer"),
            (["1.5", "2", "1e3"], "float"),
            (["true", "no", "Yes"], "boolean"),
            (["2024-01-01 10:00:00", "later"], "timestamp"),
            (["01.02.2024", "other"], "date"),
            (["alice", "bob"], "string"),
        ],
    )
    def test_priority(self, values, expected):
        assert infer_text_type("value", pd.Series(values, dtype=str)) == expected

    def test_time_like_name_with_unparsed_values(self):
        assert infer_text_type("created_at", pd.Series(["yesterday", "n/a"], dtype=str)) == "timestamp"

    @pytest.mark.parametrize("name", ["comment", "created_at"])
    def test_column_without_values_is_integer(self, name):
        assert infer_text_type(name, pd.Series([], dtype=str)) == "integer"

    def test_zero_one_column_is_integer_not_boolean(self):
        assert infer_text_type("flag", pd.Series(["0", "1", "1"], dtype=str)) == "integer"


# --- profile_csv ---


class TestProfileCsv:
    def test_basic_profile(self, csv_bytes, sample_info):
        profile = profile_csv(csv_bytes.decode(), sample_info, "utf-8")

        assert profile.delimiter == ","
        assert profile.sample_rows_count == 3
        names = [c.name for c in profile.columns]
        assert names == ["id", "amount", "created_at"]

        by_name = {c.name: c for c in profile.columns}
        assert by_name["id"].inferred_type == "integer"
        assert by_name["id"].is_key_candidate
        assert by_name["amount"].inferred_type == "float"
        assert by_name["amount"].missing == 1
        assert by_name["amount"].quality.range.min == 7.25
        assert by_name["amount"].quality.range.max == 10.5
        assert by_name["created_at"].inferred_type == "timestamp"
        assert by_name["created_at"].is_time_field

    def test_full_sample_confidence(self, csv_bytes, sample_info):
        profile = profile_csv(csv_bytes.decode(), sample_info, "utf-8")
        assert profile.schema_confidence == 0.8
        assert not profile.sampling_warning

    def test_partial_sample_lowers_confidence(self, csv_bytes, sample_info):
        partial = sample_info.model_copy(update={"percent": 10.0, "is_full_file": False})
        profile = profile_csv(csv_bytes.decode(), partial, "utf-8")
        assert profile.schema_confidence == 0.6
        assert profile.sampling_warning

    def test_duplicates_share(self, sample_info):
        text = "a;b\n1;x\n1;x\n2;y\n1;x\n"
        profile = profile_csv(text, sample_info, "utf-8")
        assert profile.delimiter == ";"
        assert profile.duplicates_share == pytest.approx(0.5)

    def test_quotes_removed_from_cells(self, sample_info):
        profile = profile_csv('"id","name"\n"1","Ann"\n', sample_info, "utf-8")
        assert [c.name for c in profile.columns] == ["id", "name"]
        assert profile.columns[0].inferred_type == "integer"

    def test_blank_and_repeated_headers(self, sample_info):
        profile = profile_csv("id,,id\n1,2,3\n", sample_info, "utf-8")
        assert [c.name for c in profile.columns] == ["id", "column_2", "id_2"]

    def test_short_rows_padded(self, sample_info):
        text = "a,b,c\n" + "1,2,3\n" * 9 + "4,5\n"
        profile = profile_csv(text, sample_info, "utf-8")
        by_name = {c.name: c for c in profile.columns}
        assert by_name["c"].missing == 1

    def test_header_only(self, sample_info):
        profile = profile_csv("id,updated_at\n", sample_info, "utf-8")
        assert profile.sample_rows_count == 0
        assert profile.duplicates_share == 0.0
        by_name = {c.name: c for c in profile.columns}
        assert by_name["id"].inferred_type == "integer"
        assert by_name["updated_at"].inferred_type == "integer"
        assert not by_name["updated_at"].is_time_field

    def test_blank_text_rejected(self, sample_info):
        with pytest.raises(ValidationError, match="no rows"):
            profile_csv("\n \n", sample_info, "utf-8")

    def test_normalized_profile(self, csv_bytes, sample_info):
        file_profile = profile_csv(csv_bytes.decode(), sample_info, "utf-8").to_file_profile()
        assert file_profile.format == "csv"
        assert file_profile.time_fields == ["created_at"]
        assert file_profile.primary_key_candidates == ["id", "created_at"]
        assert file_profile.missing_stats == {"id": 0, "amount": 1, "created_at": 0}
        assert file_profile.header_present is True


class TestKeyCandidates:
    def test_fully_present_distinct_column_is_candidate(self, sample_info):
        text = "id\n" + "\n".join(str(i) for i in range(100))
        profile = profile_csv(text, sample_info, "utf-8")
        assert profile.columns[0].is_key_candidate

    def test_ninety_percent_present_is_not_candidate(self, sample_info):
        rows = [f"{i},x" for i in range(90)] + [",x"] * 10
        profile = profile_csv("id,tag\n" + "\n".join(rows), sample_info, "utf-8")
        by_name = {c.name: c for c in profile.columns}
        assert by_name["id"].missing == 10
        assert not by_name["id"].is_key_candidate
