import pytest

from app.services.spec_validator import (
    check_business_rules,
    json_type,
    validate_pipeline_spec,
    validation_error_prompt,
)


# --- structural validation ---


class TestStructure:
    def test_valid_spec_passes(self, valid_spec):
        result = validate_pipeline_spec(valid_spec)
        assert result.is_valid
        assert result.errors == []
        assert result.warnings == []

    def test_non_object_root(self):
        result = validate_pipeline_spec([1, 2])
        assert not result.is_valid
        assert result.errors == ["Expected object, got array"]

    def test_null_root(self):
        result = validate_pipeline_spec(None)
        assert result.errors == ["Expected object, got null"]

    def test_missing_top_level_fields(self):
        result = validate_pipeline_spec({"version": "1.0"})
        assert "Missing required field: project" in result.errors
        assert "Missing required field: sources" in result.errors
        assert "Missing required field: targets" in result.errors
        assert "Missing required field: schedule" in result.errors

    def test_missing_nested_field_reports_path(self, valid_spec):
        del valid_spec["project"]["name"]
        result = validate_pipeline_spec(valid_spec)
        assert result.errors == ["Missing required field: project.name"]

    def test_wrong_type_reports_path(self, valid_spec):
        valid_spec["schedule"]["retries"]["count"] = "two"
        result = validate_pipeline_spec(valid_spec)
        assert result.errors == ["Field schedule.retries.count: expected integer, got string"]

    def test_enum_violation(self, valid_spec):
        valid_spec["targets"][0]["kind"] = "oracle"
        result = validate_pipeline_spec(valid_spec)
        assert not result.is_valid
        assert any('targets[0].kind: value "oracle" not in allowed values' in e for e in result.errors)

    def test_field_type_enum(self, valid_spec):
        valid_spec["sources"][0]["schema"]["fields"][1]["type"] = "decimal"
        result = validate_pipeline_spec(valid_spec)
        assert any("sources[0].schema.fields[1].type" in e for e in result.errors)

    def test_empty_sources_violates_min_items(self, valid_spec):
        valid_spec["sources"] = []
        result = validate_pipeline_spec(valid_spec)
        assert "Field sources: array must have at least 1 items" in result.errors

    def test_empty_project_name_violates_min_length(self, valid_spec):
        valid_spec["project"]["name"] = ""
        result = validate_pipeline_spec(valid_spec)
        assert "Field project.name: string must be at least 1 characters" in result.errors

    def test_negative_retries_violates_minimum(self, valid_spec):
        valid_spec["schedule"]["retries"]["delaySec"] = -5
        result = validate_pipeline_spec(valid_spec)
        assert "Field schedule.retries.delaySec: number must be at least 0" in result.errors

    def test_nullable_string_accepts_null(self, valid_spec):
        valid_spec["sources"][0]["format"] = None
        assert validate_pipeline_spec(valid_spec).is_valid

    def test_nullable_string_rejects_number(self, valid_spec):
        valid_spec["sources"][0]["format"] = 5
        result = validate_pipeline_spec(valid_spec)
        assert result.errors == ["Field sources[0].format: expected one of string, null, got integer"]

    def test_whole_float_counts_as_integer(self, valid_spec):
        valid_spec["schedule"]["retries"]["count"] = 3.0
        assert validate_pipeline_spec(valid_spec).is_valid

    def test_boolean_is_not_integer(self, valid_spec):
        valid_spec["schedule"]["retries"]["count"] = True
        assert not validate_pipeline_spec(valid_spec).is_valid

    def test_errors_accumulate(self, valid_spec):
        valid_spec["targets"][0]["kind"] = "oracle"
        valid_spec["schedule"]["frequency"] = "yearly"
        del valid_spec["project"]["description"]
        result = validate_pipeline_spec(valid_spec)
        assert len(result.errors) == 3


# --- business rules ---


class TestBusinessRules:
    def test_clickhouse_requires_order_by(self, valid_spec):
        valid_spec["targets"][0]["ddl"]["orderBy"] = []
        result = validate_pipeline_spec(valid_spec)
        assert result.errors == ['ClickHouse target "target_main" must have at least one orderBy field']

    def test_clickhouse_order_by_restored(self, valid_spec):
        valid_spec["targets"][0]["ddl"]["orderBy"] = []
        assert not validate_pipeline_spec(valid_spec).is_valid
        valid_spec["targets"][0]["ddl"]["orderBy"] = ["created_at"]
        assert validate_pipeline_spec(valid_spec).is_valid

    def test_postgres_does_not_need_order_by(self, valid_spec):
        valid_spec["targets"][0]["kind"] = "postgres"
        valid_spec["targets"][0]["ddl"]["orderBy"] = []
        assert validate_pipeline_spec(valid_spec).is_valid

    @pytest.mark.parametrize("mode", ["merge", "upsert"])
    def test_merge_modes_require_dedup_keys(self, valid_spec, mode):
        valid_spec["targets"][0]["loadPolicy"]["mode"] = mode
        result = validate_pipeline_spec(valid_spec)
        assert result.errors == [f'Target "target_main" with {mode} mode must have dedupKeys']

        valid_spec["targets"][0]["loadPolicy"]["dedupKeys"] = ["id"]
        assert validate_pipeline_spec(valid_spec).is_valid

    def test_by_date_requires_field(self, valid_spec):
        valid_spec["targets"][0]["ddl"]["partitions"]["field"] = None
        result = validate_pipeline_spec(valid_spec)
        assert result.errors == ['Target "target_main" with by_date partitioning must specify partition field']

    def test_time_field_must_be_a_schema_field(self, valid_spec):
        valid_spec["sources"][0]["schema"]["timeField"] = "event_time"
        result = validate_pipeline_spec(valid_spec)
        assert result.errors == ['Source "file_input" timeField "event_time" not found in schema fields']

    def test_null_time_field_is_fine(self, valid_spec):
        valid_spec["sources"][0]["schema"]["timeField"] = None
        assert validate_pipeline_spec(valid_spec).is_valid

    def test_hdfs_table_name_is_a_warning(self, valid_spec):
        target = valid_spec["targets"][0]
        target["kind"] = "hdfs"
        target["entity"] = "analytics.sales"
        result = validate_pipeline_spec(valid_spec)
        assert result.is_valid
        assert result.warnings == ['HDFS target "target_main" entity should be a path, not a table name']

    def test_hdfs_path_has_no_warning(self, valid_spec):
        target = valid_spec["targets"][0]
        target["kind"] = "hdfs"
        target["entity"] = "/data/raw/sales.parquet"
        result = validate_pipeline_spec(valid_spec)
        assert result.is_valid
        assert result.warnings == []

    def test_non_list_targets_only_reported_once(self, valid_spec):
        valid_spec["targets"] = {"name": "oops"}
        result = validate_pipeline_spec(valid_spec)
        assert result.errors == ["Field targets: expected array, got object"]

    def test_rules_skip_non_object_spec(self):
        assert check_business_rules("not a spec") == ([], [])


class TestHelpers:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (None, "null"),
            (True, "boolean"),
            (3, "integer"),
            (3.5, "number"),
            ("x", "string"),
            ([], "array"),
            ({}, "object"),
        ],
    )
    def test_json_type(self, value, expected):
        assert json_type(value) == expected

    def test_error_prompt_lists_errors_and_warnings(self):
        prompt = validation_error_prompt(["first problem", "second problem"], ["minor"])
        assert "ERRORS (must fix):" in prompt
        assert "1. first problem" in prompt
        assert "2. second problem" in prompt
        assert "WARNINGS (recommended to fix):" in prompt
        assert "1. minor" in prompt

    def test_error_prompt_without_warnings(self):
        prompt = validation_error_prompt(["broken"], [])
        assert "WARNINGS" not in prompt
        assert prompt.endswith("business rules are followed.")
