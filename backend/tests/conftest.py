import copy
import json

import pytest

from app.models.profile import FileProfile, SampleInfo

VALID_SPEC = {
    "version": "1.0",
    "project": {"name": "Sales", "description": "Daily sales load"},
    "sources": [
        {
            "name": "file_input",
            "kind": "file",
            "entity": "sales.csv",
            "format": "csv",
            "schema": {
                "fields": [
                    {"name": "id", "type": "integer", "nullable": False},
                    {"name": "amount", "type": "float", "nullable": True},
                    {"name": "created_at", "type": "timestamp", "nullable": False},
                ],
                "primaryKey": ["id"],
                "timeField": "created_at",
            },
        }
    ],
    "transforms": [{"id": "d1", "operator": "Deduplicate", "params": {"keys": ["id"]}}],
    "targets": [
        {
            "name": "target_main",
            "kind": "clickhouse",
            "entity": "analytics.sales",
            "ddl": {
                "table": "analytics.sales",
                "partitions": {"type": "by_date", "field": "created_at", "granularity": "month"},
                "indexes": [],
                "orderBy": ["created_at", "id"],
            },
            "loadPolicy": {
                "mode": "append",
                "dedupKeys": [],
                "watermark": {"field": "created_at", "delay": "PT1H"},
            },
        }
    ],
    "mappings": [{"from": "file_input.id", "to": "target_main.id", "transformId": None}],
    "schedule": {
        "frequency": "daily",
        "cron": "0 2 * * *",
        "slaNote": None,
        "retries": {"count": 2, "delaySec": 300},
    },
    "nonFunctional": {
        "retention": {"policy": None},
        "dataQualityChecks": [{"check": "not_null", "field": "id"}],
        "pii": {"masking": [], "notes": None},
    },
}


@pytest.fixture
def valid_spec():
    """A PipelineSpec v1 that passes both validation phases."""
    return copy.deepcopy(VALID_SPEC)


@pytest.fixture
def sample_info():
    return SampleInfo(original_size=1000, sampled_bytes=1000, percent=100.0, is_full_file=True)


@pytest.fixture
def file_profile(sample_info):
    return FileProfile(
        format="csv",
        columns=["id", "amount", "created_at"],
        inferred_types={"id": "integer", "amount": "float", "created_at": "timestamp"},
        sample_rows_count=3,
        missing_stats={"id": 0, "amount": 1, "created_at": 0},
        time_fields=["created_at"],
        primary_key_candidates=["id"],
        delimiter=",",
        header_present=True,
        sample_info=sample_info,
    )


@pytest.fixture
def csv_bytes():
    return (
        b"id,amount,created_at\n"
        b"1,10.5,2024-01-01 10:00:00\n"
        b"2,,2024-01-02 11:00:00\n"
        b"3,7.25,2024-01-03 12:00:00\n"
    )


@pytest.fixture
def generate_payload(file_profile):
    """Raw camelCase body of POST /api/generate/spec in file mode."""
    profile = file_profile.model_dump(by_alias=True)
    profile["name"] = "sales.csv"
    profile["sampleData"] = [{"id": "1", "amount": "10.5", "created_at": "2024-01-01 10:00:00"}]
    return {
        "projectMeta": {"name": "Sales", "description": "Daily sales load"},
        "ingest": {"mode": "file", "fileProfile": profile},
        "recommendation": {
            "storage": "ClickHouse",
            "partitioning": "by_date",
            "loadMode": "append",
            "schedule": {"frequency": "daily", "cron": "0 2 * * *"},
            "rationale": ["Analytical workload"],
        },
        "pipeline": {"nodes": [], "edges": []},
    }


@pytest.fixture
def llm_reply():
    """Builds model answer text carrying all required top-level keys."""

    def build(spec, report="# Отчет", **extra) -> str:
        body = {
            "deepProfile": {"format": "csv", "quality": {"rowCountSampled": 0}},
            "recommendation": {"targetStorage": "ClickHouse"},
            "reportMarkdown": report,
            "proposedSpec": spec,
            **extra,
        }
        return json.dumps(body, ensure_ascii=False)

    return build

