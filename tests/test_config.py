from __future__ import annotations

import json

import pytest

from perftester.benchmarks.config import (
    LoadSpec,
    default_benchmark_plan,
    load_plan_file,
    plan_from_dict,
)
from perftester.errors import InvalidParams
from perftester.workloads import ScenarioKind


def test_default_plan_order_and_load():
    plan = default_benchmark_plan()
    assert [spec.kind for spec in plan] == [
        ScenarioKind.CONNECTIVITY,
        ScenarioKind.SINGLE_ROUND_TRIP,
        ScenarioKind.BATCH_ROUND_TRIP,
        ScenarioKind.RAW_STORE_LOOP,
    ]
    assert plan.scenarios[2].iterations == 50
    assert plan.scenarios[3].iterations == 20
    assert plan.load == LoadSpec(concurrency=3, per_worker_iterations=10)
    assert not plan.scenarios[0].timed
    assert plan.scenarios[2].reports_average


def test_select_keeps_catalogue_order():
    plan = default_benchmark_plan().select(["raw-store-loop", "connectivity"])
    assert [spec.name for spec in plan] == ["connectivity", "raw-store-loop"]


def test_select_rejects_unknown_names():
    with pytest.raises(InvalidParams):
        default_benchmark_plan().select(["warp-drive"])


def test_plan_from_dict_sorts_into_catalogue_order():
    plan = plan_from_dict(
        {
            "scenarios": [
                {"kind": "raw_store_loop", "iterations": 5},
                {"kind": "batch_round_trip", "iterations": 7, "name_prefix": "custom"},
            ],
            "load": {"concurrency": 4, "per_worker_iterations": 2},
        }
    )
    assert [spec.kind for spec in plan] == [
        ScenarioKind.BATCH_ROUND_TRIP,
        ScenarioKind.RAW_STORE_LOOP,
    ]
    assert plan.scenarios[0].iterations == 7
    assert plan.scenarios[0].name_prefix == "custom"
    assert plan.load.concurrency == 4


def test_plan_without_load_section():
    plan = plan_from_dict({"scenarios": [{"kind": "connectivity"}]})
    assert plan.load is None


@pytest.mark.parametrize(
    "payload",
    [
        {"scenarios": [{"kind": "warp"}]},
        {"scenarios": [{"iterations": 3}]},
        {"scenarios": [{"kind": "load_worker"}]},
        {"load": {"concurrency": 0}},
        {"load": {"threads": 2}},
        {"load": {"per_worker_iterations": "10"}},
        {"load": {"concurrency": 2.5}},
        {"load": {"worker_timeout_s": "5"}},
        {"load": {"worker_timeout_s": 0}},
        {"load": {"record_prefix": 3}},
        {"scenarios": None},
        {"scenarios": {"kind": "connectivity"}},
    ],
)
def test_invalid_plans_are_rejected(payload):
    with pytest.raises(InvalidParams):
        plan_from_dict(payload)


def test_load_plan_file(tmp_path):
    path = tmp_path / "plan.json"
    path.write_text(json.dumps({"scenarios": [{"kind": "connectivity"}]}), encoding="utf-8")
    plan = load_plan_file(path)
    assert [spec.name for spec in plan] == ["connectivity"]


def test_load_plan_file_with_bad_json(tmp_path):
    path = tmp_path / "plan.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(InvalidParams):
        load_plan_file(path)
    with pytest.raises(InvalidParams):
        load_plan_file(tmp_path / "missing.json")


def test_load_section_accepts_worker_timeout():
    plan = plan_from_dict({"load": {"worker_timeout_s": 1.5}})
    assert plan.load.worker_timeout_s == 1.5
