"""
Tests for the plan runner and run verification.
"""
from __future__ import annotations

import json
import os

import pytest

from pi_session.core.plan_runner import (
    PLAN_SCHEMA,
    Runner,
    load_plan,
    parse_plan,
    safe_id,
    verify_run,
)
from pi_session.errors import PlanError


def _plan(*steps: dict, workflow: str = "demo") -> dict:
    return {"schema": PLAN_SCHEMA, "workflow": workflow, "steps": list(steps)}


def _read(path: str):
    with open(path, encoding="utf-8") as f:
        return json.load(f)


@pytest.fixture
def runner(tmp_path, clock):
    sleeps: list[float] = []
    r = Runner(str(tmp_path / "runs"), clock=clock, sleep=sleeps.append)
    r.sleeps = sleeps  # type: ignore[attr-defined]
    return r


# ── Parsing ───────────────────────────────────────────────────────────────────

def test_parse_plan():
    plan = parse_plan(_plan({"id": "a", "tool": "echo", "params": {"text": "hi"}}))
    assert plan.workflow == "demo"
    assert plan.steps[0].params == {"text": "hi"}
    assert plan.steps[0].dependsOn == []


def test_step_without_params_is_its_own_params():
    plan = parse_plan(_plan({"id": "a", "tool": "echo", "text": "hi"}))
    assert plan.steps[0].params["text"] == "hi"


@pytest.mark.parametrize("data, kind", [
    ([], "InvalidPlan"),
    ({"schema": PLAN_SCHEMA, "workflow": "w"}, "InvalidPlan"),
    ({"schema": "pi.plan.v0", "workflow": "w", "steps": []}, "UnsupportedSchema"),
    (_plan({"id": "a", "tool": "echo"}, {"id": "a", "tool": "echo"}), "InvalidPlan"),
])
def test_parse_plan_errors(data, kind):
    with pytest.raises(PlanError) as info:
        parse_plan(data)
    assert info.value.kind == kind


def test_load_plan_bad_json(tmp_path):
    path = tmp_path / "plan.json"
    path.write_text("{nope", encoding="utf-8")
    with pytest.raises(PlanError) as info:
        load_plan(str(path))
    assert info.value.kind == "InvalidPlan"


def test_safe_id():
    assert safe_id("a/b c.d") == "a_b_c_d"
    assert safe_id("ok-id_1") == "ok-id_1"


# ── Running ───────────────────────────────────────────────────────────────────

def test_run_writes_artifacts(runner):
    plan = parse_plan(_plan(
        {"id": "b", "tool": "echo", "params": {"text": "two"}, "dependsOn": ["a"]},
        {"id": "a", "tool": "sleep_ms", "params": {"ms": 5}},
    ))
    run_id = runner.run(plan)
    assert run_id.startswith("run_")
    assert run_id.endswith("_demo")

    run_path = os.path.join(runner.out_dir, run_id)
    assert _read(os.path.join(run_path, "plan.json"))["workflow"] == "demo"
    run = _read(os.path.join(run_path, "run.json"))
    assert run["schema"] == "pi.run.v1"
    assert run["runId"] == run_id

    a = _read(os.path.join(run_path, "steps", "a.json"))
    b = _read(os.path.join(run_path, "steps", "b.json"))
    assert a["ok"] and b["ok"]
    assert b["output"] == {"text": "two"}
    assert b["dependsOn"] == ["a"]
    assert a["finishedAtMs"] < b["startedAtMs"]
    assert runner.sleeps == [0.005]


def test_run_orders_ties_by_id(runner):
    plan = parse_plan(_plan(
        {"id": "z", "tool": "echo", "params": {"text": "z"}},
        {"id": "m", "tool": "echo", "params": {"text": "m"}},
    ))
    run_path = os.path.join(runner.out_dir, runner.run(plan))
    m = _read(os.path.join(run_path, "steps", "m.json"))
    z = _read(os.path.join(run_path, "steps", "z.json"))
    assert m["startedAtMs"] < z["startedAtMs"]


def test_run_keeps_raw_plan_json(runner):
    raw = _plan({"id": "a", "tool": "echo", "params": {"text": "x"}, "note": "extra"})
    run_id = runner.run(parse_plan(raw), raw)
    assert _read(os.path.join(runner.out_dir, run_id, "plan.json")) == raw


def test_failed_step_writes_artifact_and_raises(runner):
    plan = parse_plan(_plan({"id": "bad", "tool": "echo", "params": {"text": 5}}))
    with pytest.raises(PlanError) as info:
        runner.run(plan)
    assert info.value.kind == "InvalidParams"

    (run_id,) = os.listdir(runner.out_dir)
    artifact = _read(os.path.join(runner.out_dir, run_id, "steps", "bad.json"))
    assert artifact["ok"] is False
    assert artifact["err"] == "InvalidParams"
    assert not os.path.exists(os.path.join(runner.out_dir, run_id, "run.json"))


@pytest.mark.parametrize("step, kind", [
    ({"id": "a", "tool": "nope", "params": {}}, "UnknownTool"),
    ({"id": "a", "tool": "sleep_ms", "params": {"ms": -1}}, "InvalidParams"),
    ({"id": "a", "tool": "sleep_ms", "params": {"ms": 60_001}}, "InvalidParams"),
    ({"id": "a", "tool": "sleep_ms", "params": {"ms": True}}, "InvalidParams"),
])
def test_step_errors(runner, step, kind):
    with pytest.raises(PlanError) as info:
        runner.run(parse_plan(_plan(step)))
    assert info.value.kind == kind


def test_unsatisfiable_dependencies(runner):
    plan = parse_plan(_plan({"id": "a", "tool": "echo", "params": {"text": "x"}, "dependsOn": ["ghost"]}))
    with pytest.raises(PlanError) as info:
        runner.run(plan)
    assert info.value.kind == "NoRunnableSteps"


# ── Verification ──────────────────────────────────────────────────────────────

def test_verify_successful_run(runner):
    run_id = runner.run(parse_plan(_plan({"id": "a", "tool": "echo", "params": {"text": "x"}})))
    verify_run(runner.out_dir, run_id)


def test_verify_missing_run(tmp_path):
    with pytest.raises(FileNotFoundError):
        verify_run(str(tmp_path), "run_1_nope")


def test_verify_failed_step(runner):
    run_id = runner.run(parse_plan(_plan({"id": "a", "tool": "echo", "params": {"text": "x"}})))
    step_path = os.path.join(runner.out_dir, run_id, "steps", "a.json")
    artifact = _read(step_path)
    artifact["ok"] = False
    with open(step_path, "w", encoding="utf-8") as f:
        json.dump(artifact, f)
    with pytest.raises(PlanError) as info:
        verify_run(runner.out_dir, run_id)
    assert info.value.kind == "StepFailed"


def test_verify_run_id_mismatch(runner):
    run_id = runner.run(parse_plan(_plan({"id": "a", "tool": "echo", "params": {"text": "x"}})))
    step_path = os.path.join(runner.out_dir, run_id, "steps", "a.json")
    artifact = _read(step_path)
    artifact["runId"] = "run_other"
    with open(step_path, "w", encoding="utf-8") as f:
        json.dump(artifact, f)
    with pytest.raises(PlanError) as info:
        verify_run(runner.out_dir, run_id)
    assert info.value.kind == "RunIdMismatch"


def test_verify_invalid_artifact(runner):
    run_id = runner.run(parse_plan(_plan({"id": "a", "tool": "echo", "params": {"text": "x"}})))
    with open(os.path.join(runner.out_dir, run_id, "steps", "a.json"), "w", encoding="utf-8") as f:
        json.dump({"schema": "pi.step.v1"}, f)
    with pytest.raises(PlanError) as info:
        verify_run(runner.out_dir, run_id)
    assert info.value.kind == "InvalidStepArtifact"
