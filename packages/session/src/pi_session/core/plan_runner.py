"""
Deterministic plan runner.

A plan (``pi.plan.v1``) is a DAG of tool steps. Steps run one at a time in
dependency order, ties broken by step id. Every run writes an artifact
tree under ``<out>/<runId>/``:

    plan.json            the plan as given
    steps/<step>.json    one ``pi.step.v1`` artifact per executed step
    run.json             ``pi.run.v1`` marker, written last
"""
from __future__ import annotations

import json
import logging
import os
import re
import time
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pi_session.errors import PlanError

logger = logging.getLogger(__name__)

PLAN_SCHEMA = "pi.plan.v1"
STEP_SCHEMA = "pi.step.v1"
RUN_SCHEMA = "pi.run.v1"

MAX_SLEEP_MS = 60_000

_UNSAFE = re.compile(r"[^A-Za-z0-9_-]")


class PlanStep(BaseModel):
    id: str
    tool: str
    params: Any = None
    dependsOn: list[str] = Field(default_factory=list)


class Plan(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    schema_id: str = Field(alias="schema")
    workflow: str
    steps: list[PlanStep]


def safe_id(value: str) -> str:
    """Replace anything outside [A-Za-z0-9_-] with an underscore."""
    return _UNSAFE.sub("_", value)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _write_json_file(path: str, value: Any) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(value, f, indent=2, ensure_ascii=False)
        f.write("\n")


def _read_json_file(path: str) -> Any:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def parse_plan(data: Any) -> Plan:
    if not isinstance(data, dict):
        raise PlanError("InvalidPlan", "plan must be a JSON object")
    raw_steps = data.get("steps")
    if isinstance(raw_steps, list):
        # A step without params is its own params object.
        data = {
            **data,
            "steps": [
                {**s, "params": dict(s)} if isinstance(s, dict) and "params" not in s else s
                for s in raw_steps
            ],
        }
    try:
        plan = Plan.model_validate(data)
    except ValidationError as exc:
        raise PlanError("InvalidPlan", str(exc)) from exc
    if plan.schema_id != PLAN_SCHEMA:
        raise PlanError("UnsupportedSchema", plan.schema_id)
    seen: set[str] = set()
    for step in plan.steps:
        if step.id in seen:
            raise PlanError("InvalidPlan", f"duplicate step id {step.id!r}")
        seen.add(step.id)
    return plan


def load_plan(path: str) -> tuple[Plan, dict[str, Any]]:
    """Read and validate a plan file. Returns the model and the raw JSON."""
    try:
        raw = _read_json_file(path)
    except json.JSONDecodeError as exc:
        raise PlanError("InvalidPlan", str(exc)) from exc
    return parse_plan(raw), raw


# ─── Tools ────────────────────────────────────────────────────────────────────

def _tool_echo(params: Any) -> Any:
    if not isinstance(params, dict) or not isinstance(params.get("text"), str):
        raise PlanError("InvalidParams", "echo requires a string 'text'")
    return params


def _tool_sleep_ms(params: Any, sleep: Callable[[float], None]) -> Any:
    if not isinstance(params, dict):
        raise PlanError("InvalidParams", "sleep_ms requires 'ms'")
    ms = params.get("ms")
    if isinstance(ms, bool) or not isinstance(ms, (int, float)):
        raise PlanError("InvalidParams", "sleep_ms requires a numeric 'ms'")
    ms = int(ms)
    if ms < 0 or ms > MAX_SLEEP_MS:
        raise PlanError("InvalidParams", f"ms out of range: {ms}")
    sleep(ms / 1000)
    return params


class Runner:
    def __init__(
        self,
        out_dir: str,
        clock: Callable[[], int] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.out_dir = out_dir
        self._clock = clock or _now_ms
        self._sleep = sleep

    def _run_tool(self, step: PlanStep) -> Any:
        if step.tool == "echo":
            return _tool_echo(step.params)
        if step.tool == "sleep_ms":
            return _tool_sleep_ms(step.params, self._sleep)
        raise PlanError("UnknownTool", step.tool)

    @staticmethod
    def _next_step(done: set[str], remaining: dict[str, PlanStep]) -> PlanStep | None:
        ready = [s for s in remaining.values() if all(d in done for d in s.dependsOn)]
        return min(ready, key=lambda s: s.id) if ready else None

    def run(self, plan: Plan, plan_json: Any | None = None) -> str:
        """Execute ``plan`` and return its run id."""
        run_id = f"run_{self._clock()}_{plan.workflow}"
        run_path = os.path.join(self.out_dir, run_id)
        steps_path = os.path.join(run_path, "steps")
        os.makedirs(steps_path, exist_ok=True)

        _write_json_file(
            os.path.join(run_path, "plan.json"),
            plan_json if plan_json is not None else plan.model_dump(by_alias=True),
        )

        done: set[str] = set()
        remaining = {s.id: s for s in plan.steps}

        while remaining:
            step = self._next_step(done, remaining)
            if step is None:
                raise PlanError("NoRunnableSteps", ", ".join(sorted(remaining)))

            step_file = os.path.join(steps_path, f"{safe_id(step.id)}.json")
            artifact: dict[str, Any] = {
                "schema": STEP_SCHEMA,
                "runId": run_id,
                "stepId": step.id,
                "tool": step.tool,
                "dependsOn": step.dependsOn,
                "startedAtMs": self._clock(),
            }
            try:
                output = self._run_tool(step)
            except PlanError as exc:
                artifact.update(finishedAtMs=self._clock(), ok=False, err=exc.kind)
                _write_json_file(step_file, artifact)
                logger.info("Step %s failed: %s", step.id, exc)
                raise

            artifact.update(finishedAtMs=self._clock(), ok=True, output=output)
            _write_json_file(step_file, artifact)
            logger.debug("Step %s done", step.id)

            done.add(step.id)
            del remaining[step.id]

        _write_json_file(os.path.join(run_path, "run.json"), {
            "schema": RUN_SCHEMA,
            "runId": run_id,
            "workflow": plan.workflow,
            "createdAtMs": self._clock(),
        })
        return run_id


def verify_run(out_dir: str, run_id: str) -> None:
    """
    Check that every plan step of ``run_id`` has a successful artifact.

    Missing files raise FileNotFoundError; content problems raise PlanError.
    """
    run_path = os.path.join(out_dir, run_id)
    steps_dir = os.path.join(run_path, "steps")
    plan_data = _read_json_file(os.path.join(run_path, "plan.json"))
    if not os.path.exists(os.path.join(run_path, "run.json")):
        raise FileNotFoundError(os.path.join(run_path, "run.json"))
    if not os.path.isdir(steps_dir):
        raise FileNotFoundError(steps_dir)

    steps = plan_data.get("steps") if isinstance(plan_data, dict) else None
    if not isinstance(steps, list):
        raise PlanError("InvalidPlan", "plan has no steps array")

    for step in steps:
        if not isinstance(step, dict) or not isinstance(step.get("id"), str):
            raise PlanError("InvalidPlan", "step without id")
        artifact = _read_json_file(os.path.join(steps_dir, f"{safe_id(step['id'])}.json"))
        if not isinstance(artifact, dict) or not isinstance(artifact.get("ok"), bool):
            raise PlanError("InvalidStepArtifact", step["id"])
        if not artifact["ok"]:
            raise PlanError("StepFailed", step["id"])
        if not isinstance(artifact.get("runId"), str):
            raise PlanError("InvalidStepArtifact", step["id"])
        if artifact["runId"] != run_id:
            raise PlanError("RunIdMismatch", step["id"])
