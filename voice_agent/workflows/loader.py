"""Load JSONL workflow definitions into StageWorkflowDef objects."""

from __future__ import annotations

import json
from pathlib import Path

from voice_agent.workflows.schema import StageDef, StageWorkflowDef


def load_workflow_jsonl(path: str | Path) -> StageWorkflowDef:
    """Load a single workflow from a JSONL file.

    The file holds one JSON object per line; the first non-empty line is
    the workflow.  Stages are nested inside the top-level ``states`` dict.
    """
    path = Path(path)
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line:
            continue
        return _parse_workflow(json.loads(line))

    raise ValueError(f"No workflow found in {path}")


def load_workflows_jsonl(path: str | Path) -> dict[str, StageWorkflowDef]:
    """Load every workflow in a JSONL file, keyed by workflow ID."""
    path = Path(path)
    workflows: dict[str, StageWorkflowDef] = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line:
            continue
        wf = _parse_workflow(json.loads(line))
        workflows[wf.id] = wf
    return workflows


def _parse_workflow(data: dict) -> StageWorkflowDef:
    states: dict[str, StageDef] = {}
    for stage_id, stage_data in data.get("states", {}).items():
        stage_data = dict(stage_data)
        stage_data.setdefault("id", stage_id)
        states[stage_id] = StageDef(**stage_data)
    return StageWorkflowDef(**{**data, "states": states})


def save_workflow_jsonl(workflow: StageWorkflowDef, path: str | Path) -> None:
    """Persist a workflow to a JSONL file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(workflow.model_dump()) + "\n", encoding="utf-8")
