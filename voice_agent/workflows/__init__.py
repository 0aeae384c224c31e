"""Declarative conversation workflows and the stage machine that walks them."""

from .loader import load_workflow_jsonl, load_workflows_jsonl, save_workflow_jsonl
from .real_estate import REAL_ESTATE_PROMPT, STAGE_TRANSITIONS, WORKFLOW_DEF
from .schema import StageDef, StageWorkflowDef
from .stage_machine import next_stage

__all__ = [
    "REAL_ESTATE_PROMPT",
    "STAGE_TRANSITIONS",
    "WORKFLOW_DEF",
    "StageDef",
    "StageWorkflowDef",
    "load_workflow_jsonl",
    "load_workflows_jsonl",
    "next_stage",
    "save_workflow_jsonl",
]
