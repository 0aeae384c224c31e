"""Pydantic models for declarative conversation-stage workflows.

A workflow is a set of stages, each with the instruction appended to the
system prompt while the conversation is in it and the stages it may move
to next.  Score thresholds for the heuristic transitions live on the
workflow so a deployment can tune them without code changes.
"""

from __future__ import annotations

from pydantic import BaseModel, model_validator


class StageDef(BaseModel):
    """One stage in a conversation workflow."""

    id: str
    instructions: str = ""                 # Appended under "## Stage Instructions"
    transitions: list[str] = []            # Allowed next stages, in preference order


class StageWorkflowDef(BaseModel):
    """A complete stage workflow definition."""

    id: str
    initial_stage: str = ""
    system_prompt: str = ""
    qualification_score_threshold: int = 50
    next_steps_score_threshold: int = 70
    states: dict[str, StageDef] = {}

    @model_validator(mode="after")
    def _check_targets(self) -> "StageWorkflowDef":
        if self.initial_stage and self.initial_stage not in self.states:
            raise ValueError(f"initial_stage {self.initial_stage!r} is not a defined stage")
        for stage in self.states.values():
            unknown = [t for t in stage.transitions if t not in self.states]
            if unknown:
                raise ValueError(f"stage {stage.id!r} transitions to undefined stage(s) {unknown}")
        return self

    def transitions_from(self, stage_id: str) -> list[str]:
        state = self.states.get(stage_id)
        return list(state.transitions) if state else []

    def instructions_for(self, stage_id: str) -> str:
        state = self.states.get(stage_id)
        return state.instructions if state else ""
