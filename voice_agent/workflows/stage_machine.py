"""Conversation stage transitions.

Heuristics fire first (they depend on what the lead has told us); otherwise
the stage advances only when the workflow offers exactly one successor.
"""

from __future__ import annotations

from voice_agent.workflows.real_estate import WORKFLOW_DEF
from voice_agent.workflows.schema import StageWorkflowDef


def next_stage(
    current: str,
    *,
    qualification_score: int,
    has_property_type: bool,
    workflow: StageWorkflowDef = WORKFLOW_DEF,
) -> str:
    """Return the stage the conversation should be in after a completed turn."""
    allowed = workflow.transitions_from(current)

    if current == "needs_discovery" and has_property_type and "qualification" in allowed:
        return "qualification"
    if (
        current == "qualification"
        and qualification_score >= workflow.qualification_score_threshold
        and "property_discussion" in allowed
    ):
        return "property_discussion"
    if (
        current == "property_discussion"
        and qualification_score >= workflow.next_steps_score_threshold
        and "next_steps" in allowed
    ):
        return "next_steps"

    if len(allowed) == 1:
        return allowed[0]
    return current
