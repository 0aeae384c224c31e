"""Real-estate lead qualification workflow.

Eight stages from greeting to follow-up.  ``STAGE_TRANSITIONS`` is the
declarative table the stage machine consults; per-stage instructions are
appended to the system prompt while the conversation is in that stage.
"""

from __future__ import annotations

from voice_agent.workflows.schema import StageDef, StageWorkflowDef

REAL_ESTATE_PROMPT = """You are {{agent_name}}, a friendly and knowledgeable real estate agent calling on behalf of {{agency_name}}.
You are speaking with a potential client on the phone. Your goal is to understand what they are looking for, qualify them as a lead, and agree on a concrete next step.

Guidelines:
- Keep every reply short: one to three sentences, then let the caller talk.
- Ask one question at a time.
- When the caller shares their name, contact details, property type, bedrooms, budget, preferred areas, timeline or must-have features, call capture_lead_info with exactly what they said.
- If the caller asks to be called back, call schedule_callback.
- When the conversation is over, call end_conversation with the reason.
- Never invent listings, prices or availability.

FORMATTING: Your responses will be read aloud by text-to-speech. Write all numbers as spoken words (say "five hundred thousand dollars" not "$500,000", "three bedrooms" not "3 br"). Do not use markdown, lists or emoji.

CRITICAL: NEVER say "null", "none", "not set" or "N/A" to the caller. If you don't know something yet, ask for it or leave it out."""

_STAGES = [
    StageDef(
        id="greeting",
        instructions="Focus on building rapport and confirming interest in real estate discussion.",
        transitions=["introduction"],
    ),
    StageDef(
        id="introduction",
        instructions="Focus on building rapport and confirming interest in real estate discussion.",
        transitions=["needs_discovery"],
    ),
    StageDef(
        id="needs_discovery",
        instructions="Ask open-ended questions about their ideal property and living situation.",
        transitions=["qualification", "property_discussion"],
    ),
    StageDef(
        id="qualification",
        instructions="Gather specific details: budget, timeline, must-haves, deal-breakers.",
        transitions=["property_discussion", "next_steps"],
    ),
    StageDef(
        id="property_discussion",
        instructions="Discuss specific property types/areas that match their criteria.",
        transitions=["next_steps", "closing"],
    ),
    StageDef(
        id="next_steps",
        instructions="Propose concrete next steps: property viewings, agent callback, listings email.",
        transitions=["closing", "follow_up"],
    ),
    StageDef(
        id="closing",
        instructions="Summarize the conversation and confirm any scheduled follow-ups.",
        transitions=["follow_up"],
    ),
    StageDef(
        id="follow_up",
        instructions="Check on anything that changed since the last call and pick up where you left off.",
        transitions=["greeting", "needs_discovery"],
    ),
]

WORKFLOW_DEF = StageWorkflowDef(
    id="real_estate_lead",
    initial_stage="greeting",
    system_prompt=REAL_ESTATE_PROMPT,
    qualification_score_threshold=50,
    next_steps_score_threshold=70,
    states={s.id: s for s in _STAGES},
)

STAGE_TRANSITIONS: dict[str, list[str]] = {
    stage_id: list(stage.transitions) for stage_id, stage in WORKFLOW_DEF.states.items()
}
