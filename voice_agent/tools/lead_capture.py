"""Lead-capture tools: record what the caller tells us, schedule callbacks, end calls.

Arguments come straight from the LLM and are not trusted.  Each field is
validated on its own with a pydantic TypeAdapter, so one bad value (say
``bedrooms: "a few"``) is dropped with a warning while the rest of the call
still applies.  Empty values are skipped, never written over known data.
"""

from __future__ import annotations

import logging
from typing import Any, Literal, Union

from pydantic import ConfigDict, TypeAdapter, ValidationError

from voice_agent.models.lead import BudgetRange, PropertyType
from voice_agent.models.session import ConversationStage, SessionState
from voice_agent.tools.base import BaseTool

log = logging.getLogger("voice_agent.tools.lead_capture")

EndReason = Literal["qualified_lead", "not_interested", "callback_scheduled", "wrong_number", "other"]

_str = TypeAdapter(str)
_FIELD_ADAPTERS: dict[str, TypeAdapter] = {
    "name": _str,
    "email": _str,
    # LLMs sometimes send phone numbers as bare integers
    "phone": TypeAdapter(str, config=ConfigDict(coerce_numbers_to_str=True)),
    "property_type": TypeAdapter(PropertyType),
    "bedrooms": TypeAdapter(int),
    "bathrooms": TypeAdapter(float),
    "budget_min": TypeAdapter(float),
    "budget_max": TypeAdapter(float),
    "locations": TypeAdapter(list[str]),
    "features": TypeAdapter(list[str]),
    "must_haves": TypeAdapter(list[str]),
    "deal_breakers": TypeAdapter(list[str]),
    "timeline": _str,
    "notes": TypeAdapter(Union[str, list[str]]),
}


def validate_arguments(
    tool_name: str, arguments: dict[str, Any], adapters: dict[str, TypeAdapter]
) -> dict[str, Any]:
    """Validate each argument independently; drop unknown, invalid and empty ones."""
    clean: dict[str, Any] = {}
    for key, raw in arguments.items():
        adapter = adapters.get(key)
        if adapter is None:
            log.warning("%s: unknown argument %r dropped", tool_name, key)
            continue
        if raw is None or raw == "" or raw == []:
            continue
        try:
            value = adapter.validate_python(raw)
        except ValidationError as exc:
            log.warning("%s: invalid %s=%.40r dropped (%s)",
                        tool_name, key, raw, exc.errors()[0]["msg"])
            continue
        if isinstance(value, str):
            value = value.strip()
        if not value:
            continue
        clean[key] = value
    return clean


class CaptureLeadInfoTool(BaseTool):
    """Record lead details as the caller shares them."""

    @property
    def name(self) -> str:
        return "capture_lead_info"

    @property
    def description(self) -> str:
        return (
            "Capture or update information about the lead. Call this whenever "
            "the caller shares their name, contact details, property "
            "preferences, budget or timeline."
        )

    @property
    def parameters_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "Lead's full name"},
                "email": {"type": "string", "description": "Lead's email address"},
                "phone": {"type": "string", "description": "Lead's phone number"},
                "property_type": {
                    "type": "string",
                    "enum": ["house", "condo", "apartment", "townhouse", "land", "commercial"],
                    "description": "Type of property they are interested in",
                },
                "bedrooms": {"type": "number", "description": "Number of bedrooms desired"},
                "bathrooms": {"type": "number", "description": "Number of bathrooms desired"},
                "budget_min": {"type": "number", "description": "Minimum budget"},
                "budget_max": {"type": "number", "description": "Maximum budget"},
                "locations": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Preferred neighborhoods or areas",
                },
                "features": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Desired features, e.g. garden, parking, pool",
                },
                "must_haves": {"type": "array", "items": {"type": "string"}},
                "deal_breakers": {"type": "array", "items": {"type": "string"}},
                "timeline": {
                    "type": "string",
                    "description": "When they want to buy or move (e.g. 'within 3 months')",
                },
                "notes": {"type": "string", "description": "Any other relevant details"},
            },
        }

    def execute(self, state: SessionState, arguments: dict[str, Any]) -> str:
        updates = validate_arguments(self.name, arguments, _FIELD_ADAPTERS)
        lead = state.lead_info
        prefs = lead.property_preferences

        for key in ("name", "email", "phone", "timeline"):
            if key in updates:
                setattr(lead, key, updates[key])

        if "property_type" in updates:
            prefs.type = updates["property_type"]
        if "bedrooms" in updates:
            prefs.bedrooms = updates["bedrooms"]
        if "bathrooms" in updates:
            prefs.bathrooms = updates["bathrooms"]
        for key in ("locations", "features", "must_haves", "deal_breakers"):
            if key in updates:
                setattr(prefs, key, updates[key])

        if "budget_min" in updates or "budget_max" in updates:
            lead.budget = lead.budget or BudgetRange()
            if "budget_min" in updates:
                lead.budget.min = updates["budget_min"]
            if "budget_max" in updates:
                lead.budget.max = updates["budget_max"]

        notes = updates.get("notes")
        if isinstance(notes, str):
            lead.notes.append(notes)
        elif notes:
            lead.notes.extend(n for n in notes if n)

        lead.touch()
        if not updates:
            return "No lead fields updated."
        return f"Lead updated: {', '.join(sorted(updates))} (score {lead.qualification_score}/100)"


class ScheduleCallbackTool(BaseTool):
    """Note a callback request and move the call toward closing."""

    _adapters = {
        "preferred_date": _str,
        "preferred_time": _str,
        "reason": _str,
    }

    @property
    def name(self) -> str:
        return "schedule_callback"

    @property
    def description(self) -> str:
        return "Schedule a callback with the lead at their preferred time."

    @property
    def parameters_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "preferred_date": {"type": "string", "description": "Preferred date for callback"},
                "preferred_time": {"type": "string", "description": "Preferred time for callback"},
                "reason": {"type": "string", "description": "Reason for the callback"},
            },
            "required": ["reason"],
        }

    def execute(self, state: SessionState, arguments: dict[str, Any]) -> str:
        args = validate_arguments(self.name, arguments, self._adapters)
        reason = args.get("reason", "unspecified")
        when = f"{args.get('preferred_date', 'TBD')} {args.get('preferred_time', '')}".strip()
        note = f"Callback requested: {reason} - {when}"
        state.lead_info.notes.append(note)
        state.lead_info.touch()
        state.current_stage = ConversationStage.CLOSING
        return note


class EndConversationTool(BaseTool):
    """Close out the conversation; later transcripts are ignored."""

    _adapters = {
        "reason": TypeAdapter(EndReason),
        "notes": _str,
    }

    @property
    def name(self) -> str:
        return "end_conversation"

    @property
    def description(self) -> str:
        return "End the conversation when appropriate."

    @property
    def parameters_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "reason": {
                    "type": "string",
                    "enum": ["qualified_lead", "not_interested", "callback_scheduled",
                             "wrong_number", "other"],
                    "description": "Reason for ending the conversation",
                },
                "notes": {"type": "string", "description": "Summary notes about the conversation"},
            },
            "required": ["reason"],
        }

    def execute(self, state: SessionState, arguments: dict[str, Any]) -> str:
        args = validate_arguments(self.name, arguments, self._adapters)
        reason = args.get("reason", "other")
        if "notes" in args:
            state.lead_info.notes.append(args["notes"])
        state.lead_info.notes.append(f"Conversation ended: {reason}")
        state.lead_info.touch()
        state.is_active = False
        return f"Conversation ended: {reason}"


LEAD_CAPTURE_TOOLS: dict[str, BaseTool] = {
    tool.name: tool
    for tool in (CaptureLeadInfoTool(), ScheduleCallbackTool(), EndConversationTool())
}
