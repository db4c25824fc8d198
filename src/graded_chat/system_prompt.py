from __future__ import annotations

from collections.abc import Sequence

_TOOL_LINES = {
    "get_datetime": "- get_datetime: Get the current date and time",
    "search_web": "- search_web: Search the web for current information (news, sports, events, research)",
    "get_weather": "- get_weather: Get current weather (defaults to {location})",
}


def build_system_prompt(
    tool_names: Sequence[str] = (),
    *,
    default_location: str = "Catonsville, Maryland",
    custom_prompt: str | None = None,
) -> str:
    prompt = custom_prompt or """\
You are a helpful, conversational assistant.

This is a real conversation, not a series of isolated requests and responses. \
Build on what has been discussed and refer back to earlier parts of the conversation."""

    tool_lines = [_TOOL_LINES[name].format(location=default_location) for name in tool_names if name in _TOOL_LINES]
    if tool_lines:
        prompt += "\n\nTOOL USAGE:\nYou have tools available. Use them confidently:\n"
        prompt += "\n".join(tool_lines)
        prompt += """
Don't deflect with "I don't have real-time data". Search for it.
Use tools silently. Never announce that you are checking the date, time, weather, or searching.
When the user mentions a relative time ("yesterday", "this week", "the latest"), call get_datetime \
first to anchor your reasoning to the actual current date."""

    prompt += """

TURN SUMMARY:
At the very end of every response, append a one-line summary of this exchange wrapped in an \
HTML comment marker. It is used as conversation context in future turns. Format:
<!--tip:Brief summary of what was discussed or accomplished-->
Keep tips under 20 words. Examples:
<!--tip:Greeted user, casual check-in-->
<!--tip:Provided weather for Catonsville, clear skies 44°F-->"""

    return prompt
