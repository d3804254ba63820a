import json
import logging

from services.errors import DecodeError, ToolCallMismatch, ToolCallMissing

logger = logging.getLogger(__name__)


def _first_tool_call(response) -> dict:
    if not isinstance(response, dict):
        raise DecodeError(f"Expected a JSON object response, got {type(response).__name__}")
    choices = response.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        raise ToolCallMissing("Response has no choices")
    message = choices[0].get("message") or {}
    tool_calls = message.get("tool_calls") if isinstance(message, dict) else None
    if not tool_calls or not isinstance(tool_calls[0], dict):
        raise ToolCallMissing("Response carried no tool call")
    return tool_calls[0]


def extract_tool_arguments(response: dict, function_name: str) -> dict:
    """Return the parsed arguments of the first tool call in a chat-completions response.

    Providers send arguments either as a JSON-encoded string or already
    decoded; both are accepted. Anything that does not end up as a JSON
    object raises DecodeError.
    """
    tool_call = _first_tool_call(response)
    function = tool_call.get("function") or {}
    name = function.get("name")
    if name != function_name:
        raise ToolCallMismatch(function_name, name)

    arguments = function.get("arguments")
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments)
        except json.JSONDecodeError as e:
            logger.error(f"Tool '{function_name}' arguments are not valid JSON ({len(function.get('arguments'))} chars): {e}")
            raise DecodeError(f"Tool arguments are not valid JSON: {e}") from e

    if not isinstance(arguments, dict):
        raise DecodeError(f"Tool arguments must be a JSON object, got {type(arguments).__name__}")
    return arguments
