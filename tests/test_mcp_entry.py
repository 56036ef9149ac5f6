import asyncio
import inspect
import pytest
from unittest.mock import MagicMock, patch
from mcp.server.fastmcp.exceptions import ToolError
from mcp.shared.exceptions import McpError
from mcp.types import INTERNAL_ERROR, INVALID_PARAMS, INVALID_REQUEST, ErrorData
from pydantic import BaseModel, ValidationError

from gmail_mcp import mcp_entry
from gmail_mcp.core_api.exceptions import (
    GmailApiError,
    InvalidParameterError,
    NotAuthorizedError,
    RuleNotFoundError,
)


class _Strict(BaseModel):
    count: int


# --- Error mapping ---
@pytest.mark.parametrize(
    "error, code",
    [
        (InvalidParameterError("query is required"), INVALID_PARAMS),
        (RuleNotFoundError("Rule index 5 is out of range. Available rules: 0-2"), INVALID_REQUEST),
        (NotAuthorizedError("Not authorized. Run start_oauth to authorize this server."), INVALID_REQUEST),
        (GmailApiError("API error trying to list labels: 500 Backend Error"), INTERNAL_ERROR),
    ],
)
def test_to_mcp_error_maps_app_errors(error, code):
    mapped = mcp_entry.to_mcp_error(error)

    assert mapped.error.code == code
    assert mapped.error.message == f"{mcp_entry.ERROR_CATEGORIES[code]}: {error.message}"


def test_to_mcp_error_validation_error_is_invalid_params():
    with pytest.raises(ValidationError) as exc_info:
        _Strict(count="many")

    assert mcp_entry.to_mcp_error(exc_info.value).error.code == INVALID_PARAMS


def test_to_mcp_error_unexpected_error():
    mapped = mcp_entry.to_mcp_error(KeyError("id"))

    assert mapped.error.code == INTERNAL_ERROR
    assert mapped.error.message.startswith("INTERNAL_ERROR: Internal error:")


def test_to_mcp_error_passes_mcp_errors_through():
    original = McpError(ErrorData(code=INVALID_REQUEST, message="nope"))

    assert mcp_entry.to_mcp_error(original) is original


# --- Tool binding ---
def _sample_tool(session, query: str, max: int = 10):
    """Search things."""
    return {"session": session, "query": query, "max": max}


def test_bind_tool_hides_session_and_registers():
    # ARRANGE
    server = MagicMock()
    session = MagicMock()

    # ACT
    tool = mcp_entry.bind_tool(server, session, _sample_tool)

    # ASSERT
    assert list(inspect.signature(tool).parameters) == ["query", "max"]
    server.add_tool.assert_called_once_with(
        tool, name="_sample_tool", description="Search things.", structured_output=False
    )
    assert tool(query="is:unread") == {"session": session, "query": "is:unread", "max": 10}


def test_bind_tool_translates_errors():
    def failing_tool(session, id: str):
        raise RuleNotFoundError(f"Rule {id} not found")

    tool = mcp_entry.bind_tool(MagicMock(), MagicMock(), failing_tool)

    with pytest.raises(McpError) as exc_info:
        tool(id="3")

    assert exc_info.value.error.code == INVALID_REQUEST
    assert isinstance(exc_info.value.__cause__, RuleNotFoundError)


# --- Server ---
def test_create_server_registers_every_tool(session):
    # ACT
    server = mcp_entry.create_server(session)
    tools = asyncio.run(server.list_tools())

    # ASSERT
    expected = {fn.__name__ for feature in mcp_entry.FEATURE_TOOLS for fn in feature}
    assert {tool.name for tool in tools} == expected
    assert len(tools) == sum(len(feature) for feature in mcp_entry.FEATURE_TOOLS)
    by_name = {tool.name: tool for tool in tools}
    assert "session" not in by_name["list_unread"].inputSchema["properties"]
    assert "max" in by_name["list_unread"].inputSchema["properties"]
    assert by_name["search_emails"].inputSchema["required"] == ["query"]


def test_call_tool_error_reaches_client_as_tool_error(session):
    server = mcp_entry.create_server(session)

    with pytest.raises(ToolError, match="INVALID_REQUEST: Rule index 4 is out of range"):
        asyncio.run(server.call_tool("remove_auto_labeling_rule", {"rule_index": 4}))


@patch("gmail_mcp.mcp_entry.create_server")
def test_run_stdio_shuts_session_down(mock_create_server):
    session = MagicMock()
    mock_create_server.return_value.run.side_effect = KeyboardInterrupt()

    with pytest.raises(KeyboardInterrupt):
        mcp_entry.run_stdio(session)

    mock_create_server.return_value.run.assert_called_once_with("stdio")
    session.shutdown.assert_called_once()
