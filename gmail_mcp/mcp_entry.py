import functools
import inspect
import logging
from typing import Any, Callable, Optional
from mcp.server.fastmcp import FastMCP
from mcp.shared.exceptions import McpError
from mcp.types import INTERNAL_ERROR, INVALID_PARAMS, INVALID_REQUEST, ErrorData
from pydantic import ValidationError
from gmail_mcp.core.session import MailSession
from gmail_mcp.core_api.exceptions import GmailMcpError, InvalidParameterError, InvalidRequestError
from gmail_mcp.features.auth import tools as auth_tools
from gmail_mcp.features.draft_management import tools as draft_tools
from gmail_mcp.features.email_management import tools as email_tools
from gmail_mcp.features.label_management import tools as label_tools
from gmail_mcp.features.rule_management import tools as rule_tools
from gmail_mcp.features.web_ui import tools as ui_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "gmail-mcp"
SERVER_INSTRUCTIONS = (
    "Gmail tools: read, search, reply, draft, label, snooze and bulk-clean a mailbox. "
    "Call start_oauth first if auth_status reports not authorized."
)

FEATURE_TOOLS = (
    auth_tools.TOOLS,
    email_tools.TOOLS,
    draft_tools.TOOLS,
    label_tools.TOOLS,
    rule_tools.TOOLS,
    ui_tools.TOOLS,
)


# Clients only see the text of a failed tool call, so it carries the category.
ERROR_CATEGORIES = {
    INVALID_PARAMS: "INVALID_PARAMS",
    INVALID_REQUEST: "INVALID_REQUEST",
    INTERNAL_ERROR: "INTERNAL_ERROR",
}


def _mcp_error(code: int, message: str) -> McpError:
    return McpError(ErrorData(code=code, message=f"{ERROR_CATEGORIES[code]}: {message}"))


def to_mcp_error(error: Exception) -> McpError:
    """Maps an exception raised by a tool to an MCP error with the matching code."""
    if isinstance(error, McpError):
        return error
    if isinstance(error, InvalidParameterError):
        return _mcp_error(INVALID_PARAMS, error.message)
    if isinstance(error, ValidationError):
        return _mcp_error(INVALID_PARAMS, str(error))
    if isinstance(error, InvalidRequestError):
        return _mcp_error(INVALID_REQUEST, error.message)
    if isinstance(error, GmailMcpError):
        return _mcp_error(INTERNAL_ERROR, error.message)
    return _mcp_error(INTERNAL_ERROR, f"Internal error: {error}")


def bind_tool(server: FastMCP, session: MailSession, fn: Callable[..., Any]) -> Callable[..., Any]:
    """
    Registers `fn(session, **arguments)` as a tool. The session parameter is
    hidden from the advertised input schema.
    """
    signature = inspect.signature(fn)
    public_params = [p for name, p in signature.parameters.items() if name != "session"]

    @functools.wraps(fn)
    def tool(**arguments: Any) -> Any:
        logger.info(f"Tool call: {fn.__name__}")
        logger.debug(f"Tool arguments for {fn.__name__}: {arguments}")
        try:
            return fn(session, **arguments)
        except Exception as e:
            mcp_error = to_mcp_error(e)
            if mcp_error.error.code == INTERNAL_ERROR:
                logger.error(f"Tool {fn.__name__} failed: {e}", exc_info=True)
            else:
                logger.warning(f"Tool {fn.__name__} rejected: {mcp_error.error.message}")
            raise mcp_error from e

    tool.__signature__ = signature.replace(parameters=public_params)
    server.add_tool(tool, name=fn.__name__, description=inspect.getdoc(fn) or "", structured_output=False)
    return tool


def create_server(session: Optional[MailSession] = None) -> FastMCP:
    session = session or MailSession()
    server = FastMCP(SERVER_NAME, instructions=SERVER_INSTRUCTIONS)
    for tools in FEATURE_TOOLS:
        for fn in tools:
            bind_tool(server, session, fn)
    logger.debug(f"Registered {sum(len(tools) for tools in FEATURE_TOOLS)} tools.")
    return server


def run_stdio(session: Optional[MailSession] = None) -> None:
    """Serves the tools over stdio until the client disconnects."""
    session = session or MailSession()
    server = create_server(session)
    logger.info("Starting gmail-mcp server on stdio.")
    try:
        server.run("stdio")
    finally:
        session.shutdown()
        logger.info("gmail-mcp server stopped.")
