import logging
from typing import Any, Dict, Optional
from gmail_mcp.core import config as app_config
from gmail_mcp.core.tool_utils import parse_params
from .models import StartUIParams
from .ui_server import MailboxUIServer

logger = logging.getLogger(__name__)


def start_ui(session, port: Optional[int] = None, query: str = "is:unread", max: int = 25) -> Dict[str, Any]:
    """Start a local web UI for browsing and triaging emails. Returns its URL."""
    params = parse_params(StartUIParams, port=port, query=query, max=max)
    if session.ui_server is not None and session.ui_server.running:
        return {"message": f"UI already running at {session.ui_server.url}", "url": session.ui_server.url}

    server = MailboxUIServer(
        port=params.port or app_config.UI_PORT,
        query=params.query or "is:unread",
        max_results=params.max,
    )
    url = server.start()
    session.ui_server = server
    return {"message": f"UI running at {url}", "url": url}


def stop_ui(session) -> Dict[str, Any]:
    server = session.ui_server
    if server is None or not server.running:
        return {"message": "UI is not running"}
    server.stop()
    session.ui_server = None
    return {"message": "UI stopped"}


TOOLS = [start_ui, stop_ui]
