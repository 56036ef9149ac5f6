import logging
from typing import Any, Dict, Optional
from gmail_mcp.core import config as app_config
from gmail_mcp.core.tool_utils import parse_params
from gmail_mcp.core_api import gmail_api_service
from gmail_mcp.core_api.exceptions import GmailMcpError, OAuthFlowPendingError
from .models import StartOAuthParams
from .oauth_listener import OAuthRedirectListener

logger = logging.getLogger(__name__)


def start_oauth(session, port: Optional[int] = None) -> Dict[str, Any]:
    """Start the Gmail OAuth flow: returns a consent URL and waits for the browser redirect."""
    params = parse_params(StartOAuthParams, port=port)
    if session.oauth_listener is not None and session.oauth_listener.running:
        raise OAuthFlowPendingError("OAuth flow already in progress. Complete it in your browser.")

    listener = OAuthRedirectListener(
        gmail_api_service.load_client_config(),
        port=params.port or app_config.OAUTH_REDIRECT_PORT,
        on_complete=session.reset,
    )
    auth_url = listener.start()
    session.oauth_listener = listener
    return {
        "message": "Open this URL to authorize Gmail access:",
        "auth_url": auth_url,
        "listening_on": listener.redirect_uri,
    }


def auth_status(session) -> Dict[str, Any]:
    """Report whether a token is stored and which account it belongs to."""
    if not session.has_token():
        return {"authorized": False, "message": "Not authorized"}
    try:
        profile = gmail_api_service.get_profile(session.service)
    except GmailMcpError as e:
        logger.warning(f"Token present but profile lookup failed: {e.message}")
        return {
            "authorized": True,
            "message": "Authorized, but failed to fetch profile",
            "error": e.message,
        }
    email = profile.get("emailAddress")
    return {"authorized": True, "email": email, "message": f"Authorized as {email}"}


TOOLS = [start_oauth, auth_status]
