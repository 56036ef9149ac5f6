import logging
from pathlib import Path
from typing import Any, Optional
from gmail_mcp.core import config as app_config
from gmail_mcp.core_api import gmail_api_service

logger = logging.getLogger(__name__)


class MailSession:
    """
    Per-process state shared by the MCP tools: the lazily built Gmail client and
    the handles of the background OAuth listener and web UI server.
    """

    def __init__(self, service: Any = None):
        self._service = service
        self.oauth_listener = None
        self.ui_server = None

    @property
    def service(self) -> Any:
        """The Gmail client, built from the stored token on first use.

        Raises NotAuthorizedError when no usable token is stored.
        """
        if self._service is None:
            self._service = gmail_api_service.get_g_service_client_from_token(
                str(app_config.TOKEN_FILE), app_config.SCOPES
            )
            logger.info("Gmail service client created from stored token.")
        return self._service

    def reset(self) -> None:
        """Drops the cached client, e.g. after a new token was saved."""
        self._service = None

    def has_token(self) -> bool:
        return Path(app_config.TOKEN_FILE).exists()

    def shutdown(self) -> None:
        for name in ("oauth_listener", "ui_server"):
            handle: Optional[Any] = getattr(self, name)
            if handle is not None and handle.running:
                logger.info(f"Stopping {name} on shutdown.")
                handle.stop()
            setattr(self, name, None)
