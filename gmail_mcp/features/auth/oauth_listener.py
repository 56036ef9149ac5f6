import logging
import threading
from typing import Any, Callable, Dict, Optional
from urllib.parse import parse_qs
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server
from google_auth_oauthlib.flow import Flow
from gmail_mcp.core import config as app_config
from gmail_mcp.core_api import gmail_api_service
from gmail_mcp.core_api.exceptions import GmailMcpError, OAuthFlowPendingError

logger = logging.getLogger(__name__)

SUCCESS_PAGE = b"<p>Authorization complete. You can close this window.</p>"


class _LoggingRequestHandler(WSGIRequestHandler):
    def log_message(self, format, *args):
        logger.debug("oauth listener: " + format % args)


class OAuthRedirectListener:
    """
    One-shot HTTP listener on 127.0.0.1 that receives the OAuth redirect,
    exchanges the code for a token and saves it. Runs in a daemon thread.
    """

    def __init__(
        self,
        client_config: Dict[str, Any],
        port: int = app_config.OAUTH_REDIRECT_PORT,
        host: str = app_config.OAUTH_REDIRECT_HOST,
        on_complete: Optional[Callable[[], None]] = None,
    ):
        self.host = host
        self.port = port
        self.redirect_uri = f"http://{host}:{port}{app_config.OAUTH_CALLBACK_PATH}"
        self.on_complete = on_complete
        self.flow = Flow.from_client_config(
            client_config, scopes=app_config.SCOPES, redirect_uri=self.redirect_uri
        )
        self.error: Optional[str] = None
        self.completed = False
        self._server: Optional[WSGIServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._server is not None

    def authorization_url(self) -> str:
        url, _state = self.flow.authorization_url(access_type="offline", prompt="consent")
        return url

    def start(self) -> str:
        """Binds the listener and returns the consent URL to open in a browser."""
        if self.running:
            raise OAuthFlowPendingError("OAuth flow already in progress. Complete it in your browser.")
        try:
            self._server = make_server(
                self.host, self.port, self.wsgi_app, handler_class=_LoggingRequestHandler
            )
        except OSError as e:
            raise GmailMcpError(
                f"Could not listen on {self.host}:{self.port} for the OAuth redirect: {e}",
                original_exception=e,
            )
        self._thread = threading.Thread(
            target=self._server.serve_forever, name="oauth-redirect-listener", daemon=True
        )
        self._thread.start()
        logger.info(f"Listening on {self.redirect_uri} for the OAuth redirect.")
        return self.authorization_url()

    def stop(self) -> None:
        server, self._server = self._server, None
        if server is None:
            return
        server.shutdown()
        server.server_close()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)
        self._thread = None
        logger.info("OAuth redirect listener stopped.")

    def _finish(self) -> None:
        # shutdown() blocks until serve_forever returns, so it can't run on the serving thread.
        threading.Thread(target=self.stop, name="oauth-listener-stop", daemon=True).start()

    def handle_callback(self, path: str, query_string: str):
        """Returns (status line, body) for one request to the listener."""
        if path != app_config.OAUTH_CALLBACK_PATH:
            return "404 Not Found", b"Not Found"

        code = parse_qs(query_string).get("code", [None])[0]
        if not code:
            self.error = "Missing code"
            return "400 Bad Request", b"Missing code"

        try:
            self.flow.fetch_token(code=code)
            gmail_api_service.save_credentials(self.flow.credentials)
        except Exception as e:
            logger.error(f"OAuth token exchange failed: {e}", exc_info=True)
            self.error = str(e)
            return "500 Internal Server Error", b"Auth error"

        self.completed = True
        if self.on_complete is not None:
            self.on_complete()
        return "200 OK", SUCCESS_PAGE

    def wsgi_app(self, environ, start_response):
        status, body = self.handle_callback(environ.get("PATH_INFO", ""), environ.get("QUERY_STRING", ""))
        content_type = "text/html; charset=utf-8" if status.startswith("200") else "text/plain"
        start_response(status, [("Content-Type", content_type), ("Content-Length", str(len(body)))])
        if not status.startswith("404"):
            self._finish()
        return [body]
