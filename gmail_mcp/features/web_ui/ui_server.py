import json
import logging
import threading
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import parse_qs
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server
from gmail_mcp.core import config as app_config
from gmail_mcp.core_api import batch_api_service, message_utils
from gmail_mcp.core_api import gmail_api_service as gmail_api_helpers
from gmail_mcp.core_api.exceptions import GmailMcpError, InvalidParameterError, MessageNotFoundError

logger = logging.getLogger(__name__)

MAX_PORT_ATTEMPTS = 10

INDEX_PAGE = """<!doctype html>
<html>
<head>
<meta charset="utf-8">
<title>Gmail MCP UI</title>
<style>
body { font-family: sans-serif; margin: 20px; }
table { border-collapse: collapse; width: 100%; }
td, th { border-bottom: 1px solid #ddd; padding: 6px; text-align: left; }
tr.unread td { font-weight: bold; }
</style>
</head>
<body>
<h1>Gmail MCP UI</h1>
<input id="q" size="60" value="__QUERY__">
<button onclick="load()">Search</button>
<button onclick="act('/api/archive')">Archive</button>
<button onclick="act('/api/delete')">Trash</button>
<button onclick="markRead()">Mark as Read</button>
<table>
<thead><tr><th></th><th>From</th><th>Subject</th><th>Date</th></tr></thead>
<tbody id="rows"></tbody>
</table>
<script>
function selected() {
  return Array.from(document.querySelectorAll('input.pick:checked')).map(function (el) { return el.value; });
}
function post(path, payload) {
  return fetch(path, {method: 'POST', headers: {'Content-Type': 'application/json'}, body: JSON.stringify(payload)});
}
function load() {
  var q = document.getElementById('q').value;
  fetch('/api/list?q=' + encodeURIComponent(q)).then(function (r) { return r.json(); }).then(function (data) {
    var rows = document.getElementById('rows');
    rows.innerHTML = '';
    data.items.forEach(function (m) {
      var tr = document.createElement('tr');
      if (m.unread) { tr.className = 'unread'; }
      [m.from, m.subject, m.date].forEach(function (text, i) {
        var td = document.createElement('td');
        if (i === 0) {
          var box = document.createElement('input');
          box.type = 'checkbox'; box.className = 'pick'; box.value = m.id;
          var cell = document.createElement('td'); cell.appendChild(box); tr.appendChild(cell);
        }
        td.textContent = text; tr.appendChild(td);
      });
      rows.appendChild(tr);
    });
  });
}
function act(path) { post(path, {ids: selected()}).then(load); }
function markRead() { Promise.all(selected().map(function (id) { return post('/api/markRead', {id: id}); })).then(load); }
load();
</script>
</body>
</html>
"""


class _LoggingRequestHandler(WSGIRequestHandler):
    def log_message(self, format, *args):
        logger.debug("ui server: " + format % args)


def _default_service_factory() -> Any:
    return gmail_api_helpers.get_g_service_client_from_token(
        str(app_config.TOKEN_FILE), app_config.SCOPES
    )


class BadRequest(Exception):
    pass


class MailboxUIServer:
    """
    Small local web UI over the mailbox (list, read, archive, trash, mark read,
    reply). Serves from a daemon thread with its own Gmail client.
    """

    def __init__(
        self,
        port: int = app_config.UI_PORT,
        host: str = "127.0.0.1",
        query: str = "is:unread",
        max_results: int = 25,
        service_factory: Callable[[], Any] = _default_service_factory,
    ):
        self.host = host
        self.port = port
        self.query = query
        self.max_results = max_results
        self.service_factory = service_factory
        self.service: Any = None
        self._server: Optional[WSGIServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._server is not None

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}/"

    def start(self) -> str:
        """Builds the client, binds the first free port from `port` upward and serves. Returns the URL."""
        if self.service is None:
            self.service = self.service_factory()

        last_error: Optional[OSError] = None
        for port in range(self.port, self.port + MAX_PORT_ATTEMPTS):
            try:
                self._server = make_server(self.host, port, self.wsgi_app, handler_class=_LoggingRequestHandler)
            except OSError as e:
                logger.info(f"Port {port} unavailable for the UI ({e}); trying the next one.")
                last_error = e
                continue
            self.port = port
            break
        else:
            raise GmailMcpError(
                f"Could not find a free port for the UI starting at {self.port}",
                original_exception=last_error,
            )

        self._thread = threading.Thread(target=self._server.serve_forever, name="mailbox-ui", daemon=True)
        self._thread.start()
        logger.info(f"UI running at {self.url}")
        return self.url

    def stop(self) -> None:
        server, self._server = self._server, None
        if server is None:
            return
        server.shutdown()
        server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)
        self._thread = None
        logger.info("UI server stopped.")

    # --- Routes ---
    def _list(self, query_string: str) -> Dict[str, Any]:
        args = parse_qs(query_string)
        max_results = message_utils.clamp(args.get("max", [self.max_results])[0], 1, 100, self.max_results)
        query = args.get("q", [""])[0] or self.query
        response = gmail_api_helpers.list_messages(self.service, query_string=query, max_results=max_results)
        ids = [m["id"] for m in response.get("messages", [])]
        fetched = gmail_api_helpers.get_messages_individually(
            self.service, ids, email_format="metadata", metadata_headers=["From", "Subject", "Date"]
        )
        items = []
        for message_id in ids:
            message = fetched.succeeded.get(message_id)
            if message is None:
                continue
            item = message_utils.summarize_message(message)
            item["unread"] = "UNREAD" in message.get("labelIds", [])
            items.append(item)
        return {"items": items}

    def _message(self, message_id: str) -> Dict[str, Any]:
        message = gmail_api_helpers.get_message_details(self.service, message_id, email_format="full")
        headers = message_utils.extract_headers(message, ["From", "To", "Subject", "Date"])
        payload = message.get("payload")
        html = message_utils.extract_html(payload)
        return {
            "id": message.get("id"),
            "threadId": message.get("threadId"),
            "from": headers["From"],
            "to": headers["To"],
            "subject": headers["Subject"],
            "date": headers["Date"],
            "snippet": message.get("snippet", ""),
            "body": message_utils.extract_plain_text(payload),
            "htmlBody": html,
            "hasHtml": bool(html),
        }

    def _archive(self, body: Dict[str, Any]) -> Dict[str, Any]:
        ids = _ids_from(body)
        if ids:
            gmail_api_helpers.batch_modify_message_labels(self.service, ids, remove_label_ids=["INBOX", "UNREAD"])
        return {"ok": True, "count": len(ids)}

    def _delete(self, body: Dict[str, Any]) -> Dict[str, Any]:
        ids = _ids_from(body)
        if not ids:
            return {"ok": True, "successful": 0, "failed": 0}
        outcome = batch_api_service.apply_to_page(self.service, ids, batch_api_service.BulkAction.TRASH)
        return {"ok": not outcome.failed, "successful": len(outcome.succeeded), "failed": len(outcome.failed)}

    def _mark_read(self, body: Dict[str, Any]) -> Dict[str, Any]:
        message_id = body.get("id")
        if not message_id:
            raise BadRequest("id is required")
        gmail_api_helpers.modify_message(self.service, message_id, remove_label_ids=["UNREAD"])
        return {"ok": True}

    def _reply(self, body: Dict[str, Any]) -> Dict[str, Any]:
        message_id = body.get("message_id")
        text = body.get("body") or ""
        html = body.get("html") or ""
        if not message_id or not (text or html):
            raise BadRequest("message_id and body (or html) are required")
        original = gmail_api_helpers.get_message_details(self.service, message_id, email_format="full")
        headers = message_utils.extract_headers(original, ["From", "Subject", "Message-ID"])
        raw = message_utils.build_raw_message(
            to=headers["From"],
            subject=message_utils.reply_subject(headers["Subject"]),
            body=text,
            html=html if body.get("useHtml") and html else None,
            in_reply_to=headers["Message-ID"] or None,
        )
        gmail_api_helpers.send_message(self.service, raw, thread_id=original.get("threadId"))
        return {"ok": True}

    def handle(self, method: str, path: str, query_string: str = "", raw_body: bytes = b"") -> Tuple[str, str, bytes]:
        """Dispatches one request; returns (status line, content type, body)."""
        post_routes = {
            "/api/archive": self._archive,
            "/api/delete": self._delete,
            "/api/markRead": self._mark_read,
            "/api/reply": self._reply,
        }
        try:
            if method == "GET" and path == "/":
                page = INDEX_PAGE.replace("__QUERY__", self.query.replace('"', "&quot;"))
                return "200 OK", "text/html; charset=utf-8", page.encode("utf-8")
            if method == "GET" and path == "/api/list":
                return _json("200 OK", self._list(query_string))
            if method == "GET" and path.startswith("/api/message/"):
                message_id = path[len("/api/message/"):].strip("/")
                if not message_id:
                    raise BadRequest("message id is required")
                return _json("200 OK", self._message(message_id))
            if method == "POST" and path in post_routes:
                return _json("200 OK", post_routes[path](_parse_body(raw_body)))
            return "404 Not Found", "text/plain", b"Not found"
        except (BadRequest, InvalidParameterError) as e:
            return _json("400 Bad Request", {"error": str(e)})
        except MessageNotFoundError as e:
            return _json("404 Not Found", {"error": e.message})
        except Exception as e:
            logger.error(f"UI request {method} {path} failed: {e}", exc_info=True)
            return _json("500 Internal Server Error", {"error": "Server error"})

    def wsgi_app(self, environ, start_response):
        try:
            length = int(environ.get("CONTENT_LENGTH") or 0)
        except ValueError:
            length = 0
        raw_body = environ["wsgi.input"].read(length) if length > 0 else b""
        status, content_type, body = self.handle(
            environ.get("REQUEST_METHOD", "GET"),
            environ.get("PATH_INFO", "/"),
            environ.get("QUERY_STRING", ""),
            raw_body,
        )
        start_response(status, [("Content-Type", content_type), ("Content-Length", str(len(body)))])
        return [body]


def _json(status: str, payload: Dict[str, Any]) -> Tuple[str, str, bytes]:
    return status, "application/json", json.dumps(payload).encode("utf-8")


def _parse_body(raw_body: bytes) -> Dict[str, Any]:
    if not raw_body:
        return {}
    try:
        body = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise BadRequest(f"Invalid JSON body: {e}")
    if not isinstance(body, dict):
        raise BadRequest("JSON body must be an object")
    return body


def _ids_from(body: Dict[str, Any]):
    ids = body.get("ids")
    if ids is None:
        return []
    if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
        raise BadRequest("ids must be a list of strings")
    return ids
