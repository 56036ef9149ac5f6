import io
import json
import pytest
from unittest.mock import MagicMock, patch

from gmail_mcp.core_api.exceptions import GmailMcpError
from gmail_mcp.features.web_ui.ui_server import MAX_PORT_ATTEMPTS, MailboxUIServer


@pytest.fixture
def messages_api(mock_service):
    return mock_service.users.return_value.messages.return_value


@pytest.fixture
def ui(mock_service):
    server = MailboxUIServer(port=5000, query="is:unread", max_results=25, service_factory=lambda: mock_service)
    server.service = mock_service
    return server


def _body(response):
    status, content_type, body = response
    assert content_type == "application/json"
    return status, json.loads(body)


def _post(ui, path, payload):
    return ui.handle("POST", path, raw_body=json.dumps(payload).encode())


# --- Lifecycle ---
@patch("gmail_mcp.features.web_ui.ui_server.make_server")
def test_start_moves_to_next_free_port(mock_make_server, mock_service):
    # ARRANGE
    mock_make_server.side_effect = [OSError("Address already in use"), MagicMock()]
    factory = MagicMock(return_value=mock_service)
    server = MailboxUIServer(port=5000, service_factory=factory)

    # ACT
    url = server.start()

    # ASSERT
    assert url == "http://127.0.0.1:5001/"
    assert server.running is True
    factory.assert_called_once()
    server.stop()
    assert server.running is False


@patch("gmail_mcp.features.web_ui.ui_server.make_server", side_effect=OSError("Address already in use"))
def test_start_gives_up_after_max_attempts(mock_make_server, mock_service):
    server = MailboxUIServer(port=5000, service_factory=lambda: mock_service)

    with pytest.raises(GmailMcpError, match="Could not find a free port"):
        server.start()

    assert mock_make_server.call_count == MAX_PORT_ATTEMPTS
    assert server.running is False


# --- Routes ---
def test_index_page_embeds_default_query(ui):
    status, content_type, body = ui.handle("GET", "/")

    assert status == "200 OK"
    assert content_type.startswith("text/html")
    assert b"is:unread" in body
    assert b"__QUERY__" not in body


def test_unknown_route_is_404(ui):
    assert ui.handle("GET", "/nope") == ("404 Not Found", "text/plain", b"Not found")
    assert ui.handle("GET", "/api/archive")[0] == "404 Not Found"


def test_list_returns_items_with_unread_flag(ui, mock_service, messages_api, fake_batches):
    # ARRANGE
    messages_api.list.return_value.execute.return_value = {"messages": [{"id": "m1"}, {"id": "m2"}]}
    fake_batches(
        mock_service,
        lambda mid: {
            "id": mid,
            "labelIds": ["UNREAD"] if mid == "m1" else [],
            "payload": {"headers": [{"name": "Subject", "value": f"Subject {mid}"}]},
        },
    )

    # ACT
    status, data = _body(ui.handle("GET", "/api/list", "q=from%3Aalice&max=500"))

    # ASSERT
    assert status == "200 OK"
    assert [item["unread"] for item in data["items"]] == [True, False]
    assert data["items"][1]["subject"] == "Subject m2"
    assert messages_api.list.call_args.kwargs == {"userId": "me", "maxResults": 100, "q": "from:alice"}


def test_list_defaults_to_configured_query(ui, mock_service, messages_api, fake_batches):
    messages_api.list.return_value.execute.return_value = {}
    fake_batches(mock_service, lambda mid: {})

    status, data = _body(ui.handle("GET", "/api/list"))

    assert data == {"items": []}
    assert messages_api.list.call_args.kwargs["q"] == "is:unread"
    assert messages_api.list.call_args.kwargs["maxResults"] == 25


def test_message_route(ui, messages_api):
    messages_api.get.return_value.execute.return_value = {
        "id": "m1",
        "threadId": "t1",
        "payload": {"headers": [{"name": "From", "value": "a@b.com"}], "mimeType": "text/plain", "body": {}},
    }

    status, data = _body(ui.handle("GET", "/api/message/m1"))

    assert status == "200 OK"
    assert data["from"] == "a@b.com"
    assert data["hasHtml"] is False


def test_message_route_not_found(ui, messages_api, make_http_error):
    messages_api.get.return_value.execute.side_effect = make_http_error(404, "Not Found")

    status, data = _body(ui.handle("GET", "/api/message/gone"))

    assert status == "404 Not Found"
    assert "gone" in data["error"]


def test_archive_route(ui, messages_api):
    status, data = _body(_post(ui, "/api/archive", {"ids": ["m1", "m2"]}))

    assert data == {"ok": True, "count": 2}
    messages_api.batchModify.assert_called_once_with(
        userId="me", body={"ids": ["m1", "m2"], "removeLabelIds": ["INBOX", "UNREAD"]}
    )


def test_archive_route_rejects_bad_ids(ui, messages_api):
    status, data = _body(_post(ui, "/api/archive", {"ids": "m1"}))

    assert status == "400 Bad Request"
    assert data["error"] == "ids must be a list of strings"
    messages_api.batchModify.assert_not_called()


def test_delete_route_trashes(ui, messages_api):
    status, data = _body(_post(ui, "/api/delete", {"ids": ["m1"]}))

    assert data == {"ok": True, "successful": 1, "failed": 0}
    assert messages_api.batchModify.call_args.kwargs["body"]["addLabelIds"] == ["TRASH"]


def test_delete_route_with_nothing_selected(ui, messages_api):
    status, data = _body(_post(ui, "/api/delete", {}))

    assert data == {"ok": True, "successful": 0, "failed": 0}
    messages_api.batchModify.assert_not_called()


def test_mark_read_requires_id(ui):
    status, data = _body(_post(ui, "/api/markRead", {}))

    assert status == "400 Bad Request"


def test_mark_read_route(ui, messages_api):
    status, data = _body(_post(ui, "/api/markRead", {"id": "m1"}))

    assert data == {"ok": True}
    messages_api.modify.assert_called_once_with(userId="me", id="m1", body={"removeLabelIds": ["UNREAD"]})


def test_reply_route_sends_html_when_requested(ui, messages_api):
    # ARRANGE
    messages_api.get.return_value.execute.return_value = {
        "id": "m1",
        "threadId": "t1",
        "payload": {"headers": [{"name": "From", "value": "a@b.com"}, {"name": "Subject", "value": "Hi"}]},
    }

    # ACT
    status, data = _body(
        _post(ui, "/api/reply", {"message_id": "m1", "body": "plain", "html": "<p>rich</p>", "useHtml": True})
    )

    # ASSERT
    assert data == {"ok": True}
    sent = messages_api.send.call_args.kwargs["body"]
    assert sent["threadId"] == "t1"


def test_reply_route_requires_body(ui, messages_api):
    status, data = _body(_post(ui, "/api/reply", {"message_id": "m1"}))

    assert status == "400 Bad Request"
    messages_api.send.assert_not_called()


def test_invalid_json_body_is_400(ui):
    status, data = _body(ui.handle("POST", "/api/archive", raw_body=b"{not json"))

    assert status == "400 Bad Request"
    assert data["error"].startswith("Invalid JSON body")


def test_api_failure_is_500_without_details(ui, messages_api, make_http_error):
    messages_api.batchModify.return_value.execute.side_effect = make_http_error(500, "Backend Error")

    status, data = _body(_post(ui, "/api/archive", {"ids": ["m1"]}))

    assert status == "500 Internal Server Error"
    assert data == {"error": "Server error"}


def test_wsgi_app_reads_body_and_responds(ui, messages_api):
    # ARRANGE
    payload = json.dumps({"id": "m1"}).encode()
    environ = {
        "REQUEST_METHOD": "POST",
        "PATH_INFO": "/api/markRead",
        "QUERY_STRING": "",
        "CONTENT_LENGTH": str(len(payload)),
        "wsgi.input": io.BytesIO(payload),
    }
    start_response = MagicMock()

    # ACT
    body = ui.wsgi_app(environ, start_response)

    # ASSERT
    assert json.loads(body[0]) == {"ok": True}
    status, headers = start_response.call_args.args
    assert status == "200 OK"
    assert ("Content-Type", "application/json") in headers
