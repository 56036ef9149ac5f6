import pytest
from unittest.mock import MagicMock
from googleapiclient.errors import HttpError

from gmail_mcp.core import config as app_config
from gmail_mcp.core.session import MailSession


class FakeBatch:
    """Stands in for googleapiclient's BatchHttpRequest.

    `responder(request_id)` returns the response for one sub-request or raises
    to make that sub-request fail; `envelope_error` fails the whole batch.
    """

    def __init__(self, callback, responder, envelope_error=None):
        self.callback = callback
        self.responder = responder
        self.envelope_error = envelope_error
        self.request_ids = []

    def add(self, request, request_id=None):
        self.request_ids.append(request_id)

    def execute(self):
        if self.envelope_error is not None:
            raise self.envelope_error
        for request_id in self.request_ids:
            try:
                response, exception = self.responder(request_id), None
            except Exception as e:
                response, exception = None, e
            self.callback(request_id, response, exception)


@pytest.fixture(autouse=True)
def isolated_data_dir(tmp_path):
    """Points every data-dir path (token, rules, logs) at a fresh temp directory."""
    original = app_config.DATA_DIR
    data_dir = app_config.set_data_dir(tmp_path / "data")
    data_dir.mkdir(parents=True, exist_ok=True)
    yield data_dir
    app_config.set_data_dir(original)


@pytest.fixture
def make_http_error():
    def _make(status, reason="error", content=b"error"):
        return HttpError(resp=MagicMock(status=status, reason=reason), content=content)

    return _make


@pytest.fixture
def fake_batches():
    """Installs FakeBatch on a mocked service; returns the list of batches created."""

    def _install(service, responder, envelope_error=None):
        created = []

        def factory(callback=None):
            batch = FakeBatch(callback, responder, envelope_error)
            created.append(batch)
            return batch

        service.new_batch_http_request.side_effect = factory
        return created

    return _install


@pytest.fixture
def mock_service():
    return MagicMock()


@pytest.fixture
def session(mock_service):
    return MailSession(service=mock_service)
