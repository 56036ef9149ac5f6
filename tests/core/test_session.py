import pytest
from unittest.mock import MagicMock, patch

from gmail_mcp.core import config as app_config
from gmail_mcp.core.session import MailSession
from gmail_mcp.core_api.exceptions import NotAuthorizedError


@patch("gmail_mcp.core.session.gmail_api_service.get_g_service_client_from_token")
def test_service_is_built_once_from_token(mock_get_client):
    # ARRANGE
    client = MagicMock()
    mock_get_client.return_value = client
    session = MailSession()

    # ACT
    first = session.service
    second = session.service

    # ASSERT
    assert first is client and second is client
    mock_get_client.assert_called_once_with(str(app_config.TOKEN_FILE), app_config.SCOPES)


@patch("gmail_mcp.core.session.gmail_api_service.get_g_service_client_from_token")
def test_reset_forces_a_rebuild(mock_get_client):
    session = MailSession()
    _ = session.service

    session.reset()
    _ = session.service

    assert mock_get_client.call_count == 2


@patch(
    "gmail_mcp.core.session.gmail_api_service.get_g_service_client_from_token",
    side_effect=NotAuthorizedError("Not authorized. Use start_oauth to connect your Gmail account."),
)
def test_service_without_token_raises_not_authorized(mock_get_client):
    with pytest.raises(NotAuthorizedError):
        _ = MailSession().service


def test_has_token_reflects_token_file():
    session = MailSession()
    assert session.has_token() is False

    app_config.TOKEN_FILE.write_text("{}")

    assert session.has_token() is True


def test_shutdown_stops_running_servers_only():
    # ARRANGE
    session = MailSession(service=MagicMock())
    session.oauth_listener = MagicMock(running=True)
    idle_ui = MagicMock(running=False)
    session.ui_server = idle_ui
    listener = session.oauth_listener

    # ACT
    session.shutdown()

    # ASSERT
    listener.stop.assert_called_once()
    idle_ui.stop.assert_not_called()
    assert session.oauth_listener is None
    assert session.ui_server is None
