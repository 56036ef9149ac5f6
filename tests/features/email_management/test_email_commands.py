import json
import pytest
from click.testing import CliRunner
from unittest.mock import MagicMock, patch

from gmail_mcp import cli_entry
from gmail_mcp.core import config as app_config
from gmail_mcp.core_api.batch_api_service import BulkAction
from gmail_mcp.core_api.exceptions import GmailApiError

COMPLETED_RESULT = {
    "status": "completed",
    "query": "from:promo",
    "action": "trash",
    "batch_size": 100,
    "batches_processed": 2,
    "total_processed": 150,
    "successful": 150,
    "failed": 0,
    "retried_individually": 0,
    "errors": [],
}


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def mock_logging_setup_for_cli_tests():
    with patch("gmail_mcp.cli_entry.setup_logging") as mock_setup:
        mock_logger = MagicMock(name="MockLoggerFromCLIEntry")
        mock_setup.return_value = mock_logger
        yield mock_logger


@pytest.fixture
def logged_in():
    app_config.TOKEN_FILE.write_text("{}")


def invoke(runner, session, args, **kwargs):
    return runner.invoke(cli_entry.gmail_mcp, args, obj={"session": session}, **kwargs)


def test_emails_group_requires_login(runner, session):
    result = invoke(runner, session, ["emails", "search", "-q", "is:unread"])

    assert result.exit_code == 1
    assert "Please run `gmail-mcp login` first." in result.output


# --- emails search ---
@patch("gmail_mcp.features.email_management.commands.fetch_summaries")
def test_emails_search_human_output(mock_fetch, runner, session, mock_service, logged_in):
    # ARRANGE
    messages_api = mock_service.users.return_value.messages.return_value
    messages_api.list.return_value.execute.return_value = {"messages": [{"id": "111"}]}
    mock_fetch.return_value = [
        {"id": "111", "from": "sender1@example.com", "subject": "Test Subject 1", "date": "Some Date 1", "snippet": "Hi"}
    ]

    # ACT
    result = invoke(runner, session, ["emails", "search", "-q", "from:sender1", "--max-results", "500"])

    # ASSERT
    assert result.exit_code == 0
    assert "Found 1 email(s)." in result.output
    assert "ID: 111" in result.output
    assert " Subject: Test Subject 1" in result.output
    assert messages_api.list.call_args.kwargs["maxResults"] == 100
    mock_fetch.assert_called_once_with(mock_service, ["111"])


def test_emails_search_no_results_json(runner, session, mock_service, logged_in):
    mock_service.users.return_value.messages.return_value.list.return_value.execute.return_value = {}

    result = invoke(runner, session, ["emails", "search", "-q", "from:nobody", "--output-format", "json"])

    output_data = json.loads(result.output)
    assert output_data["message"] == 'No emails found for query: "from:nobody"'
    assert output_data["data"] == {"query": "from:nobody", "emails": []}


def test_emails_search_api_error(runner, session, mock_service, logged_in, make_http_error):
    mock_service.users.return_value.messages.return_value.list.return_value.execute.side_effect = make_http_error(
        500, "Backend Error"
    )

    result = invoke(runner, session, ["emails", "search", "-q", "x", "--output-format", "json"])

    assert result.exit_code == 1
    assert json.loads(result.output)["error_details"]["code"] == "GMAIL_API_ERROR"


# --- emails bulk-delete ---
@patch("gmail_mcp.features.email_management.commands.batch_api_service.run_bulk_action")
def test_bulk_delete_dry_run_needs_no_confirmation(mock_run, runner, session, mock_service, logged_in):
    mock_run.return_value = {
        "status": "dry_run",
        "query": "from:promo",
        "total_estimated": 250,
        "estimated_batches": 3,
        "batch_size": 100,
    }

    result = invoke(runner, session, ["emails", "bulk-delete", "-q", "from:promo", "--dry-run"])

    assert result.exit_code == 0
    assert "DRY RUN: about 250 email(s) match 'from:promo'." in result.output
    mock_run.assert_called_once_with(mock_service, "from:promo", BulkAction.TRASH, batch_size=100, dry_run=True)


@patch("gmail_mcp.features.email_management.commands.batch_api_service.run_bulk_action")
def test_bulk_delete_trash_with_yes(mock_run, runner, session, logged_in):
    mock_run.return_value = dict(COMPLETED_RESULT)

    result = invoke(runner, session, ["emails", "bulk-delete", "-q", "from:promo", "--yes"])

    assert result.exit_code == 0
    assert "Processed: 150 in 2 batch(es)" in result.output
    assert "Successful: 150" in result.output


@patch("gmail_mcp.features.email_management.commands.batch_api_service.run_bulk_action")
def test_bulk_delete_permanent_requires_typed_confirmation(mock_run, runner, session, logged_in):
    result = invoke(runner, session, ["emails", "bulk-delete", "-q", "from:promo", "--permanent"], input="y\nnope\n")

    assert "Confirmation text did not match. Permanent deletion aborted." in result.output
    mock_run.assert_not_called()


@patch("gmail_mcp.features.email_management.commands.batch_api_service.run_bulk_action")
def test_bulk_delete_permanent_with_typed_confirmation(mock_run, runner, session, mock_service, logged_in):
    mock_run.return_value = dict(COMPLETED_RESULT, action="delete")

    result = invoke(runner, session, ["emails", "bulk-delete", "-q", "from:promo", "--permanent"], input="y\nYESIDO\n")

    assert result.exit_code == 0
    assert mock_run.call_args.args[2] == BulkAction.DELETE


@patch("gmail_mcp.features.email_management.commands.batch_api_service.run_bulk_action")
def test_bulk_delete_aborted_json(mock_run, runner, session, logged_in):
    result = invoke(runner, session, ["emails", "bulk-delete", "-q", "x", "--output-format", "json"], input="n\n")

    output_data = json.loads(result.output[result.output.index("{"):])
    assert output_data["status"] == "aborted_by_user"
    mock_run.assert_not_called()


@patch("gmail_mcp.features.email_management.commands.batch_api_service.run_bulk_action")
def test_bulk_delete_partial_failure_exits_nonzero(mock_run, runner, session, logged_in):
    mock_run.return_value = dict(
        COMPLETED_RESULT, successful=148, failed=2, retried_individually=100,
        errors=[{"batch": 1, "count": 2, "error": "2 messages failed"}],
    )

    result = invoke(runner, session, ["emails", "bulk-delete", "-q", "from:promo", "--yes"])

    assert result.exit_code == 1
    assert "Retried individually: 100" in result.output
    assert " - batch 1: 2 messages failed" in result.output


@patch("gmail_mcp.features.email_management.commands.batch_api_service.run_bulk_action")
def test_bulk_delete_service_error_json(mock_run, runner, session, logged_in):
    mock_run.side_effect = GmailApiError("API error listing messages: 500")

    result = invoke(runner, session, ["emails", "bulk-delete", "-q", "x", "--yes", "--output-format", "json"])

    assert result.exit_code == 1
    output_data = json.loads(result.output)
    assert output_data["status"] == "error"
    assert output_data["command_executed"] == "gmail-mcp emails bulk-delete"


# --- emails bulk-label ---
@patch("gmail_mcp.features.email_management.commands.batch_api_service.run_bulk_action")
def test_bulk_label_replace_json(mock_run, runner, session, mock_service, logged_in):
    # ARRANGE
    mock_run.return_value = dict(COMPLETED_RESULT, action="replace_labels")

    # ACT
    result = invoke(
        runner,
        session,
        [
            "emails", "bulk-label", "-q", "from:boss",
            "--label-id", "Label_1", "--label-id", "Label_2",
            "--operation", "replace", "--yes", "--output-format", "json",
        ],
    )

    # ASSERT
    assert result.exit_code == 0
    assert json.loads(result.output)["message"] == "Bulk label completed."
    mock_run.assert_called_once_with(
        mock_service,
        "from:boss",
        BulkAction.REPLACE_LABELS,
        label_ids=["Label_1", "Label_2"],
        batch_size=100,
        dry_run=False,
    )


def test_bulk_label_requires_label_id(runner, session, logged_in):
    result = invoke(runner, session, ["emails", "bulk-label", "-q", "x", "--yes"])

    assert result.exit_code != 0
    assert "Missing option '--label-id'" in result.output
