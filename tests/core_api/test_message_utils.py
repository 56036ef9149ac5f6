import base64
import email
import pytest
from datetime import datetime, timezone

from gmail_mcp.core_api import message_utils
from gmail_mcp.core_api.exceptions import InvalidParameterError

# Sunday 20 October 2024, noon UTC
NOW = datetime(2024, 10, 20, 12, 0, tzinfo=timezone.utc)


def _b64(text):
    return base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")


# --- parse_days ---
@pytest.mark.parametrize(
    "value, expected",
    [
        ("2", 2),
        ("3d", 3),
        ("2 days", 2),
        ("--2", 2),
        ("days 4", 4),
        (None, 7),
        ("", 7),
        ("soon", 7),
        ("0", 1),
        ("45", 30),
    ],
)
def test_parse_days(value, expected):
    assert message_utils.parse_days(value) == expected


def test_clamp_falls_back_to_default_for_junk():
    assert message_utils.clamp("abc", 1, 100, 10) == 10
    assert message_utils.clamp(500, 1, 100, 10) == 100
    assert message_utils.clamp(None, 1, 100, 10) == 10


# --- parse_snooze_date ---
def test_parse_snooze_date_iso_naive_takes_local_zone():
    result = message_utils.parse_snooze_date("2024-11-01T10:00:00", now=NOW)

    assert result == datetime(2024, 11, 1, 10, 0, tzinfo=timezone.utc)


def test_parse_snooze_date_invalid_iso():
    with pytest.raises(InvalidParameterError, match="Invalid date format"):
        message_utils.parse_snooze_date("2024-13-45T99:00", now=NOW)


def test_parse_snooze_date_dutch_format():
    result = message_utils.parse_snooze_date("23 okt 16:00", now=NOW)

    assert (result.year, result.month, result.day, result.hour, result.minute) == (2024, 10, 23, 16, 0)


def test_parse_snooze_date_dutch_date_in_past_rolls_to_next_year():
    result = message_utils.parse_snooze_date("1 januari 10:00", now=NOW)

    assert (result.year, result.month, result.day) == (2025, 1, 1)


def test_parse_snooze_date_tomorrow_defaults_to_nine():
    result = message_utils.parse_snooze_date("tomorrow", now=NOW)

    assert result == datetime(2024, 10, 21, 9, 0, tzinfo=timezone.utc)


def test_parse_snooze_date_tomorrow_with_pm_time():
    result = message_utils.parse_snooze_date("tomorrow 3pm", now=NOW)

    assert (result.day, result.hour, result.minute) == (21, 15, 0)


def test_parse_snooze_date_tomorrow_with_clock_time():
    result = message_utils.parse_snooze_date("tomorrow 14:30", now=NOW)

    assert (result.hour, result.minute) == (14, 30)


def test_parse_snooze_date_next_monday():
    result = message_utils.parse_snooze_date("next monday", now=NOW)

    assert result == datetime(2024, 10, 21, 9, 0, tzinfo=timezone.utc)


def test_parse_snooze_date_next_monday_from_a_monday_is_a_week_out():
    monday = datetime(2024, 10, 21, 8, 0, tzinfo=timezone.utc)

    result = message_utils.parse_snooze_date("next monday", now=monday)

    assert result.day == 28


def test_parse_snooze_date_next_week():
    result = message_utils.parse_snooze_date("next week", now=NOW)

    assert result == datetime(2024, 10, 27, 9, 0, tzinfo=timezone.utc)


def test_parse_snooze_date_relative_hours():
    assert message_utils.parse_snooze_date("in 2 hours", now=NOW) == datetime(2024, 10, 20, 14, 0, tzinfo=timezone.utc)


def test_parse_snooze_date_unsupported():
    with pytest.raises(InvalidParameterError, match="Unsupported date format"):
        message_utils.parse_snooze_date("whenever", now=NOW)


def test_parse_snooze_date_empty():
    with pytest.raises(InvalidParameterError):
        message_utils.parse_snooze_date("", now=NOW)


# --- Tables and headers ---
def test_format_emails_table_empty_uses_message():
    assert message_utils.format_emails_table([]) == "No unread emails found."


def test_format_emails_table_rows():
    # ARRANGE
    emails = [
        {
            "from": "Alice Example <alice@example.com>",
            "subject": "A" * 60,
            "date": "Mon, 21 Oct 2024 09:15:00 -0000",
        }
    ]

    # ACT
    table = message_utils.format_emails_table(emails)

    # ASSERT
    lines = table.splitlines()
    assert lines[0] == "| ID | Date | Sender | Subject |"
    assert lines[2] == f"| 1 | 21/10 09:15 | Alice Example | {'A' * 47}... |"
    assert "**Total: 1 unread emails**" in table


def test_format_emails_table_keeps_unparseable_date():
    table = message_utils.format_emails_table([{"from": "bob@example.com", "subject": "Hi", "date": "yesterday"}])

    assert "| 1 | yesterday | bob@example.com | Hi |" in table


def test_extract_headers_is_case_insensitive():
    message = {"payload": {"headers": [{"name": "from", "value": "a@b.com"}, {"name": "SUBJECT", "value": "Hello"}]}}

    headers = message_utils.extract_headers(message, ["From", "Subject", "Date"])

    assert headers == {"From": "a@b.com", "Subject": "Hello", "Date": ""}


def test_summarize_message():
    message = {
        "id": "m1",
        "threadId": "t1",
        "snippet": "preview",
        "payload": {"headers": [{"name": "From", "value": "a@b.com"}]},
    }

    summary = message_utils.summarize_message(message)

    assert summary["id"] == "m1"
    assert summary["from"] == "a@b.com"
    assert summary["subject"] == ""
    assert summary["snippet"] == "preview"


# --- Bodies ---
def test_extract_plain_text_walks_nested_parts():
    payload = {
        "mimeType": "multipart/mixed",
        "parts": [
            {
                "mimeType": "multipart/alternative",
                "parts": [
                    {"mimeType": "text/html", "body": {"data": _b64("<p>Hi</p>")}},
                    {"mimeType": "text/plain", "body": {"data": _b64("Hi there")}},
                ],
            }
        ],
    }

    assert message_utils.extract_plain_text(payload) == "Hi there"
    assert message_utils.extract_html(payload) == "<p>Hi</p>"


def test_extract_plain_text_without_plain_part():
    assert message_utils.extract_plain_text({"mimeType": "text/html", "body": {"data": _b64("<b>x</b>")}}) == ""
    assert message_utils.extract_plain_text(None) == ""


def test_reply_subject_prefixes_once():
    assert message_utils.reply_subject("Lunch") == "Re: Lunch"
    assert message_utils.reply_subject("RE: Lunch") == "RE: Lunch"
    assert message_utils.reply_subject(None) == "Re: "


def test_build_raw_message_plain_with_threading_headers():
    raw = message_utils.build_raw_message("bob@example.com", "Re: Hi", "Thanks!", in_reply_to="<abc@mail>")

    parsed = email.message_from_bytes(base64.urlsafe_b64decode(raw))
    assert parsed["To"] == "bob@example.com"
    assert parsed["Subject"] == "Re: Hi"
    assert parsed["In-Reply-To"] == "<abc@mail>"
    assert parsed["References"] == "<abc@mail>"
    assert parsed.get_content_type() == "text/plain"
    assert parsed.get_payload(decode=True).decode() == "Thanks!"


def test_build_raw_message_html_is_multipart_alternative():
    raw = message_utils.build_raw_message("bob@example.com", "Hi", "plain", html="<p>rich</p>")

    parsed = email.message_from_bytes(base64.urlsafe_b64decode(raw))
    assert parsed.get_content_type() == "multipart/alternative"
    assert [part.get_content_type() for part in parsed.get_payload()] == ["text/plain", "text/html"]
    assert "In-Reply-To" not in parsed
