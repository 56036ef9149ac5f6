import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from gmail_mcp.core import config as app_config
from gmail_mcp.core.tool_utils import parse_params
from gmail_mcp.core_api import batch_api_service
from gmail_mcp.core_api import gmail_api_service as gmail_api_helpers
from gmail_mcp.core_api import message_utils
from gmail_mcp.core_api.exceptions import InvalidParameterError, InvalidRequestError
from .models import (
    BatchDeleteParams,
    BulkDeleteParams,
    DeleteByQueryParams,
    DeleteEmailParams,
    ListSnoozedParams,
    ListUnreadParams,
    MessageIdParams,
    MessageIdsParams,
    RecentUnreadParams,
    ReplyParams,
    SearchParams,
    SnoozeParams,
)

logger = logging.getLogger(__name__)

SNOOZE_LABEL_NAME = "SNOOZED"


def load_ignored_labels() -> List[str]:
    """Label names hidden from the recent-unread view. Missing or corrupt file means none."""
    path = Path(app_config.IGNORED_LABELS_FILE)
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except FileNotFoundError:
        return []
    except (IOError, json.JSONDecodeError) as e:
        logger.warning(f"Ignoring unreadable ignored-labels file {path}: {e}")
        return []
    labels = data.get("labels") if isinstance(data, dict) else None
    if not isinstance(labels, list):
        return []
    return [str(label) for label in labels]


def fetch_summaries(service: Any, message_ids: List[str], include_labels: bool = False) -> List[Dict[str, Any]]:
    """Metadata summaries for `message_ids`, fetched together and returned in the same order."""
    fetched = gmail_api_helpers.get_messages_individually(
        service, message_ids, email_format="metadata", metadata_headers=message_utils.SUMMARY_HEADERS
    )
    summaries = []
    for message_id in message_ids:
        message = fetched.succeeded.get(message_id)
        if message is None:
            logger.warning(f"Skipping message {message_id}: {fetched.failed.get(message_id)}")
            continue
        summary = message_utils.summarize_message(message)
        if include_labels:
            labels = message.get("labelIds", [])
            summary["unread"] = "UNREAD" in labels
            summary["labels"] = labels
        summaries.append(summary)
    return summaries


def _list_ids(service: Any, query: str, max_results: int) -> List[str]:
    response = gmail_api_helpers.list_messages(service, query_string=query, max_results=max_results)
    return [m["id"] for m in response.get("messages", [])]


def _with_recent_unread(session, message: str, **extra: Any) -> Dict[str, Any]:
    result: Dict[str, Any] = {"message": message}
    result.update(extra)
    result["recent_unread"] = list_recent_unread(session, days="7", max=50)
    return result


def _message_headline(service: Any, message_id: str) -> Dict[str, str]:
    message = gmail_api_helpers.get_message_details(
        service, message_id, email_format="metadata", metadata_headers=["From", "Subject", "Date"]
    )
    return message_utils.extract_headers(message, ["From", "Subject", "Date"])


# --- Reading ---
def list_unread(session, max: int = 10) -> Union[str, List[Dict[str, Any]]]:
    """List unread emails (sender, subject, date, snippet)."""
    params = parse_params(ListUnreadParams, max=max)
    ids = _list_ids(session.service, "is:unread", params.max)
    if not ids:
        return "No unread emails."
    return fetch_summaries(session.service, ids)


def list_recent_unread(session, days: Optional[Union[str, int]] = "7", max: int = 50) -> str:
    """Markdown table of unread Inbox emails from the last N days, excluding ignored labels."""
    params = parse_params(RecentUnreadParams, days=days, max=max)
    day_count = message_utils.parse_days(params.days)
    ignored = load_ignored_labels()

    query = f"in:inbox is:unread newer_than:{day_count}d"
    if ignored:
        query += " " + " ".join(f'-label:"{label}"' for label in ignored)

    ids = _list_ids(session.service, query, params.max)
    if not ids:
        ignored_info = f" (excluding {len(ignored)} ignored labels)" if ignored else ""
        return f"No unread emails from the past {day_count} days in Inbox{ignored_info}."
    return message_utils.format_emails_table(fetch_summaries(session.service, ids))


def get_message(session, id: str) -> Dict[str, Any]:
    """Full message: headers plus the plain-text body (snippet when there is none)."""
    params = parse_params(MessageIdParams, id=id)
    message = gmail_api_helpers.get_message_details(session.service, params.id, email_format="full")
    headers = message_utils.extract_headers(message, ["From", "To", "Subject", "Date", "Message-ID"])
    payload = message.get("payload")
    return {
        "id": message.get("id"),
        "threadId": message.get("threadId"),
        "from": headers["From"],
        "to": headers["To"],
        "subject": headers["Subject"],
        "date": headers["Date"],
        "messageIdHeader": headers["Message-ID"],
        "snippet": message.get("snippet", ""),
        "body": message_utils.extract_plain_text(payload) or message.get("snippet", ""),
        "htmlBody": message_utils.extract_html(payload),
    }


def search_emails(session, query: str, max: int = 10) -> Union[str, Dict[str, Any]]:
    """Search with Gmail query syntax, e.g. 'from:alice has:attachment'."""
    params = parse_params(SearchParams, query=query, max=max)
    ids = _list_ids(session.service, params.query, params.max)
    if not ids:
        return f'No emails found for query: "{params.query}"'
    emails = fetch_summaries(session.service, ids, include_labels=True)
    for email in emails:
        email.pop("labels", None)
    return {"query": params.query, "count": len(emails), "emails": emails}


# --- Single-message actions ---
def reply_to_message(session, message_id: str, body: str) -> Dict[str, Any]:
    """Send a plain-text reply in the same thread."""
    params = parse_params(ReplyParams, message_id=message_id, body=body)
    service = session.service
    original = gmail_api_helpers.get_message_details(service, params.message_id, email_format="full")
    headers = message_utils.extract_headers(original, ["From", "Subject", "Message-ID"])
    raw = message_utils.build_raw_message(
        to=headers["From"],
        subject=message_utils.reply_subject(headers["Subject"]),
        body=params.body,
        in_reply_to=headers["Message-ID"] or None,
    )
    sent = gmail_api_helpers.send_message(service, raw, thread_id=original.get("threadId"))
    return _with_recent_unread(session, f"Reply sent. New message ID: {sent.get('id')}", sent_id=sent.get("id"))


def mark_as_read(session, id: str) -> Dict[str, Any]:
    params = parse_params(MessageIdParams, id=id)
    gmail_api_helpers.modify_message(session.service, params.id, remove_label_ids=["UNREAD"])
    return _with_recent_unread(session, "Message marked as read.")


def batch_archive(session, ids: List[str]) -> Dict[str, Any]:
    """Remove INBOX and UNREAD from the given messages."""
    params = parse_params(MessageIdsParams, ids=ids)
    gmail_api_helpers.batch_modify_message_labels(
        session.service, params.ids, remove_label_ids=["INBOX", "UNREAD"]
    )
    return _with_recent_unread(session, f"Archived {len(params.ids)} messages")


def batch_delete(session, ids: List[str], permanent: bool = False) -> Dict[str, Any]:
    """Move the given messages to Trash, or delete them permanently."""
    params = parse_params(BatchDeleteParams, ids=ids, permanent=permanent)
    action = batch_api_service.BulkAction.DELETE if params.permanent else batch_api_service.BulkAction.TRASH
    outcome = batch_api_service.apply_to_page(session.service, params.ids, action)
    if params.permanent:
        message = f"Permanently deleted {len(outcome.succeeded)} messages"
    else:
        message = f"Moved {len(outcome.succeeded)} messages to Trash"
    if outcome.failed:
        message += f" ({len(outcome.failed)} failed)"
    return _with_recent_unread(
        session,
        message,
        successful=len(outcome.succeeded),
        failed=len(outcome.failed),
        errors=[{"id": mid, "error": reason} for mid, reason in outcome.failed.items()],
    )


def delete_email(session, id: str, permanent: bool = False) -> Dict[str, Any]:
    params = parse_params(DeleteEmailParams, id=id, permanent=permanent)
    service = session.service
    headline = _message_headline(service, params.id)
    description = f'"{headline["Subject"]}" from {headline["From"]} ({headline["Date"]})'
    if params.permanent:
        gmail_api_helpers.delete_message(service, params.id)
        message = f"Permanently deleted email: {description}"
    else:
        gmail_api_helpers.trash_message(service, params.id)
        message = f"Moved to trash: {description}"
    return _with_recent_unread(session, message)


# --- Query-driven deletion ---
def delete_emails_by_query(
    session, query: str, max: int = 50, permanent: bool = False, dry_run: bool = False
) -> Dict[str, Any]:
    """Delete one page (up to `max`, 1-100) of emails matching a query."""
    params = parse_params(DeleteByQueryParams, query=query, max=max, permanent=permanent, dry_run=dry_run)
    return batch_api_service.delete_matching_page(
        session.service, params.query, max_results=params.max, permanent=params.permanent, dry_run=params.dry_run
    )


def bulk_delete_emails(
    session, query: str, batch_size: int = 100, permanent: bool = False, dry_run: bool = False
) -> Dict[str, Any]:
    """Delete every email matching a query, page by page (batch_size 10-500)."""
    params = parse_params(
        BulkDeleteParams, query=query, batch_size=batch_size, permanent=permanent, dry_run=dry_run
    )
    action = batch_api_service.BulkAction.DELETE if params.permanent else batch_api_service.BulkAction.TRASH
    return batch_api_service.run_bulk_action(
        session.service, params.query, action, batch_size=params.batch_size, dry_run=params.dry_run
    )


# --- Snooze ---
def snooze_email(session, id: str, snooze_date: str) -> Dict[str, Any]:
    """Archive an email under the SNOOZED label until the given date."""
    params = parse_params(SnoozeParams, id=id, snooze_date=snooze_date)
    until = message_utils.parse_snooze_date(params.snooze_date)
    if until <= datetime.now().astimezone():
        raise InvalidParameterError("Snooze date must be in the future")

    service = session.service
    headline = _message_headline(service, params.id)
    label_id = gmail_api_helpers.find_or_create_label(service, SNOOZE_LABEL_NAME)
    gmail_api_helpers.modify_message(
        service, params.id, add_label_ids=[label_id], remove_label_ids=["INBOX"]
    )
    logger.info(f"Snoozed message {params.id} until {until.isoformat()}.")
    return {
        "message": "Email snoozed successfully!",
        "email": {"subject": headline["Subject"], "from": headline["From"], "originalDate": headline["Date"]},
        "snooze": {
            "until": until.isoformat(),
            "label": SNOOZE_LABEL_NAME,
            "note": 'Email has been archived and labeled as SNOOZED. Search for "label:SNOOZED" to find snoozed emails.',
        },
    }


def unsnooze_email(session, id: str) -> Dict[str, Any]:
    params = parse_params(MessageIdParams, id=id)
    service = session.service
    headline = _message_headline(service, params.id)
    label = gmail_api_helpers.find_label_by_name(service, SNOOZE_LABEL_NAME)
    if not label:
        raise InvalidRequestError("No SNOOZED label found. This email may not be snoozed.")
    gmail_api_helpers.modify_message(
        service, params.id, add_label_ids=["INBOX"], remove_label_ids=[label["id"]]
    )
    return {
        "message": "Email unsnoozed successfully!",
        "email": {"subject": headline["Subject"], "from": headline["From"], "originalDate": headline["Date"]},
        "note": "Email has been moved back to inbox and is ready for action.",
    }


def list_snoozed_emails(session, max: int = 20) -> str:
    params = parse_params(ListSnoozedParams, max=max)
    ids = _list_ids(session.service, f"label:{SNOOZE_LABEL_NAME}", params.max)
    if not ids:
        return "No snoozed emails found."
    return message_utils.format_emails_table(fetch_summaries(session.service, ids))


TOOLS = [
    list_unread,
    list_recent_unread,
    get_message,
    search_emails,
    reply_to_message,
    mark_as_read,
    batch_archive,
    batch_delete,
    delete_email,
    delete_emails_by_query,
    bulk_delete_emails,
    snooze_email,
    unsnooze_email,
    list_snoozed_emails,
]
