import logging
from typing import Any, Dict, List, Optional, Union
from gmail_mcp.core.tool_utils import parse_params
from gmail_mcp.core_api import gmail_api_service as gmail_api_helpers
from gmail_mcp.core_api import message_utils
from .models import CreateDraftParams, DraftIdParams, ListDraftsParams, ReplyDraftParams, UpdateDraftParams

logger = logging.getLogger(__name__)


def _describe_draft(draft: Dict[str, Any]) -> Dict[str, Any]:
    message = draft.get("message") or {}
    headers = message_utils.extract_headers(message, ["To", "Subject"])
    html_body = message_utils.extract_html(message.get("payload"))
    return {
        "id": draft.get("id"),
        "to": headers["To"],
        "subject": headers["Subject"],
        "body": message_utils.extract_plain_text(message.get("payload")),
        "htmlBody": html_body,
        "hasHtml": bool(html_body),
        "created": message.get("internalDate"),
    }


def create_draft(
    session,
    to: str,
    subject: str,
    body: str,
    html: Optional[str] = None,
    reply_to_message_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Create a draft; with reply_to_message_id it is threaded as a reply to that message."""
    params = parse_params(
        CreateDraftParams, to=to, subject=subject, body=body, html=html, reply_to_message_id=reply_to_message_id
    )
    service = session.service
    in_reply_to = None
    thread_id = None
    if params.reply_to_message_id:
        original = gmail_api_helpers.get_message_details(
            service, params.reply_to_message_id, email_format="metadata", metadata_headers=["Message-ID"]
        )
        in_reply_to = message_utils.extract_headers(original, ["Message-ID"])["Message-ID"] or None
        thread_id = original.get("threadId")

    raw = message_utils.build_raw_message(params.to, params.subject, params.body, params.html, in_reply_to)
    draft = gmail_api_helpers.create_draft(service, raw, thread_id=thread_id)
    return {"message": f"Draft created successfully! Draft ID: {draft.get('id')}", "draft_id": draft.get("id")}


def create_reply_draft(session, message_id: str, body: str, html: Optional[str] = None) -> Dict[str, Any]:
    """Draft a reply to a message, addressed to its sender, and return a preview."""
    params = parse_params(ReplyDraftParams, message_id=message_id, body=body, html=html)
    service = session.service
    original = gmail_api_helpers.get_message_details(service, params.message_id, email_format="full")
    headers = message_utils.extract_headers(original, ["From", "Subject", "Message-ID"])
    raw = message_utils.build_raw_message(
        to=headers["From"],
        subject=message_utils.reply_subject(headers["Subject"]),
        body=params.body,
        html=params.html,
        in_reply_to=headers["Message-ID"] or None,
    )
    draft = gmail_api_helpers.create_draft(service, raw, thread_id=original.get("threadId"))
    preview = _describe_draft(gmail_api_helpers.get_draft(service, draft["id"]))
    return {
        "message": f"Reply draft created successfully! Draft ID: {draft['id']}",
        "draft_id": draft["id"],
        "preview": preview,
    }


def get_draft(session, draft_id: str) -> Dict[str, Any]:
    params = parse_params(DraftIdParams, draft_id=draft_id)
    return _describe_draft(gmail_api_helpers.get_draft(session.service, params.draft_id))


def list_drafts(session, max: int = 10) -> Union[str, List[Dict[str, Any]]]:
    params = parse_params(ListDraftsParams, max=max)
    service = session.service
    drafts = gmail_api_helpers.list_drafts(service, max_results=params.max)
    if not drafts:
        return "No drafts found."
    results = []
    for draft in drafts:
        details = gmail_api_helpers.get_draft(service, draft["id"], draft_format="metadata")
        message = details.get("message") or {}
        headers = message_utils.extract_headers(message, ["To", "Subject"])
        results.append(
            {"id": draft["id"], "to": headers["To"], "subject": headers["Subject"], "created": message.get("internalDate")}
        )
    return results


def update_draft(
    session,
    draft_id: str,
    to: Optional[str] = None,
    subject: Optional[str] = None,
    body: Optional[str] = None,
    html: Optional[str] = None,
) -> Dict[str, Any]:
    """Replace a draft's content. Missing fields become 'Unknown' / 'No Subject' / empty."""
    params = parse_params(UpdateDraftParams, draft_id=draft_id, to=to, subject=subject, body=body, html=html)
    raw = message_utils.build_raw_message(
        params.to or "Unknown", params.subject or "No Subject", params.body or "", params.html
    )
    gmail_api_helpers.update_draft(session.service, params.draft_id, raw)
    return {"message": f"Draft {params.draft_id} updated successfully!"}


def send_draft(session, draft_id: str) -> Dict[str, Any]:
    params = parse_params(DraftIdParams, draft_id=draft_id)
    sent = gmail_api_helpers.send_draft(session.service, params.draft_id)
    return {"message": f"Draft sent successfully! Message ID: {sent.get('id')}", "message_id": sent.get("id")}


def delete_draft(session, draft_id: str) -> Dict[str, Any]:
    params = parse_params(DraftIdParams, draft_id=draft_id)
    gmail_api_helpers.delete_draft(session.service, params.draft_id)
    return {"message": f"Draft {params.draft_id} deleted successfully!"}


TOOLS = [create_draft, create_reply_draft, get_draft, list_drafts, update_draft, send_draft, delete_draft]
