import logging
from typing import Any, Dict, List, Optional, Union
from gmail_mcp.core.tool_utils import parse_params
from gmail_mcp.core_api import batch_api_service, rules_api_service
from gmail_mcp.core_api import gmail_api_service as gmail_api_helpers
from gmail_mcp.core_api.exceptions import GmailMcpError
from gmail_mcp.features.email_management.tools import fetch_summaries
from .models import (
    AutoLabelParams,
    BulkLabelParams,
    CleanupLabelsParams,
    CreateLabelsParams,
    EmailIdParams,
    EmailLabelsParams,
    EmailsLabelsParams,
    LabelByQueryParams,
    LabelIdParams,
    LabelSpec,
    LabelStatisticsParams,
    SearchByLabelParams,
    SetEmailLabelsParams,
    UpdateLabelParams,
)

logger = logging.getLogger(__name__)

BULK_OPERATIONS = {
    "add": batch_api_service.BulkAction.ADD_LABELS,
    "remove": batch_api_service.BulkAction.REMOVE_LABELS,
    "replace": batch_api_service.BulkAction.REPLACE_LABELS,
}


def _format_label(label: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": label.get("id"),
        "name": label.get("name"),
        "type": label.get("type", "user"),
        "labelListVisibility": label.get("labelListVisibility"),
        "messageListVisibility": label.get("messageListVisibility"),
        "messagesTotal": label.get("messagesTotal", 0),
        "messagesUnread": label.get("messagesUnread", 0),
        "threadsTotal": label.get("threadsTotal", 0),
        "threadsUnread": label.get("threadsUnread", 0),
    }


def _is_user_label(label: Dict[str, Any]) -> bool:
    return label.get("type") == "user" and label.get("name") not in gmail_api_helpers.SYSTEM_LABELS


# --- Label CRUD ---
def create_label(
    session, name: str, label_list_visibility: str = "labelShow", message_list_visibility: str = "show"
) -> Dict[str, Any]:
    spec = parse_params(
        LabelSpec,
        name=name,
        label_list_visibility=label_list_visibility,
        message_list_visibility=message_list_visibility,
    )
    label = gmail_api_helpers.create_label(
        session.service, spec.name, spec.label_list_visibility, spec.message_list_visibility
    )
    return {"message": "Label created successfully!", "label": _format_label(label)}


def create_labels(session, labels: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Create several labels; each one succeeds or fails on its own."""
    params = parse_params(CreateLabelsParams, labels=labels)
    results, errors = [], []
    for spec in params.labels:
        try:
            label = gmail_api_helpers.create_label(
                session.service, spec.name, spec.label_list_visibility, spec.message_list_visibility
            )
            results.append({"name": spec.name, "id": label.get("id"), "status": "created"})
        except GmailMcpError as e:
            error = "Label already exists" if "already exists" in e.message else e.message
            errors.append({"name": spec.name, "error": error})
    return {
        "message": "Batch label creation completed",
        "successful": len(results),
        "failed": len(errors),
        "results": results,
        "errors": errors,
    }


def list_labels(session, include_system: bool = True) -> Dict[str, Any]:
    labels = gmail_api_helpers.list_labels(session.service)
    if not include_system:
        labels = [label for label in labels if label.get("name") not in gmail_api_helpers.SYSTEM_LABELS]
    formatted = [_format_label(label) for label in labels]
    return {"message": f"Found {len(formatted)} labels", "labels": formatted}


def get_label(session, label_id: str) -> Dict[str, Any]:
    params = parse_params(LabelIdParams, label_id=label_id)
    return {"label": _format_label(gmail_api_helpers.get_label(session.service, params.label_id))}


def update_label(
    session,
    label_id: str,
    name: Optional[str] = None,
    label_list_visibility: Optional[str] = None,
    message_list_visibility: Optional[str] = None,
) -> Dict[str, Any]:
    """Rename a label or change its visibility; at least one field is required."""
    params = parse_params(
        UpdateLabelParams,
        label_id=label_id,
        name=name,
        label_list_visibility=label_list_visibility,
        message_list_visibility=message_list_visibility,
    )
    changes: Dict[str, Any] = {}
    if params.name:
        changes["name"] = params.name
    if params.label_list_visibility:
        changes["labelListVisibility"] = params.label_list_visibility
    if params.message_list_visibility:
        changes["messageListVisibility"] = params.message_list_visibility
    label = gmail_api_helpers.update_label(session.service, params.label_id, changes)
    return {"message": "Label updated successfully!", "label": _format_label(label)}


def delete_label(session, label_id: str) -> Dict[str, Any]:
    params = parse_params(LabelIdParams, label_id=label_id)
    gmail_api_helpers.delete_label(session.service, params.label_id)
    return {"message": f'Label "{params.label_id}" deleted successfully!'}


# --- Labels on messages ---
def label_email(session, email_id: str, label_ids: List[str]) -> Dict[str, Any]:
    params = parse_params(EmailLabelsParams, email_id=email_id, label_ids=label_ids)
    gmail_api_helpers.modify_message(session.service, params.email_id, add_label_ids=params.label_ids)
    return {
        "message": f"Added {len(params.label_ids)} label(s) to email {params.email_id}",
        "email_id": params.email_id,
        "added_labels": params.label_ids,
    }


def label_emails(session, email_ids: List[str], label_ids: List[str]) -> Dict[str, Any]:
    params = parse_params(EmailsLabelsParams, email_ids=email_ids, label_ids=label_ids)
    gmail_api_helpers.batch_modify_message_labels(session.service, params.email_ids, add_label_ids=params.label_ids)
    return {
        "message": f"Added {len(params.label_ids)} label(s) to {len(params.email_ids)} email(s)",
        "email_count": len(params.email_ids),
        "added_labels": params.label_ids,
    }


def unlabel_email(session, email_id: str, label_ids: List[str]) -> Dict[str, Any]:
    params = parse_params(EmailLabelsParams, email_id=email_id, label_ids=label_ids)
    gmail_api_helpers.modify_message(session.service, params.email_id, remove_label_ids=params.label_ids)
    return {
        "message": f"Removed {len(params.label_ids)} label(s) from email {params.email_id}",
        "email_id": params.email_id,
        "removed_labels": params.label_ids,
    }


def unlabel_emails(session, email_ids: List[str], label_ids: List[str]) -> Dict[str, Any]:
    params = parse_params(EmailsLabelsParams, email_ids=email_ids, label_ids=label_ids)
    gmail_api_helpers.batch_modify_message_labels(
        session.service, params.email_ids, remove_label_ids=params.label_ids
    )
    return {
        "message": f"Removed {len(params.label_ids)} label(s) from {len(params.email_ids)} email(s)",
        "email_count": len(params.email_ids),
        "removed_labels": params.label_ids,
    }


def set_email_labels(session, email_id: str, label_ids: List[str]) -> Dict[str, Any]:
    """Replace an email's user labels with `label_ids`; system labels are kept."""
    params = parse_params(SetEmailLabelsParams, email_id=email_id, label_ids=label_ids)
    service = session.service
    message = gmail_api_helpers.get_message_details(service, params.email_id, email_format="minimal")
    to_remove = batch_api_service.labels_to_replace([message.get("labelIds", [])], params.label_ids)
    gmail_api_helpers.modify_message(
        service, params.email_id, add_label_ids=params.label_ids, remove_label_ids=to_remove
    )
    return {
        "message": f"Set labels for email {params.email_id}",
        "email_id": params.email_id,
        "new_labels": params.label_ids,
        "removed_labels": to_remove,
    }


def get_email_labels(session, email_id: str) -> Dict[str, Any]:
    params = parse_params(EmailIdParams, email_id=email_id)
    service = session.service
    message = gmail_api_helpers.get_message_details(service, params.email_id, email_format="minimal")
    by_id = {label["id"]: label for label in gmail_api_helpers.list_labels(service)}
    labels = [
        {
            "id": label_id,
            "name": by_id.get(label_id, {}).get("name", "Unknown"),
            "type": by_id.get(label_id, {}).get("type", "unknown"),
        }
        for label_id in message.get("labelIds", [])
    ]
    return {"email_id": params.email_id, "labels": labels, "label_count": len(labels)}


def search_by_label(
    session,
    label_names: Optional[List[str]] = None,
    label_ids: Optional[List[str]] = None,
    additional_query: str = "",
    max: int = 50,
) -> Union[str, Dict[str, Any]]:
    """Find emails carrying all of the given labels, optionally narrowed by extra query terms."""
    params = parse_params(
        SearchByLabelParams,
        label_names=label_names,
        label_ids=label_ids,
        additional_query=additional_query,
        max=max,
    )
    terms = [f'label:"{name}"' for name in params.label_names or []]
    terms += [f"label:{label_id}" for label_id in params.label_ids or []]
    if params.additional_query:
        terms.append(params.additional_query)
    query = " ".join(terms)

    response = gmail_api_helpers.list_messages(session.service, query_string=query, max_results=params.max)
    ids = [m["id"] for m in response.get("messages", [])]
    if not ids:
        return f'No emails found for label search: "{query}"'
    emails = fetch_summaries(session.service, ids, include_labels=True)
    return {"query": query, "count": len(emails), "emails": emails}


# --- Bulk labeling ---
def bulk_label_emails(
    session,
    query: str,
    label_ids: List[str],
    operation: str = "add",
    batch_size: int = 100,
    dry_run: bool = False,
) -> Dict[str, Any]:
    """Add, remove or replace labels on every email matching a query, page by page."""
    params = parse_params(
        BulkLabelParams, query=query, label_ids=label_ids, operation=operation, batch_size=batch_size, dry_run=dry_run
    )
    result = batch_api_service.run_bulk_action(
        session.service,
        params.query,
        BULK_OPERATIONS[params.operation],
        label_ids=params.label_ids,
        batch_size=params.batch_size,
        dry_run=params.dry_run,
    )
    result["operation"] = params.operation
    result["labels_applied"] = params.label_ids
    return result


def auto_label_emails(session, rules: List[Dict[str, Any]], dry_run: bool = False) -> Dict[str, Any]:
    """Apply one-off labeling rules (not saved) to the first 100 matches of each."""
    params = parse_params(AutoLabelParams, rules=rules, dry_run=dry_run)
    return rules_api_service.auto_label_emails(session.service, params.rules, dry_run=params.dry_run)


def label_emails_by_query(
    session,
    query: str,
    label_name: Optional[str] = None,
    label_id: Optional[str] = None,
    max: int = 100,
    dry_run: bool = False,
) -> Union[str, Dict[str, Any]]:
    """Label up to `max` (1-500) emails matching a query; label_name is created if missing."""
    params = parse_params(
        LabelByQueryParams, query=query, label_name=label_name, label_id=label_id, max=max, dry_run=dry_run
    )
    service = session.service
    target_label_id = params.label_id
    if params.label_name:
        if params.dry_run:
            existing = gmail_api_helpers.find_label_by_name(service, params.label_name)
            target_label_id = existing["id"] if existing else None
        else:
            target_label_id = gmail_api_helpers.find_or_create_label(service, params.label_name)

    response = gmail_api_helpers.list_messages(service, query_string=params.query, max_results=params.max)
    ids = [m["id"] for m in response.get("messages", [])]
    if not ids:
        return f'No emails found matching query: "{params.query}"'

    base = {"query": params.query, "label_name": params.label_name, "label_id": target_label_id}
    if params.dry_run:
        base.update(
            {
                "action": "DRY RUN - No emails were labeled",
                "emails_found": len(ids),
                "note": "This shows what would be labeled without actually labeling",
            }
        )
        return base

    gmail_api_helpers.batch_modify_message_labels(service, ids, add_label_ids=[target_label_id])
    base.update({"message": "Emails labeled successfully!", "emails_labeled": len(ids)})
    return base


# --- Maintenance ---
def get_label_statistics(session, label_ids: Optional[List[str]] = None) -> Dict[str, Any]:
    """Message/thread counts and read percentage per label (user labels by default)."""
    params = parse_params(LabelStatisticsParams, label_ids=label_ids)
    service = session.service
    all_labels = gmail_api_helpers.list_labels(service)
    if params.label_ids:
        targets = [label for label in all_labels if label["id"] in params.label_ids]
    else:
        targets = [label for label in all_labels if label.get("type") == "user"]

    statistics = []
    for label in targets:
        # labels.list carries no counters; labels.get does.
        details = gmail_api_helpers.get_label(service, label["id"])
        total = details.get("messagesTotal", 0)
        unread = details.get("messagesUnread", 0)
        statistics.append(
            {
                "id": details.get("id"),
                "name": details.get("name"),
                "type": details.get("type", "user"),
                "messages_total": total,
                "messages_unread": unread,
                "threads_total": details.get("threadsTotal", 0),
                "threads_unread": details.get("threadsUnread", 0),
                "read_percentage": round((total - unread) / total * 100) if total > 0 else 0,
            }
        )

    totals = {
        "total_labels": len(statistics),
        "total_messages": sum(s["messages_total"] for s in statistics),
        "total_unread": sum(s["messages_unread"] for s in statistics),
        "total_threads": sum(s["threads_total"] for s in statistics),
        "overall_read_percentage": (
            round(sum(s["read_percentage"] for s in statistics) / len(statistics)) if statistics else 0
        ),
    }
    return {"message": "Label statistics retrieved", "statistics": statistics, "totals": totals}


def cleanup_unused_labels(session, dry_run: bool = True) -> Dict[str, Any]:
    """Delete user labels with no messages and no threads. Dry run unless dry_run=false."""
    params = parse_params(CleanupLabelsParams, dry_run=dry_run)
    service = session.service
    user_labels = [label for label in gmail_api_helpers.list_labels(service) if _is_user_label(label)]
    unused = []
    for label in user_labels:
        details = gmail_api_helpers.get_label(service, label["id"])
        if details.get("messagesTotal", 0) == 0 and details.get("threadsTotal", 0) == 0:
            unused.append(details)

    if not unused:
        return {"message": "No unused labels found", "total_user_labels": len(user_labels), "unused_labels": 0}

    if params.dry_run:
        return {
            "action": "DRY RUN - No labels were deleted",
            "total_user_labels": len(user_labels),
            "unused_labels_found": len(unused),
            "unused_labels": [
                {"id": label["id"], "name": label.get("name"), "messages_total": 0, "threads_total": 0}
                for label in unused
            ],
            "note": "Set dry_run=false to actually delete these labels",
        }

    deleted, errors = [], []
    for label in unused:
        try:
            gmail_api_helpers.delete_label(service, label["id"])
            deleted.append({"id": label["id"], "name": label.get("name")})
        except GmailMcpError as e:
            errors.append({"id": label["id"], "name": label.get("name"), "error": e.message})
    return {
        "message": "Label cleanup completed",
        "total_user_labels": len(user_labels),
        "deleted_count": len(deleted),
        "failed_deletions": len(errors),
        "deleted_labels": deleted,
        "errors": errors,
    }


TOOLS = [
    create_label,
    create_labels,
    list_labels,
    get_label,
    update_label,
    delete_label,
    label_email,
    label_emails,
    unlabel_email,
    unlabel_emails,
    set_email_labels,
    get_email_labels,
    search_by_label,
    bulk_label_emails,
    auto_label_emails,
    label_emails_by_query,
    get_label_statistics,
    cleanup_unused_labels,
]
