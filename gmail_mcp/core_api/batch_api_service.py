# gmail_mcp/core_api/batch_api_service.py
import logging
import math
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional
from gmail_mcp.core_api import gmail_api_service as gmail_api_helpers
from .exceptions import GmailMcpError, InvalidParameterError
from .message_utils import extract_headers

logger = logging.getLogger(__name__)

MIN_BATCH_SIZE = 10
MAX_BATCH_SIZE = 500
MAX_REPORTED_ERRORS = 20


class BulkAction(str, Enum):
    DELETE = "delete"
    TRASH = "trash"
    ADD_LABELS = "add_labels"
    REMOVE_LABELS = "remove_labels"
    REPLACE_LABELS = "replace_labels"


LABEL_ACTIONS = (BulkAction.ADD_LABELS, BulkAction.REMOVE_LABELS, BulkAction.REPLACE_LABELS)


@dataclass
class BatchOperationResult:
    total_processed: int = 0
    successful: int = 0
    failed: int = 0
    batches_processed: int = 0
    retried_individually: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def record_error(self, batch: int, error: str, count: int) -> None:
        if len(self.errors) < MAX_REPORTED_ERRORS:
            self.errors.append({"batch": batch, "error": error, "count": count})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PageOutcome:
    """Per-item outcome of applying an action to one page of message ids."""

    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    retried: int = 0


def clamp_batch_size(batch_size: Any) -> int:
    try:
        size = int(batch_size) if batch_size not in (None, "") else 100
    except (TypeError, ValueError):
        size = 100
    return max(MIN_BATCH_SIZE, min(MAX_BATCH_SIZE, size))


def _error_text(error: Exception) -> str:
    if isinstance(error, GmailMcpError):
        return error.message
    return str(error)


def labels_to_replace(label_sets: List[List[str]], new_label_ids: List[str]) -> List[str]:
    """Union of the non-system labels currently on the messages, minus the ones being added."""
    keep = set(gmail_api_helpers.SYSTEM_LABELS) | set(new_label_ids)
    removal: List[str] = []
    for label_ids in label_sets:
        for label_id in label_ids:
            if label_id not in keep and label_id not in removal:
                removal.append(label_id)
    return removal


@dataclass
class LabelChanges:
    add: List[str] = field(default_factory=list)
    remove: List[str] = field(default_factory=list)
    # Ids whose current labels could not be read for a replace, with the reason.
    unreadable: Dict[str, str] = field(default_factory=dict)

    def targets(self, message_ids: List[str]) -> List[str]:
        return [mid for mid in message_ids if mid not in self.unreadable]


def _label_changes(
    service: Any, message_ids: List[str], action: BulkAction, label_ids: List[str]
) -> LabelChanges:
    if action == BulkAction.TRASH:
        return LabelChanges(add=["TRASH"])
    if action == BulkAction.ADD_LABELS:
        return LabelChanges(add=list(label_ids))
    if action == BulkAction.REMOVE_LABELS:
        return LabelChanges(remove=list(label_ids))
    # Replace: current labels are fetched for the whole page in one HTTP batch.
    fetched = gmail_api_helpers.get_messages_individually(service, message_ids, email_format="minimal")
    unreadable: Dict[str, str] = {}
    for message_id in message_ids:
        if message_id not in fetched.succeeded:
            reason = fetched.failed.get(message_id, "No response")
            unreadable[message_id] = f"Could not read current labels: {reason}"
            logger.warning(f"Could not read current labels of {message_id} for replace: {reason}")
    label_sets = [response.get("labelIds", []) for response in fetched.succeeded.values()]
    return LabelChanges(
        add=list(label_ids), remove=labels_to_replace(label_sets, label_ids), unreadable=unreadable
    )


def _attempt_bulk(
    service: Any,
    message_ids: List[str],
    action: BulkAction,
    label_ids: Optional[List[str]] = None,
) -> Dict[str, str]:
    """Tier 1: one call covering the whole page. Raises on failure.

    Returns the ids left out of the call because their labels could not be read.
    """
    if action == BulkAction.DELETE:
        gmail_api_helpers.batch_delete_permanently(service, message_ids)
        return {}
    changes = _label_changes(service, message_ids, action, label_ids or [])
    gmail_api_helpers.batch_modify_message_labels(
        service, changes.targets(message_ids), add_label_ids=changes.add, remove_label_ids=changes.remove
    )
    return changes.unreadable


def _retry_individually(
    service: Any,
    message_ids: List[str],
    action: BulkAction,
    label_ids: Optional[List[str]] = None,
) -> PageOutcome:
    """Tier 2: the same action issued once per message id, fired together."""
    logger.info(f"Retrying {action.value} individually for {len(message_ids)} messages.")
    skipped: Dict[str, str] = {}
    if action == BulkAction.DELETE:
        results = gmail_api_helpers.delete_messages_individually(service, message_ids)
    elif action == BulkAction.TRASH:
        results = gmail_api_helpers.trash_messages_individually(service, message_ids)
    else:
        changes = _label_changes(service, message_ids, action, label_ids or [])
        skipped = changes.unreadable
        results = gmail_api_helpers.modify_messages_individually(
            service, changes.targets(message_ids), add_label_ids=changes.add, remove_label_ids=changes.remove
        )
    failed: Dict[str, str] = {}
    for mid in message_ids:
        if mid in skipped:
            failed[mid] = skipped[mid]
        elif mid not in results.succeeded:
            failed[mid] = results.failed.get(mid, "No response")
    return PageOutcome(
        succeeded=[mid for mid in message_ids if mid not in failed],
        failed=failed,
        retried=len(message_ids),
    )


def apply_to_page(
    service: Any,
    message_ids: List[str],
    action: BulkAction,
    label_ids: Optional[List[str]] = None,
) -> PageOutcome:
    """Applies `action` to one page: bulk call first, per-item fallback if it fails."""
    try:
        skipped = _attempt_bulk(service, message_ids, action, label_ids)
        return PageOutcome(succeeded=[mid for mid in message_ids if mid not in skipped], failed=dict(skipped))
    except GmailMcpError as e:
        logger.warning(f"Bulk {action.value} failed for {len(message_ids)} messages: {e.message}")
    return _retry_individually(service, message_ids, action, label_ids)


def _validate(action: Any, label_ids: Optional[List[str]]) -> BulkAction:
    try:
        action = BulkAction(action)
    except ValueError:
        raise InvalidParameterError(
            f"Unknown bulk action '{action}'. Expected one of: {', '.join(a.value for a in BulkAction)}"
        )
    if action in LABEL_ACTIONS and not label_ids:
        raise InvalidParameterError("label_ids array is required")
    return action


def run_bulk_action(
    service: Any,
    query: str,
    action: Any,
    label_ids: Optional[List[str]] = None,
    batch_size: Any = 100,
    dry_run: bool = False,
) -> Dict[str, Any]:
    """
    Applies a bulk action to every message matching `query`, one page at a time.

    The first list call (page size 1) only provides `resultSizeEstimate` for
    reporting; the loop itself ends on an empty page or a missing page token.
    A failing page never aborts the run.

    Returns a dict with "status" ("no_matches", "dry_run" or "completed") plus
    either the estimate details or the BatchOperationResult fields.
    """
    if not service:
        raise InvalidParameterError("Gmail service not available for run_bulk_action.")
    if not query:
        raise InvalidParameterError("query is required")
    action = _validate(action, label_ids)
    size = clamp_batch_size(batch_size)

    first = gmail_api_helpers.list_messages(service, query_string=query, max_results=1)
    estimate = first.get("resultSizeEstimate") or 0
    if estimate == 0:
        logger.info(f"No emails found matching query '{query}'.")
        return {"status": "no_matches", "query": query, "message": f'No emails found matching query: "{query}"'}

    if dry_run:
        return {
            "status": "dry_run",
            "query": query,
            "action": action.value,
            "total_estimated": estimate,
            "batch_size": size,
            "estimated_batches": math.ceil(estimate / size),
            "note": "This is an estimate. Actual count may vary.",
        }

    result = BatchOperationResult()
    page_token = None
    page_number = 0
    while True:
        page_number += 1
        try:
            page = gmail_api_helpers.list_messages(
                service, query_string=query, max_results=size, page_token=page_token
            )
        except GmailMcpError as e:
            # Without the page we have no token to continue from.
            logger.error(f"Listing page {page_number} for bulk {action.value} failed: {e.message}")
            result.record_error(page_number, _error_text(e), 0)
            break

        message_ids = [m["id"] for m in page.get("messages", [])]
        if not message_ids:
            break

        outcome = apply_to_page(service, message_ids, action, label_ids)
        result.batches_processed += 1
        result.total_processed += len(message_ids)
        result.successful += len(outcome.succeeded)
        result.failed += len(outcome.failed)
        result.retried_individually += outcome.retried
        if outcome.failed:
            first_error = next(iter(outcome.failed.values()))
            result.record_error(page_number, first_error, len(outcome.failed))

        logger.info(
            f"Bulk {action.value} page {page_number}: {len(outcome.succeeded)} ok, {len(outcome.failed)} failed."
        )
        page_token = page.get("nextPageToken")
        if not page_token:
            break

    summary = {"status": "completed", "query": query, "action": action.value, "batch_size": size}
    summary.update(result.to_dict())
    return summary


def delete_matching_page(
    service: Any, query: str, max_results: int = 50, permanent: bool = False, dry_run: bool = False
) -> Dict[str, Any]:
    """
    Deletes (or trashes) a single page of up to `max_results` matches, reporting
    sender/subject/date of each affected message.
    """
    if not query:
        raise InvalidParameterError("query is required")
    page = gmail_api_helpers.list_messages(service, query_string=query, max_results=max_results)
    message_ids = [m["id"] for m in page.get("messages", [])]
    if not message_ids:
        return {"status": "no_matches", "query": query, "message": f'No emails found matching query: "{query}"'}

    fetched = gmail_api_helpers.get_messages_individually(
        service, message_ids, email_format="metadata", metadata_headers=["From", "Subject", "Date"]
    )
    emails = []
    for message_id in message_ids:
        if message_id in fetched.succeeded:
            headers = extract_headers(fetched.succeeded[message_id], ["From", "Subject", "Date"])
            emails.append(
                {"id": message_id, "from": headers["From"], "subject": headers["Subject"], "date": headers["Date"]}
            )
        else:
            emails.append(
                {
                    "id": message_id,
                    "from": "Unknown",
                    "subject": "Error loading",
                    "date": "Unknown",
                    "error": fetched.failed.get(message_id, ""),
                }
            )

    if dry_run:
        return {
            "status": "dry_run",
            "action": "DRY RUN - No emails were deleted",
            "query": query,
            "count": len(emails),
            "emails": emails,
        }

    action = BulkAction.DELETE if permanent else BulkAction.TRASH
    outcome = apply_to_page(service, message_ids, action)
    done = set(outcome.succeeded)
    verb = "permanently deleted" if permanent else "moved to trash"
    return {
        "status": "completed",
        "action": f"{len(done)} emails {verb}",
        "query": query,
        "successful": len(done),
        "failed": len(outcome.failed),
        "retried_individually": outcome.retried,
        "errors": [{"id": mid, "error": reason} for mid, reason in outcome.failed.items()],
        "emails": [email for email in emails if email["id"] in done],
    }
