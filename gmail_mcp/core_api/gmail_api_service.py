import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, List, Dict, Any, Callable
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from gmail_mcp.core import config as app_config  # For paths and SCOPES
from .exceptions import (
    GmailApiError,
    GmailMcpError,
    InvalidParameterError,
    InvalidRequestError,
    LabelNotFoundError,
    MessageNotFoundError,
    NotAuthorizedError,
)

logger = logging.getLogger(__name__)

# Gmail accepts up to 100 sub-requests per HTTP batch but throttles well below that.
INDIVIDUAL_BATCH_SIZE = 50
# Hard limit of messages.batchModify / batchDelete.
MAX_IDS_PER_BATCH_CALL = 1000

SYSTEM_LABELS = [
    "INBOX",
    "SENT",
    "DRAFT",
    "SPAM",
    "TRASH",
    "IMPORTANT",
    "STARRED",
    "UNREAD",
]


# --- Authentication ---
def load_client_config() -> Dict[str, Any]:
    """
    Returns an OAuth client config in the 'installed' shape google_auth_oauthlib expects.

    GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET take precedence over credentials.json.
    credentials.json may be the file downloaded from Google Cloud ({"installed": {...}})
    or a flat {"client_id": ..., "client_secret": ...} object.
    """
    client_id = os.environ.get("GOOGLE_CLIENT_ID")
    client_secret = os.environ.get("GOOGLE_CLIENT_SECRET")

    if not (client_id and client_secret):
        credentials_file_path = Path(app_config.CREDENTIALS_FILE)
        try:
            with open(credentials_file_path, "r") as f:
                raw = json.load(f)
        except (IOError, json.JSONDecodeError) as e:
            raise InvalidRequestError(
                "Missing Google OAuth credentials. Set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET "
                f"or place credentials.json in {app_config.DATA_DIR}",
                original_exception=e,
            )
        section = raw.get("installed") or raw.get("web") or raw
        client_id = section.get("client_id")
        client_secret = section.get("client_secret")
        if not (client_id and client_secret):
            raise InvalidRequestError(
                f"credentials file {credentials_file_path} has no client_id/client_secret."
            )

    return {
        "installed": {
            "client_id": client_id,
            "client_secret": client_secret,
            "auth_uri": "https://accounts.google.com/o/oauth2/auth",
            "token_uri": "https://oauth2.googleapis.com/token",
            "redirect_uris": ["http://localhost", "http://127.0.0.1"],
        }
    }


def save_credentials(creds: Credentials, token_file_path: Optional[Path] = None) -> None:
    """Persists OAuth credentials as token.json."""
    token_file_path = Path(token_file_path or app_config.TOKEN_FILE)
    try:
        token_file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(token_file_path, "w") as token_file_handle:
            token_file_handle.write(creds.to_json())
        logger.info(f"Gmail access token stored successfully at: {token_file_path}")
    except IOError as e:
        logger.error(f"Failed to save token file at {token_file_path}: {e}", exc_info=True)
        raise GmailMcpError(f"Could not save token to {token_file_path}: {e}", original_exception=e)


def _build_service(creds: Credentials) -> Any:
    try:
        service = build("gmail", "v1", credentials=creds, cache_discovery=False)
        logger.debug("Gmail API service built successfully.")
        return service
    except HttpError as error:
        logger.error(
            f"API error building Gmail service: {error.resp.status} - {error.content}",
            exc_info=True,
        )
        raise GmailApiError(
            f"API error building Gmail service: {error.resp.status}",
            original_exception=error,
        )
    except Exception as e:
        logger.error(f"Unexpected error building Gmail service: {e}", exc_info=True)
        raise GmailMcpError(f"Unexpected error building Gmail service: {e}")


def get_authenticated_service(interactive_auth_ok: bool = True):
    """
    Authenticates with Gmail using OAuth 2.0 and returns a service object.
    Handles token loading, refreshing, and the initial browser flow if necessary.

    Args:
        interactive_auth_ok (bool): If False and interactive authentication would be
                                    required, returns None instead of starting it.

    Returns:
        Optional[googleapiclient.discovery.Resource]: The Gmail service object, or None
                                                     if non-interactive auth is requested
                                                     but not possible.
    """
    creds = None
    token_file_path = Path(app_config.TOKEN_FILE)

    if token_file_path.exists():
        try:
            creds = Credentials.from_authorized_user_file(str(token_file_path), app_config.SCOPES)
        except Exception as e:
            logger.warning(
                f"Could not load token from {token_file_path}: {e}. Will attempt re-authentication."
            )
            creds = None

    if not creds or not creds.valid:
        if creds and creds.expired and creds.refresh_token:
            logger.info("Gmail access token is expired. Attempting to refresh.")
            try:
                creds.refresh(Request())
            except Exception as e:
                logger.error(
                    f"Failed to refresh Gmail token: {e}. Re-authentication required.",
                    exc_info=True,
                )
                creds = None

        if not creds:
            if not interactive_auth_ok:
                logger.info(
                    "Non-interactive authentication requested, but interactive flow would be required. Returning None."
                )
                return None

            logger.info("No valid Gmail credentials found. Starting OAuth flow.")
            client_config = load_client_config()
            try:
                flow = InstalledAppFlow.from_client_config(client_config, app_config.SCOPES)
                creds = flow.run_local_server(
                    port=0,
                    prompt="consent",
                    access_type="offline",
                    authorization_prompt_message="gmail-mcp needs to authorize Gmail access. Please follow browser instructions.",
                )
            except Exception as e:
                logger.error(f"OAuth flow failed: {e}", exc_info=True)
                raise GmailMcpError(f"OAuth authorization failed: {e}", original_exception=e)

        if creds:
            save_credentials(creds, token_file_path)

    if not creds:
        logger.warning("Failed to obtain valid Gmail credentials.")
        return None

    return _build_service(creds)


def get_g_service_client_from_token(
    token_file_path_str: str,
    scopes: List[str],
) -> Any:
    """
    Gets an authenticated Gmail API service client non-interactively using the stored token.
    Refreshes the token if expired and possible, and saves the refreshed token.

    Raises:
        NotAuthorizedError: If the token file is missing or cannot be used.
        GmailApiError: If API errors occur during service build.
    """
    logger.debug(f"Attempting to get Gmail service client from token file: {token_file_path_str}")
    token_file = Path(token_file_path_str)

    if not token_file.exists():
        raise NotAuthorizedError("Not authorized. Run start_oauth to authorize this server.")

    try:
        creds = Credentials.from_authorized_user_file(str(token_file), scopes)
    except Exception as e:
        logger.error(f"Failed to load credentials from token file {token_file}: {e}", exc_info=True)
        raise NotAuthorizedError(
            f"Could not load token from {token_file}. Run start_oauth to re-authorize.",
            original_exception=e,
        )

    if not creds.valid:
        if creds.expired and creds.refresh_token:
            logger.info(f"Access token from {token_file} is expired. Attempting refresh.")
            try:
                creds.refresh(Request())
            except Exception as e_refresh:
                logger.error(f"Failed to refresh access token from {token_file}: {e_refresh}", exc_info=True)
                raise NotAuthorizedError(
                    "Token refresh failed. Run start_oauth to re-authorize.",
                    original_exception=e_refresh,
                )
            save_credentials(creds, token_file)
        else:
            raise NotAuthorizedError(
                f"Token from {token_file} is invalid and cannot be refreshed. Run start_oauth to re-authorize."
            )

    return _build_service(creds)


def _messages(service: Any) -> Any:
    if not service:
        raise InvalidParameterError("Gmail service not available.")
    return service.users().messages()


def _labels(service: Any) -> Any:
    if not service:
        raise InvalidParameterError("Gmail service not available.")
    return service.users().labels()


def _drafts(service: Any) -> Any:
    if not service:
        raise InvalidParameterError("Gmail service not available.")
    return service.users().drafts()


def _execute(request: Any, description: str, not_found_error: Optional[type] = None) -> Any:
    """Executes a prepared API request, translating HttpError into our exceptions."""
    try:
        return request.execute()
    except HttpError as error:
        status = getattr(error.resp, "status", None)
        if not_found_error is not None and status == 404:
            logger.warning(f"Not found while trying to {description}.")
            raise not_found_error(f"Not found: {description}", original_exception=error)
        logger.error(
            f"API error trying to {description}: {status} - {error.content}",
            exc_info=True,
        )
        raise GmailApiError(
            f"API error trying to {description}: {status} {error_reason(error)}",
            original_exception=error,
        )


def error_reason(error: Exception) -> str:
    """Short human-readable reason for an API failure."""
    if isinstance(error, HttpError):
        reason = error._get_reason() if hasattr(error, "_get_reason") else ""
        return reason or str(error)
    if isinstance(error, GmailMcpError) and error.original_exception is not None:
        return error_reason(error.original_exception)
    return str(error)


def get_profile(service: Any) -> Dict[str, Any]:
    if not service:
        raise InvalidParameterError("Gmail service not available for get_profile.")
    return _execute(service.users().getProfile(userId="me"), "fetch the Gmail profile")


# --- Message Read Operations ---
def list_messages(
    service: Any,
    query_string: Optional[str] = None,
    max_results: int = 100,
    page_token: Optional[str] = None,
) -> Dict[str, Any]:
    """Lists message stubs matching the query.

    Returns dict with 'messages', 'nextPageToken' and 'resultSizeEstimate'.
    """
    if not service:
        raise InvalidParameterError("Gmail service not available for list_messages.")

    list_params: Dict[str, Any] = {"userId": "me", "maxResults": max_results}
    if query_string:
        list_params["q"] = query_string
    if page_token:
        list_params["pageToken"] = page_token

    try:
        logger.debug(f"API: Listing messages with params: {list_params}")
        results = _messages(service).list(**list_params).execute()
        return {
            "messages": results.get("messages", []),
            "nextPageToken": results.get("nextPageToken"),
            "resultSizeEstimate": results.get("resultSizeEstimate", 0),
        }
    except HttpError as error:
        logger.error(
            f"API error listing messages: {error.resp.status} - {error.content}",
            exc_info=True,
        )
        raise GmailApiError(
            f"API error listing messages: {error.resp.status}", original_exception=error
        )


def get_message_details(
    service: Any,
    message_id: str,
    email_format: str = "metadata",
    metadata_headers: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Gets a specific message by its ID."""
    if not message_id:
        raise InvalidParameterError("Message ID cannot be empty.")

    valid_formats = ["full", "metadata", "minimal", "raw"]
    actual_format = email_format.lower()
    if actual_format not in valid_formats:
        logger.warning(
            f"Invalid email_format '{email_format}' for get_message_details. Defaulting to 'metadata'."
        )
        actual_format = "metadata"

    params: Dict[str, Any] = {"userId": "me", "id": message_id, "format": actual_format}
    if metadata_headers and actual_format == "metadata":
        params["metadataHeaders"] = metadata_headers

    logger.debug(f"API: Getting message details for ID: {message_id}, Format: {actual_format}")
    return _execute(
        _messages(service).get(**params),
        f"get message {message_id}",
        not_found_error=MessageNotFoundError,
    )


# --- Message Write Operations ---
def modify_message(
    service: Any,
    message_id: str,
    add_label_ids: Optional[List[str]] = None,
    remove_label_ids: Optional[List[str]] = None,
) -> Dict[str, Any]:
    if not message_id:
        raise InvalidParameterError("Message ID cannot be empty.")
    body: Dict[str, Any] = {}
    if add_label_ids:
        body["addLabelIds"] = list(add_label_ids)
    if remove_label_ids:
        body["removeLabelIds"] = list(remove_label_ids)
    logger.debug(f"API: Modifying message {message_id} with {body}")
    return _execute(
        _messages(service).modify(userId="me", id=message_id, body=body),
        f"modify labels of message {message_id}",
        not_found_error=MessageNotFoundError,
    )


def batch_modify_message_labels(
    service: Any,
    message_ids: List[str],
    add_label_ids: Optional[List[str]] = None,
    remove_label_ids: Optional[List[str]] = None,
) -> bool:
    """Modifies labels on up to 1000 messages in a single batchModify call."""
    if not service:
        raise InvalidParameterError("Gmail service not available for batch_modify_message_labels.")
    if not message_ids:
        logger.debug("batch_modify_message_labels called with no message_ids. No action taken.")
        return True
    if len(message_ids) > MAX_IDS_PER_BATCH_CALL:
        raise InvalidParameterError(
            f"batchModify accepts at most {MAX_IDS_PER_BATCH_CALL} ids, got {len(message_ids)}."
        )

    body: Dict[str, Any] = {"ids": list(message_ids)}
    if add_label_ids:
        body["addLabelIds"] = list(add_label_ids)
    if remove_label_ids:
        body["removeLabelIds"] = list(remove_label_ids)

    if "addLabelIds" not in body and "removeLabelIds" not in body:
        logger.info("No label changes requested for batch modification.")
        return True

    try:
        logger.info(
            f"API: Batch modifying labels for {len(message_ids)} messages. "
            f"add={body.get('addLabelIds')} remove={body.get('removeLabelIds')}"
        )
        _messages(service).batchModify(userId="me", body=body).execute()
        logger.info(f"Successfully batch modified labels for {len(message_ids)} messages.")
        return True
    except HttpError as error:
        logger.error(
            f"API error during batch label modification: {error.resp.status} - {error.content}",
            exc_info=True,
        )
        raise GmailApiError(
            f"API error during batch label modification: {error.resp.status} {error_reason(error)}",
            original_exception=error,
        )


def batch_delete_permanently(service: Any, message_ids: List[str]) -> bool:
    """Permanently deletes a batch of messages."""
    if not service:
        raise InvalidParameterError("Gmail service not available for batch_delete_permanently.")
    if not message_ids:
        logger.debug("batch_delete_permanently called with no message_ids. No action taken.")
        return True

    body = {"ids": list(message_ids)}
    try:
        logger.warning(f"API: PERMANENTLY DELETING {len(message_ids)} messages.")
        _messages(service).batchDelete(userId="me", body=body).execute()
        logger.info(f"Successfully batch deleted {len(message_ids)} messages permanently.")
        return True
    except HttpError as error:
        logger.error(
            f"API error during batch permanent deletion: {error.resp.status} - {error.content}",
            exc_info=True,
        )
        raise GmailApiError(
            f"API error during batch permanent deletion: {error.resp.status} {error_reason(error)}",
            original_exception=error,
        )


def trash_message(service: Any, message_id: str) -> Dict[str, Any]:
    return _execute(
        _messages(service).trash(userId="me", id=message_id),
        f"trash message {message_id}",
        not_found_error=MessageNotFoundError,
    )


def delete_message(service: Any, message_id: str) -> None:
    logger.warning(f"API: PERMANENTLY DELETING message {message_id}.")
    _execute(
        _messages(service).delete(userId="me", id=message_id),
        f"delete message {message_id}",
        not_found_error=MessageNotFoundError,
    )


def send_message(service: Any, raw: str, thread_id: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"raw": raw}
    if thread_id:
        body["threadId"] = thread_id
    return _execute(_messages(service).send(userId="me", body=body), "send message")


# --- Individual requests fired together ---
@dataclass
class IndividualResults:
    """Outcome of per-message requests sent through HTTP batches."""

    succeeded: Dict[str, Any] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)


def _execute_individually(
    service: Any,
    message_ids: List[str],
    request_factory: Callable[[str], Any],
    description: str,
) -> IndividualResults:
    """
    Issues one request per message id. Requests are grouped into HTTP batches so they
    are sent together and awaited together; each id gets its own success or failure.
    """
    results = IndividualResults()
    if not message_ids:
        return results

    def callback(request_id: str, response: Any, exception: Optional[Exception]):
        if exception is not None:
            results.failed[request_id] = error_reason(exception)
            logger.warning(f"Individual {description} failed for {request_id}: {exception}")
        else:
            results.succeeded[request_id] = response

    unique_ids = list(dict.fromkeys(message_ids))
    for start in range(0, len(unique_ids), INDIVIDUAL_BATCH_SIZE):
        chunk = unique_ids[start:start + INDIVIDUAL_BATCH_SIZE]
        batch = service.new_batch_http_request(callback=callback)
        for message_id in chunk:
            batch.add(request_factory(message_id), request_id=message_id)
        try:
            batch.execute()
        except HttpError as error:
            # The batch envelope itself failed: every id in it without an answer failed.
            reason = error_reason(error)
            logger.error(f"HTTP batch for {description} failed: {reason}", exc_info=True)
            for message_id in chunk:
                if message_id not in results.succeeded and message_id not in results.failed:
                    results.failed[message_id] = reason

    logger.info(
        f"Individual {description}: {len(results.succeeded)} succeeded, {len(results.failed)} failed."
    )
    return results


def trash_messages_individually(service: Any, message_ids: List[str]) -> IndividualResults:
    messages = _messages(service)
    return _execute_individually(
        service, message_ids, lambda mid: messages.trash(userId="me", id=mid), "trash"
    )


def delete_messages_individually(service: Any, message_ids: List[str]) -> IndividualResults:
    messages = _messages(service)
    return _execute_individually(
        service, message_ids, lambda mid: messages.delete(userId="me", id=mid), "delete"
    )


def modify_messages_individually(
    service: Any,
    message_ids: List[str],
    add_label_ids: Optional[List[str]] = None,
    remove_label_ids: Optional[List[str]] = None,
) -> IndividualResults:
    messages = _messages(service)
    body: Dict[str, Any] = {}
    if add_label_ids:
        body["addLabelIds"] = list(add_label_ids)
    if remove_label_ids:
        body["removeLabelIds"] = list(remove_label_ids)
    return _execute_individually(
        service,
        message_ids,
        lambda mid: messages.modify(userId="me", id=mid, body=body),
        "label modification",
    )


def get_messages_individually(
    service: Any,
    message_ids: List[str],
    email_format: str = "minimal",
    metadata_headers: Optional[List[str]] = None,
) -> IndividualResults:
    messages = _messages(service)

    def make_request(mid: str):
        params: Dict[str, Any] = {"userId": "me", "id": mid, "format": email_format}
        if metadata_headers and email_format == "metadata":
            params["metadataHeaders"] = metadata_headers
        return messages.get(**params)

    return _execute_individually(service, message_ids, make_request, "message fetch")


# --- Label Operations ---
def list_labels(service: Any) -> List[Dict[str, Any]]:
    results = _execute(_labels(service).list(userId="me"), "list labels")
    return results.get("labels", [])


def get_label(service: Any, label_id: str) -> Dict[str, Any]:
    if not label_id:
        raise InvalidParameterError("Label ID cannot be empty.")
    return _execute(
        _labels(service).get(userId="me", id=label_id),
        f"get label {label_id}",
        not_found_error=LabelNotFoundError,
    )


def create_label(
    service: Any,
    name: str,
    label_list_visibility: str = "labelShow",
    message_list_visibility: str = "show",
) -> Dict[str, Any]:
    if not name:
        raise InvalidParameterError("Label name cannot be empty.")
    body = {
        "name": name,
        "labelListVisibility": label_list_visibility,
        "messageListVisibility": message_list_visibility,
    }
    logger.info(f"API: Creating label '{name}'.")
    try:
        return _labels(service).create(userId="me", body=body).execute()
    except HttpError as error:
        if error.resp.status == 409 or "already exists" in str(error).lower():
            raise InvalidRequestError(f'Label "{name}" already exists', original_exception=error)
        logger.error(f"API error creating label '{name}': {error.resp.status}", exc_info=True)
        raise GmailApiError(
            f"Failed to create label: {error_reason(error)}", original_exception=error
        )


def update_label(service: Any, label_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    return _execute(
        _labels(service).patch(userId="me", id=label_id, body=changes),
        f"update label {label_id}",
        not_found_error=LabelNotFoundError,
    )


def delete_label(service: Any, label_id: str) -> None:
    _execute(
        _labels(service).delete(userId="me", id=label_id),
        f"delete label {label_id}",
        not_found_error=LabelNotFoundError,
    )


def find_label_by_name(service: Any, name: str) -> Optional[Dict[str, Any]]:
    """Exact, case-sensitive name match against a fresh label listing (no cache)."""
    for label in list_labels(service):
        if label.get("name") == name:
            return label
    return None


def find_or_create_label(service: Any, name: str) -> str:
    """Returns the id of the label called `name`, creating it if missing."""
    existing = find_label_by_name(service, name)
    if existing:
        return existing["id"]
    created = create_label(service, name)
    logger.info(f"Created label '{name}' with ID {created.get('id')}.")
    return created["id"]


# --- Draft Operations ---
def create_draft(service: Any, raw: str, thread_id: Optional[str] = None) -> Dict[str, Any]:
    message: Dict[str, Any] = {"raw": raw}
    if thread_id:
        message["threadId"] = thread_id
    return _execute(_drafts(service).create(userId="me", body={"message": message}), "create draft")


def get_draft(service: Any, draft_id: str, draft_format: str = "full") -> Dict[str, Any]:
    return _execute(
        _drafts(service).get(userId="me", id=draft_id, format=draft_format),
        f"get draft {draft_id}",
        not_found_error=MessageNotFoundError,
    )


def list_drafts(service: Any, max_results: int = 10) -> List[Dict[str, Any]]:
    results = _execute(_drafts(service).list(userId="me", maxResults=max_results), "list drafts")
    return results.get("drafts", [])


def update_draft(service: Any, draft_id: str, raw: str) -> Dict[str, Any]:
    return _execute(
        _drafts(service).update(userId="me", id=draft_id, body={"message": {"raw": raw}}),
        f"update draft {draft_id}",
        not_found_error=MessageNotFoundError,
    )


def send_draft(service: Any, draft_id: str) -> Dict[str, Any]:
    return _execute(
        _drafts(service).send(userId="me", body={"id": draft_id}),
        f"send draft {draft_id}",
        not_found_error=MessageNotFoundError,
    )


def delete_draft(service: Any, draft_id: str) -> None:
    _execute(
        _drafts(service).delete(userId="me", id=draft_id),
        f"delete draft {draft_id}",
        not_found_error=MessageNotFoundError,
    )
