import base64
import logging
import re
from datetime import datetime, timedelta
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional

from .exceptions import InvalidParameterError

logger = logging.getLogger(__name__)

SUMMARY_HEADERS = ["From", "Subject", "Date", "Message-ID"]

DUTCH_MONTHS = {
    "jan": 1, "januari": 1,
    "feb": 2, "februari": 2,
    "mrt": 3, "maart": 3,
    "apr": 4, "april": 4,
    "mei": 5,
    "jun": 6, "juni": 6,
    "jul": 7, "juli": 7,
    "aug": 8, "augustus": 8,
    "sep": 9, "september": 9,
    "okt": 10, "oktober": 10,
    "nov": 11, "november": 11,
    "dec": 12, "december": 12,
}

_DUTCH_DATE_RE = re.compile(
    r"(\d{1,2})\s+(" + "|".join(sorted(DUTCH_MONTHS, key=len, reverse=True)) + r")\s+(\d{1,2}):(\d{2})"
)
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")
_CLOCK_RE = re.compile(r"(\d{1,2}):?(\d{2})?\s*(am|pm)?")
_RELATIVE_RE = re.compile(r"in\s+(\d+)\s+(minute|hour|day)s?")


def extract_headers(message: Dict[str, Any], header_names: List[str]) -> Dict[str, str]:
    """Case-insensitive header lookup on a Gmail message (or draft message) resource."""
    headers = (message.get("payload") or {}).get("headers") or []
    wanted = {name.lower(): name for name in header_names}
    found = {name: "" for name in header_names}
    for header in headers:
        key = str(header.get("name", "")).lower()
        if key in wanted and not found[wanted[key]]:
            found[wanted[key]] = header.get("value", "")
    return found


def summarize_message(message: Dict[str, Any]) -> Dict[str, Any]:
    headers = extract_headers(message, SUMMARY_HEADERS)
    return {
        "id": message.get("id"),
        "threadId": message.get("threadId"),
        "from": headers["From"],
        "subject": headers["Subject"],
        "date": headers["Date"],
        "snippet": message.get("snippet", ""),
    }


def _decode_base64url(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")


def _find_part(payload: Optional[Dict[str, Any]], mime_type: str) -> str:
    if not payload:
        return ""
    data = (payload.get("body") or {}).get("data")
    if payload.get("mimeType") == mime_type and data:
        return _decode_base64url(data)
    for part in payload.get("parts") or []:
        text = _find_part(part, mime_type)
        if text:
            return text
    return ""


def extract_plain_text(payload: Optional[Dict[str, Any]]) -> str:
    """First text/plain body found in a depth-first walk of the MIME tree."""
    return _find_part(payload, "text/plain")


def extract_html(payload: Optional[Dict[str, Any]]) -> str:
    return _find_part(payload, "text/html")


def reply_subject(subject: Optional[str]) -> str:
    subject = subject or ""
    return subject if subject.lower().startswith("re:") else f"Re: {subject}"


def build_raw_message(
    to: str,
    subject: str,
    body: str,
    html: Optional[str] = None,
    in_reply_to: Optional[str] = None,
) -> str:
    """Builds an RFC 2822 message and returns it base64url encoded for the `raw` field."""
    if html:
        message = MIMEMultipart("alternative")
        message.attach(MIMEText(body or "", "plain", "utf-8"))
        message.attach(MIMEText(html, "html", "utf-8"))
    else:
        message = MIMEText(body or "", "plain", "utf-8")

    message["To"] = to
    message["Subject"] = subject
    if in_reply_to:
        message["In-Reply-To"] = in_reply_to
        message["References"] = in_reply_to

    return base64.urlsafe_b64encode(message.as_bytes()).decode()


def _format_table_date(raw_date: str) -> str:
    try:
        parsed = parsedate_to_datetime(raw_date)
    except (TypeError, ValueError, IndexError):
        return raw_date or ""
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone()
    return parsed.strftime("%d/%m %H:%M")


def format_emails_table(emails: List[Dict[str, Any]], empty_message: str = "No unread emails found.") -> str:
    """Markdown table with a 1-based row number, DD/MM HH:MM date, sender name and subject."""
    if not emails:
        return empty_message

    lines = ["| ID | Date | Sender | Subject |", "|---|---|---|---|"]
    for row_number, email in enumerate(emails, start=1):
        sender = (email.get("from") or "").split("<")[0].strip()
        subject = email.get("subject") or ""
        if len(subject) > 50:
            subject = subject[:47] + "..."
        lines.append(
            f"| {row_number} | {_format_table_date(email.get('date', ''))} | {sender} | {subject} |"
        )
    table = "\n".join(lines) + "\n"
    table += f"\n**Total: {len(emails)} unread emails**\n"
    return table


def parse_days(value: Any, default: int = 7) -> int:
    """Accepts "2", "3d", "2 days", "--2"; result is clamped to 1..30."""
    if value is None or value == "":
        return default
    cleaned = str(value).lower().strip()
    cleaned = re.sub(r"^--", "", cleaned)
    cleaned = re.sub(r"^days?\s*", "", cleaned)
    match = re.match(r"^(\d+)", cleaned)
    if not match:
        return default
    return max(1, min(30, int(match.group(1))))


def clamp(value: Any, low: int, high: int, default: int) -> int:
    try:
        number = int(value) if value not in (None, "") else default
    except (TypeError, ValueError):
        number = default
    return max(low, min(high, number))


def parse_snooze_date(value: str, now: Optional[datetime] = None) -> datetime:
    """
    Parses the snooze formats we support into an aware local datetime:
    ISO 8601, Dutch "23 okt 16:00", "tomorrow [HH[:MM]][am|pm]" (9:00 by default),
    "next monday", "next week" and "in N minutes|hours|days".
    """
    if not value:
        raise InvalidParameterError("snooze_date is required")

    now = now or datetime.now().astimezone()
    text = str(value).strip()
    lowered = text.lower()

    if _ISO_DATE_RE.match(text):
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError as e:
            raise InvalidParameterError(
                "Invalid date format. Use ISO format (YYYY-MM-DDTHH:MM:SS) or relative format",
                original_exception=e,
            )
        return parsed.astimezone(now.tzinfo) if parsed.tzinfo else parsed.replace(tzinfo=now.tzinfo)

    dutch = _DUTCH_DATE_RE.search(lowered)
    if dutch:
        day, month_name, hours, minutes = dutch.groups()
        try:
            candidate = now.replace(
                month=DUTCH_MONTHS[month_name], day=int(day),
                hour=int(hours), minute=int(minutes), second=0, microsecond=0,
            )
        except ValueError as e:
            raise InvalidParameterError(f"Invalid date: {text}", original_exception=e)
        if candidate < now:
            candidate = candidate.replace(year=candidate.year + 1)
        return candidate

    if "tomorrow" in lowered:
        tomorrow = now + timedelta(days=1)
        clock = _CLOCK_RE.search(lowered)
        hours, minutes = 9, 0
        if clock:
            hours = int(clock.group(1))
            minutes = int(clock.group(2) or 0)
            period = clock.group(3)
            if period == "pm" and hours != 12:
                hours += 12
            if period == "am" and hours == 12:
                hours = 0
        if hours > 23 or minutes > 59:
            raise InvalidParameterError(f"Invalid time in snooze date: {text}")
        return tomorrow.replace(hour=hours, minute=minutes, second=0, microsecond=0)

    if "next monday" in lowered:
        days_ahead = (0 - now.weekday()) % 7 or 7
        return (now + timedelta(days=days_ahead)).replace(hour=9, minute=0, second=0, microsecond=0)

    if "next week" in lowered:
        return (now + timedelta(days=7)).replace(hour=9, minute=0, second=0, microsecond=0)

    relative = _RELATIVE_RE.search(lowered)
    if relative:
        amount, unit = int(relative.group(1)), relative.group(2)
        return now + timedelta(**{f"{unit}s": amount})

    raise InvalidParameterError(
        'Unsupported date format. Use ISO format (YYYY-MM-DDTHH:MM:SS), Dutch format ("23 okt 16:00"), '
        'or relative format like "tomorrow 9am", "next monday", "in 2 hours"'
    )
