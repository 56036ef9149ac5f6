import click
import json
import logging
import sys
from typing import Any, Optional, Tuple
from gmail_mcp.core_api.exceptions import GmailMcpError

logger = logging.getLogger(__name__)


def _confirm_action(
    prompt_message: str,
    yes_flag: bool,
    default_abort_message: str = "Action aborted by user.",
    log_confirmation_bypass: bool = True,
) -> Tuple[bool, str]:
    """
    Prompts user for confirmation or bypasses if yes_flag is True.
    Returns a tuple: (bool_confirmed_or_bypassed, message_to_display_or_log).
    """
    if yes_flag:
        bypass_message = f"Confirmation bypassed by --yes flag for: {prompt_message}"
        if log_confirmation_bypass:
            logger.info(f"Confirmation bypassed by --yes flag for prompt: '{prompt_message}'")
        return True, bypass_message

    if not click.confirm(prompt_message, default=False, abort=False):
        logger.info(f"User aborted action for prompt: '{prompt_message}'")
        return False, default_abort_message

    logger.info(f"User confirmed action for prompt: '{prompt_message}'")
    return True, ""


def _write_json_response(
    status: str,
    command_executed: str,
    message: str,
    data: Any = None,
    error_details: Optional[dict] = None,
) -> None:
    """Writes the standard JSON envelope used by every `--output-format json` command."""
    response_obj = {
        "status": status,
        "command_executed": command_executed,
        "message": message,
        "data": data,
        "error_details": error_details,
    }
    sys.stdout.write(json.dumps(response_obj, indent=2, default=str) + "\n")


def _exit_with_error(
    ctx: click.Context,
    output_format: str,
    command_executed: str,
    message: str,
    code: str,
    details: Optional[str] = None,
) -> None:
    """Reports a failed command in the requested format and exits with status 1."""
    if output_format == "json":
        _write_json_response(
            "error",
            command_executed,
            message,
            error_details={"code": code, "details": details or message},
        )
    else:
        click.secho(message, fg="red", err=True)
    ctx.exit(1)


def _error_code(error: Exception) -> str:
    """RuleNotFoundError -> RULE_NOT_FOUND_ERROR."""
    name = error.__class__.__name__
    return "".join(f"_{c}" if c.isupper() and i else c for i, c in enumerate(name)).upper()


def _handle_command_failure(ctx: click.Context, output_format: str, command_executed: str, error: Exception) -> None:
    """Logs and reports an exception raised by a command body, then exits with status 1."""
    if isinstance(error, GmailMcpError):
        msg = f"Error during '{command_executed}': {error.message}"
        code = _error_code(error)
        details = str(error.original_exception or error.message)
    else:
        msg = f"An unexpected error occurred in '{command_executed}': {error}"
        code = "UNEXPECTED_ERROR"
        details = str(error)
    logger.error(msg, exc_info=True)
    _exit_with_error(ctx, output_format, command_executed, msg, code, details)


def _report_abort(output_format: str, command_executed: str, confirm_msg: str) -> None:
    if output_format == "json":
        _write_json_response("aborted_by_user", command_executed, confirm_msg, data={"action_taken": False})
    else:
        click.echo(confirm_msg)
