import click
from gmail_mcp.core_api import batch_api_service
from gmail_mcp.core_api import gmail_api_service
from gmail_mcp.core.cli_utils import (
    _confirm_action,
    _handle_command_failure,
    _report_abort,
    _write_json_response,
)
from .tools import fetch_summaries

output_format_option = click.option(
    "--output-format",
    type=click.Choice(["human", "json"]),
    default="human",
    show_default=True,
)

LABEL_OPERATIONS = {
    "add": batch_api_service.BulkAction.ADD_LABELS,
    "remove": batch_api_service.BulkAction.REMOVE_LABELS,
    "replace": batch_api_service.BulkAction.REPLACE_LABELS,
}


def _echo_bulk_summary(result: dict) -> None:
    if result["status"] == "no_matches":
        click.echo(result["message"])
        return
    if result["status"] == "dry_run":
        click.echo(f"DRY RUN: about {result['total_estimated']} email(s) match '{result['query']}'.")
        click.echo(f"They would be processed in {result['estimated_batches']} batch(es) of {result['batch_size']}.")
        return
    click.echo(f"\n--- Bulk {result['action']} summary ---")
    click.echo(f"Processed: {result['total_processed']} in {result['batches_processed']} batch(es)")
    click.echo(f"Successful: {result['successful']}")
    click.echo(f"Failed: {result['failed']}")
    if result["retried_individually"]:
        click.echo(f"Retried individually: {result['retried_individually']}")
    if result["errors"]:
        click.secho("Errors:", fg="red")
        for error in result["errors"]:
            click.echo(f" - batch {error['batch']}: {error['error']}")


# --- Click Command Group ---
@click.group("emails")
@click.pass_context
def emails_group(ctx):
    """Search and bulk-manage emails in your Gmail account."""
    logger = ctx.obj.get("logger")
    session = ctx.obj.get("session")
    if session is None or not session.has_token():
        if logger:
            logger.error("emails_group: no stored Gmail token. Run `gmail-mcp login` first.")
        click.secho("Not connected to Gmail. Please run `gmail-mcp login` first.", fg="yellow")
        ctx.abort()
    elif logger:
        logger.debug("emails_group: stored Gmail token found.")


@emails_group.command("search")
@click.option("--query", "-q", required=True, help="Gmail search query.")
@click.option("--max-results", "-m", type=click.IntRange(1, 100, clamp=True), default=10, show_default=True)
@output_format_option
@click.pass_context
def search_cmd(ctx, query, max_results, output_format):
    """Lists emails matching a Gmail query."""
    cmd_name = "gmail-mcp emails search"
    try:
        service = ctx.obj["session"].service
        response = gmail_api_service.list_messages(service, query_string=query, max_results=max_results)
        ids = [m["id"] for m in response.get("messages", [])]
        emails = fetch_summaries(service, ids) if ids else []
    except Exception as e:
        _handle_command_failure(ctx, output_format, cmd_name, e)
        return

    msg = f"Found {len(emails)} email(s)." if emails else f'No emails found for query: "{query}"'
    if output_format == "json":
        _write_json_response("success", cmd_name, msg, data={"query": query, "emails": emails})
        return
    click.echo(msg)
    for email in emails:
        click.echo(f"\nID: {email['id']}")
        click.echo(f" From: {email['from']}")
        click.echo(f" Subject: {email['subject']}")
        click.echo(f" Date: {email['date']}")
        if email["snippet"]:
            click.echo(f" Snippet: {email['snippet']}")


@emails_group.command("bulk-delete")
@click.option("--query", "-q", required=True, help="Gmail search query selecting the emails.")
@click.option("--batch-size", type=int, default=100, show_default=True, help="Emails per page (10-500).")
@click.option("--permanent", is_flag=True, help="Delete permanently instead of moving to Trash.")
@click.option("--dry-run", is_flag=True, help="Only estimate how many emails would be affected.")
@click.option("--yes", "-y", is_flag=True, help="Automatically answer yes to confirmation prompts.")
@output_format_option
@click.pass_context
def bulk_delete_cmd(ctx, query, batch_size, permanent, dry_run, yes, output_format):
    """Trashes (or permanently deletes) every email matching a query, page by page."""
    cmd_name = "gmail-mcp emails bulk-delete"
    if not dry_run:
        verb = "PERMANENTLY DELETE" if permanent else "move to Trash"
        confirmed, confirm_msg = _confirm_action(
            prompt_message=f"Are you sure you want to {verb} every email matching '{query}'?",
            yes_flag=yes,
        )
        if confirmed and permanent and not yes and output_format == "human":
            confirmation_text = click.prompt(
                click.style("This action is IRREVERSIBLE. To proceed, type 'YESIDO' and press Enter", fg="yellow"),
                type=str,
                default="",
                show_default=False,
                prompt_suffix=": ",
            )
            if confirmation_text.strip().upper() != "YESIDO":
                confirmed, confirm_msg = False, "Confirmation text did not match. Permanent deletion aborted."
        if not confirmed:
            _report_abort(output_format, cmd_name, confirm_msg)
            return

    action = batch_api_service.BulkAction.DELETE if permanent else batch_api_service.BulkAction.TRASH
    try:
        result = batch_api_service.run_bulk_action(
            ctx.obj["session"].service, query, action, batch_size=batch_size, dry_run=dry_run
        )
    except Exception as e:
        _handle_command_failure(ctx, output_format, cmd_name, e)
        return

    if output_format == "json":
        _write_json_response("success", cmd_name, f"Bulk delete {result['status']}.", data=result)
    else:
        _echo_bulk_summary(result)
    if result.get("failed"):
        ctx.exit(1)


@emails_group.command("bulk-label")
@click.option("--query", "-q", required=True, help="Gmail search query selecting the emails.")
@click.option("--label-id", "label_ids", multiple=True, required=True, help="Label ID; repeat for several.")
@click.option(
    "--operation",
    type=click.Choice(sorted(LABEL_OPERATIONS)),
    default="add",
    show_default=True,
    help="replace removes every other user label.",
)
@click.option("--batch-size", type=int, default=100, show_default=True, help="Emails per page (10-500).")
@click.option("--dry-run", is_flag=True, help="Only estimate how many emails would be affected.")
@click.option("--yes", "-y", is_flag=True, help="Automatically answer yes to confirmation prompts.")
@output_format_option
@click.pass_context
def bulk_label_cmd(ctx, query, label_ids, operation, batch_size, dry_run, yes, output_format):
    """Adds, removes or replaces labels on every email matching a query."""
    cmd_name = "gmail-mcp emails bulk-label"
    if not dry_run:
        confirmed, confirm_msg = _confirm_action(
            prompt_message=f"Apply '{operation}' of {len(label_ids)} label(s) to every email matching '{query}'?",
            yes_flag=yes,
        )
        if not confirmed:
            _report_abort(output_format, cmd_name, confirm_msg)
            return

    try:
        result = batch_api_service.run_bulk_action(
            ctx.obj["session"].service,
            query,
            LABEL_OPERATIONS[operation],
            label_ids=list(label_ids),
            batch_size=batch_size,
            dry_run=dry_run,
        )
    except Exception as e:
        _handle_command_failure(ctx, output_format, cmd_name, e)
        return

    if output_format == "json":
        _write_json_response("success", cmd_name, f"Bulk label {result['status']}.", data=result)
    else:
        _echo_bulk_summary(result)
    if result.get("failed"):
        ctx.exit(1)
