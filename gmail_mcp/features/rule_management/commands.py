import click
from gmail_mcp.core import config as app_config
from gmail_mcp.core_api import rules_api_service
from gmail_mcp.core.cli_utils import (
    _confirm_action,
    _handle_command_failure,
    _report_abort,
    _write_json_response,
)
from gmail_mcp.core.tool_utils import dump

output_format_option = click.option(
    "--output-format",
    type=click.Choice(["human", "json"]),
    default="human",
    show_default=True,
)


def _criteria_options(func):
    """Options shared by `rules add` and `rules update`."""
    func = click.option("--query", "-q", default=None, help="Raw Gmail query; overrides the other criteria.")(func)
    func = click.option(
        "--subject-contains",
        "subject_contains",
        multiple=True,
        help="Subject phrase; repeat for OR-ed alternatives.",
    )(func)
    func = click.option("--subject", "subject_pattern", default=None, help="Subject phrase to match.")(func)
    func = click.option("--from", "sender_pattern", default=None, help="Sender address or domain to match.")(func)
    return func


def _echo_rule(index: int, rule) -> None:
    click.echo(f"\n--- Rule {index} ({'Enabled' if rule.enabled else 'Disabled'}) ---")
    click.echo(f" Label: {rule.label_name}")
    if rule.sender_pattern:
        click.echo(f" From: {rule.sender_pattern}")
    if rule.subject_pattern:
        click.echo(f" Subject: {rule.subject_pattern}")
    if rule.subject_contains:
        click.echo(f" Subject contains any of: {', '.join(rule.subject_contains)}")
    if rule.query:
        click.echo(f" Query: {rule.query}")
    click.echo(f" Gmail query: {rules_api_service.build_rule_query(rule) or '(no criteria)'}")
    click.echo(f" Created: {rule.created.isoformat() if rule.created else 'Unknown'}")
    click.echo(f" Last run: {rule.last_run.isoformat() if rule.last_run else 'Never'}")


@click.group("rules")
@click.pass_context
def rules_group(ctx):
    """Manage stored auto-labeling rules."""
    logger = ctx.obj.get("logger")
    if logger:
        logger.debug("Rules command group invoked.")


@rules_group.command("list")
@output_format_option
@click.pass_context
def list_rules_cmd(ctx, output_format):
    """Lists all stored rules with their indexes."""
    logger = ctx.obj.get("logger")
    cmd_name = "gmail-mcp rules list"
    rules = rules_api_service.load_rules()

    if output_format == "json":
        data = [dict(dump(rule), index=i) for i, rule in enumerate(rules)]
        message = f"Successfully listed {len(rules)} rules." if rules else "No rules configured yet."
        _write_json_response("success", cmd_name, message, data=data)
    elif not rules:
        click.echo("No rules configured yet.")
    else:
        click.echo(f"Configured Rules ({app_config.RULES_FILE}):")
        for i, rule in enumerate(rules):
            _echo_rule(i, rule)
    if logger:
        logger.info(f"Listed {len(rules)} rules.")


@rules_group.command("add")
@click.option("--label", "label_name", required=True, help="Label applied to matching emails.")
@_criteria_options
@click.option("--disabled", is_flag=True, help="Store the rule without enabling it.")
@output_format_option
@click.pass_context
def add_rule_cmd(ctx, label_name, sender_pattern, subject_pattern, subject_contains, query, disabled, output_format):
    """Adds a rule. At least one of --from, --subject, --subject-contains or --query is required."""
    cmd_name = "gmail-mcp rules add"
    try:
        result = rules_api_service.add_rule(
            label_name=label_name,
            sender_pattern=sender_pattern,
            subject_pattern=subject_pattern,
            subject_contains=list(subject_contains) or None,
            query=query,
            enabled=not disabled,
        )
    except Exception as e:
        _handle_command_failure(ctx, output_format, cmd_name, e)
        return

    msg = f"Rule for label '{label_name}' added at index {result['index']}."
    if output_format == "json":
        _write_json_response(
            "success",
            cmd_name,
            msg,
            data={"index": result["index"], "rule": dump(result["rule"]), "total_rules": result["total_rules"]},
        )
    else:
        click.echo(msg)


@rules_group.command("update")
@click.option("--index", "rule_index", type=int, required=True, help="Index shown by `rules list`.")
@click.option("--label", "label_name", default=None, help="New label name.")
@_criteria_options
@click.option("--enabled/--disabled", "enabled", default=None, help="Enable or disable the rule.")
@output_format_option
@click.pass_context
def update_rule_cmd(
    ctx, rule_index, label_name, sender_pattern, subject_pattern, subject_contains, query, enabled, output_format
):
    """Changes fields of a stored rule; omitted options are left unchanged."""
    cmd_name = "gmail-mcp rules update"
    try:
        result = rules_api_service.update_rule(
            rule_index,
            label_name=label_name,
            sender_pattern=sender_pattern,
            subject_pattern=subject_pattern,
            subject_contains=list(subject_contains) or None,
            query=query,
            enabled=enabled,
        )
    except Exception as e:
        _handle_command_failure(ctx, output_format, cmd_name, e)
        return

    msg = f"Rule {rule_index} updated."
    if output_format == "json":
        _write_json_response(
            "success",
            cmd_name,
            msg,
            data={"original": dump(result["original"]), "updated": dump(result["updated"])},
        )
    else:
        click.echo(msg)
        _echo_rule(rule_index, result["updated"])


@rules_group.command("remove")
@click.option("--index", "rule_index", type=int, required=True, help="Index shown by `rules list`.")
@click.option("--yes", "-y", is_flag=True, help="Automatically answer yes to confirmation prompts.")
@output_format_option
@click.pass_context
def remove_rule_cmd(ctx, rule_index, yes, output_format):
    """Removes the rule at an index. Later rules shift down by one."""
    cmd_name = "gmail-mcp rules remove"
    confirmed, confirm_msg = _confirm_action(
        prompt_message=f"Are you sure you want to remove rule {rule_index}?",
        yes_flag=yes,
    )
    if not confirmed:
        _report_abort(output_format, cmd_name, confirm_msg)
        return

    try:
        result = rules_api_service.remove_rule(rule_index)
    except Exception as e:
        _handle_command_failure(ctx, output_format, cmd_name, e)
        return

    removed = result["removed_rule"]
    msg = f"Rule {rule_index} (label '{removed.label_name}') removed. {result['remaining_rules']} rule(s) remain."
    if output_format == "json":
        _write_json_response(
            "success",
            cmd_name,
            msg,
            data={"removed_rule": dump(removed), "remaining_rules": result["remaining_rules"]},
        )
    else:
        click.echo(msg)


@rules_group.command("run")
@click.option("--dry-run", is_flag=True, help="Count matches without labeling anything.")
@click.option("--max-per-rule", type=click.IntRange(min=1), default=None, help="Cap on emails labeled per rule.")
@click.option("--batch-size", type=click.IntRange(min=1), default=100, show_default=True)
@click.option("--max-batches", type=click.IntRange(min=1), default=10, show_default=True)
@click.option("--yes", "-y", is_flag=True, help="Automatically answer yes to confirmation prompts.")
@output_format_option
@click.pass_context
def run_rules_cmd(ctx, dry_run, max_per_rule, batch_size, max_batches, yes, output_format):
    """Runs every enabled rule against the mailbox."""
    logger = ctx.obj.get("logger")
    cmd_name = "gmail-mcp rules run"

    if not dry_run:
        confirmed, confirm_msg = _confirm_action(
            prompt_message="Are you sure you want to run all enabled rules and label matching emails?",
            yes_flag=yes,
        )
        if not confirmed:
            _report_abort(output_format, cmd_name, confirm_msg)
            return

    try:
        summary = rules_api_service.run_rules(
            ctx.obj["session"].service,
            dry_run=dry_run,
            max_per_rule=max_per_rule,
            batch_size=batch_size,
            max_batches=max_batches,
        )
    except Exception as e:
        _handle_command_failure(ctx, output_format, cmd_name, e)
        return

    if output_format == "json":
        _write_json_response("success", cmd_name, summary["message"], data=summary)
    else:
        click.echo(f"\n--- {summary['message']} ---")
        click.echo(f"Rules: {summary['enabled_rules']} enabled of {summary['total_rules']}")
        for result in summary["results"]:
            line = f" - {result['rule']}: {result['status']}, {result['emails_found']} found"
            if "emails_labeled" in result:
                line += f", {result['emails_labeled']} labeled"
            click.echo(line)
        if summary["errors"]:
            click.secho("\nErrors:", fg="red")
            for error in summary["errors"]:
                click.echo(f" - {error['rule']}: {error['error']}")
    if logger:
        logger.info(f"'{cmd_name}' completed: {summary['processed']} processed, {summary['failed']} failed.")


@rules_group.command("export")
@click.option("--file", "file_path", type=click.Path(dir_okay=False), default=None, help="Destination file.")
@output_format_option
@click.pass_context
def export_rules_cmd(ctx, file_path, output_format):
    """Exports stored rules to a JSON file (dated backup in the data dir by default)."""
    cmd_name = "gmail-mcp rules export"
    try:
        result = rules_api_service.export_rules(file_path)
    except Exception as e:
        _handle_command_failure(ctx, output_format, cmd_name, e)
        return

    msg = f"Exported {result['rules_exported']} rules to {result['export_path']}."
    if output_format == "json":
        _write_json_response("success", cmd_name, msg, data=result)
    else:
        click.echo(msg)


@rules_group.command("import")
@click.option("--file", "file_path", type=click.Path(exists=True, dir_okay=False), required=True)
@click.option("--merge", is_flag=True, help="Append to the stored rules instead of replacing them.")
@click.option("--yes", "-y", is_flag=True, help="Automatically answer yes to confirmation prompts.")
@output_format_option
@click.pass_context
def import_rules_cmd(ctx, file_path, merge, yes, output_format):
    """Imports rules from a JSON export, replacing the stored rules unless --merge."""
    cmd_name = "gmail-mcp rules import"
    if not merge:
        confirmed, confirm_msg = _confirm_action(
            prompt_message="Importing without --merge replaces all stored rules. Continue?",
            yes_flag=yes,
        )
        if not confirmed:
            _report_abort(output_format, cmd_name, confirm_msg)
            return

    try:
        result = rules_api_service.import_rules(file_path, merge=merge)
    except Exception as e:
        _handle_command_failure(ctx, output_format, cmd_name, e)
        return

    msg = f"Imported {result['rules_imported']} rules; {result['total_rules']} stored."
    if output_format == "json":
        _write_json_response("success", cmd_name, msg, data=result)
    else:
        click.echo(msg)
