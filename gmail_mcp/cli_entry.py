import click
import logging
import os

from gmail_mcp.core import config as app_config
from gmail_mcp.core.cli_utils import _handle_command_failure, _write_json_response
from gmail_mcp.core.logging_setup import setup_logging
from gmail_mcp.core.session import MailSession
from gmail_mcp.core_api import gmail_api_service
from gmail_mcp.features.auth import tools as auth_tools

# Feature command groups
from gmail_mcp.features.email_management.commands import emails_group
from gmail_mcp.features.rule_management.commands import rules_group


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose (DEBUG level) logging.")
@click.option(
    "--config-dir",
    envvar="GMAIL_MCP_CONFIG_DIR",
    type=click.Path(file_okay=False),
    default=None,
    help="Directory holding credentials, token, rules and logs.",
)
@click.pass_context
def gmail_mcp(ctx, verbose, config_dir):
    """
    gmail-mcp: Gmail tools for MCP clients, plus a CLI for rules and bulk jobs.
    """
    if config_dir:
        app_config.set_data_dir(config_dir)

    log_level = logging.DEBUG if verbose else logging.INFO
    running_tests = bool(os.environ.get("PYTEST_CURRENT_TEST")) or os.environ.get("GMAIL_MCP_TEST_MODE") == "1"
    logger = setup_logging(log_level=log_level, testing_mode=running_tests)

    # Keep anything passed via runner.invoke(obj=...) in tests.
    ctx.ensure_object(dict)
    ctx.obj["logger"] = logger
    ctx.obj.setdefault("session", MailSession())

    logger.debug(
        f"gmail-mcp started. Verbose: {verbose}, Data dir: {app_config.DATA_DIR}, Testing Mode: {running_tests}"
    )


gmail_mcp.add_command(emails_group)
gmail_mcp.add_command(rules_group)


@gmail_mcp.command()
@click.pass_context
def serve(ctx):
    """Runs the MCP server over stdio."""
    # The MCP SDK is only needed here.
    from gmail_mcp.mcp_entry import run_stdio

    run_stdio(ctx.obj["session"])


@gmail_mcp.command()
@click.pass_context
def login(ctx):
    """Authorizes Gmail access in the browser and stores the token."""
    logger = ctx.obj["logger"]
    logger.info("Attempting Gmail login...")
    try:
        service = gmail_api_service.get_authenticated_service()
    except Exception as e:
        _handle_command_failure(ctx, "human", "gmail-mcp login", e)
        return
    if service is None:
        click.secho("Login failed. Could not establish Gmail service.", fg="red")
        ctx.exit(1)
        return
    ctx.obj["session"].reset()
    logger.info("Login successful.")
    click.echo(f"Login successful! Token saved to {app_config.TOKEN_FILE}.")


@gmail_mcp.command("auth-status")
@click.option("--output-format", type=click.Choice(["human", "json"]), default="human", show_default=True)
@click.pass_context
def auth_status_cmd(ctx, output_format):
    """Shows whether a Gmail token is stored and for which account."""
    status = auth_tools.auth_status(ctx.obj["session"])
    if output_format == "json":
        _write_json_response("success", "gmail-mcp auth-status", status["message"], data=status)
    else:
        click.echo(status["message"])
    if not status["authorized"]:
        ctx.exit(1)


if __name__ == "__main__":
    gmail_mcp(obj={})
