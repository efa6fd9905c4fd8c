"""sheets-rewrite command line.

Commands:
    rewrite       Rewrite a piece of text through the full scheduling/retry pipeline
    check-config  Show the effective (redacted) configuration and its issues

All commands print a single JSON document to stdout and exit non-zero on
failure.
"""

import asyncio
import json
import sys
from typing import Any, Dict, NoReturn, Optional

import click

from sheets_rewrite.config import ServiceConfig
from sheets_rewrite.core.classifier import error_to_response
from sheets_rewrite.core.errors import RewriteError
from sheets_rewrite.services.rewrite import RewriteService


def emit(payload: Dict[str, Any]) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


def emit_error(error: BaseException) -> NoReturn:
    payload, _ = error_to_response(error)
    emit(payload)
    sys.exit(1)


@click.group()
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False),
    default=None,
    help="TOML configuration file (overrides the layered lookup).",
)
@click.option(
    "--env",
    "environment",
    type=click.Choice(["development", "production", "testing"]),
    default=None,
    help="Environment profile to apply.",
)
@click.pass_context
def cli(ctx: click.Context, config_file: Optional[str], environment: Optional[str]) -> None:
    """Rewrite spreadsheet text with a hosted completion model."""
    config = ServiceConfig.from_env(config_file, environment=environment)
    config.setup_logging()
    ctx.obj = config


@cli.command("rewrite")
@click.option("--prompt", "-p", required=True, help="Rewrite instruction.")
@click.option("--text", "-t", "main_text", required=True, help="Text to rewrite.")
@click.option("--context", "-c", "context_text", default=None, help="Optional additional context.")
@click.pass_obj
def rewrite_cmd(
    config: ServiceConfig,
    prompt: str,
    main_text: str,
    context_text: Optional[str],
) -> None:
    """Rewrite TEXT according to PROMPT and print the JSON response."""
    try:
        service = RewriteService(config)
    except RewriteError as e:
        emit_error(e)

    response = asyncio.run(
        service.rewrite({"prompt": prompt, "main_text": main_text, "context_text": context_text})
    )
    emit(response.to_dict())
    if not response.success:
        sys.exit(1)


@cli.command("check-config")
@click.pass_obj
def check_config_cmd(config: ServiceConfig) -> None:
    """Print the effective configuration and any validation issues."""
    issues = config.validate()
    emit(
        {
            "valid": not issues,
            "issues": issues,
            "warnings": config.startup_warnings,
            "config": config.to_dict(),
        }
    )
    if issues:
        sys.exit(1)


if __name__ == "__main__":
    cli()
