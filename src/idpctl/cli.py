"""CLI interface for idpctl"""

import json
import logging
import sys
from pathlib import Path
from typing import Dict, Optional, Tuple

import click
import requests

from idpctl.infrastructure.cancellation import cancel_scope
from idpctl.infrastructure.config.config_manager import ConfigManager
from idpctl.infrastructure.management.client import ManagementClient

logger = logging.getLogger(__name__)

API_DOCS_URL = "https://auth0.com/docs/api/management/v2"

API_VALID_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")


def setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration"""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )
    logging.getLogger().setLevel(level)
    # urllib3 is noisy at DEBUG; keep it at WARNING unless verbose
    logging.getLogger("urllib3").setLevel(level if verbose else logging.WARNING)


def _die(message: str, verbose: bool = False, exc: Optional[Exception] = None) -> None:
    """Exit with a user-friendly error message"""
    if exc is not None:
        logger.error(message, exc_info=verbose)
    else:
        logger.error(message)
    raise click.ClickException(message)


def parse_method_and_path(args: Tuple[str, ...], has_data: bool) -> Tuple[str, str]:
    """Split the api command arguments into method and path

    With a single argument the method defaults to GET, or POST when data is given.

    Raises:
        click.UsageError: If the method is not supported
    """
    if len(args) == 1:
        method = "POST" if has_data else "GET"
    else:
        method = args[0].upper()
    if method not in API_VALID_METHODS:
        raise click.UsageError(
            f"invalid method given: {args[0]}, accepting only {', '.join(API_VALID_METHODS)}"
        )
    return method, args[-1]


def parse_query_params(raw_params: Tuple[str, ...]) -> Dict[str, str]:
    """Parse repeated key=value query options; later keys win"""
    params: Dict[str, str] = {}
    for raw in raw_params:
        key, sep, value = raw.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got: {raw}", param_hint="--query")
        params[key] = value
    return params


def resolve_data(raw_data: Optional[str], piped_data: Optional[str]) -> Optional[str]:
    """Pick the request body from the --data flag or piped stdin

    Raises:
        click.BadParameter: If the chosen data is not valid JSON
    """
    data = raw_data or None
    if piped_data and data is None:
        data = piped_data
    if piped_data and raw_data:
        logger.warning(
            "JSON data was passed using both the flag and as piped input. "
            "Only the data from the flag will be used."
        )
    if data:
        try:
            json.loads(data)
        except ValueError:
            raise click.BadParameter(f"invalid json data given: {data}", param_hint="--data")
    return data


def _read_piped_input() -> Optional[str]:
    stdin = sys.stdin
    if stdin.isatty():
        return None
    return stdin.read().strip() or None


def _can_prompt() -> bool:
    return sys.stdin.isatty()


def _create_management_client(config_manager: ConfigManager, verbose: bool) -> ManagementClient:
    """Create management client from config"""
    tenant_config = config_manager.get_tenant_config()
    try:
        return ManagementClient(
            tenant_config.domain,
            tenant_config.access_token,
            transport_config=config_manager.get_transport_config(),
        )
    except ValueError as e:
        _die(str(e), verbose=verbose, exc=e)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option(
    "--config",
    type=click.Path(exists=True, path_type=Path),
    help="Path to .idpctl.yml config file",
)
@click.pass_context
def cli(ctx, verbose: bool, config: Path):
    """idpctl - command-line client for the identity platform management API"""
    ctx.ensure_object(dict)
    setup_logging(verbose)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose


@cli.command(
    epilog=f"Management API docs: {API_DOCS_URL}\n\n"
    f"Available methods: {', '.join(m.lower() for m in API_VALID_METHODS)}"
)
@click.argument("args", nargs=-1, required=True)
@click.option("--data", "-d", "raw_data", help="JSON data payload to send with the request. Can also be piped in.")
@click.option("--query", "-q", "raw_query", multiple=True, help="Query param to send with the request (key=value).")
@click.option("--force", is_flag=True, help="Skip confirmation for destructive requests.")
@click.option("--timeout", type=click.FloatRange(min=0), help="Give up after this many seconds, retries included.")
@click.pass_context
def api(ctx, args, raw_data: Optional[str], raw_query, force: bool, timeout: Optional[float]):
    """Make an authenticated request to the management API and print the JSON response.

    ARGS: [METHOD] URL_PATH, e.g. "get tenants/settings" or "clients"
    """
    verbose = ctx.obj.get("verbose", False)
    if len(args) > 2:
        raise click.UsageError("expected at most 2 arguments: [METHOD] URL_PATH")

    method, path = parse_method_and_path(args, has_data=bool(raw_data))
    params = parse_query_params(raw_query)
    data = resolve_data(raw_data, _read_piped_input())

    if method == "DELETE" and not force and _can_prompt():
        if not click.confirm("Are you sure you want to proceed? Deleting is a destructive action."):
            return

    try:
        config_manager = ConfigManager(config_path=ctx.obj.get("config_path"))
        with _create_management_client(config_manager, verbose) as client:
            request = client.new_request(
                method,
                path,
                payload=None if data is None else json.loads(data),
                params=params,
            )
            with cancel_scope(timeout):
                response = client.do(request)
            body = response.content
    except click.ClickException:
        raise
    except requests.RequestException as e:
        _die(f"failed to send request: {e}", verbose=verbose, exc=e)
    except Exception as e:
        _die(f"Fatal error: {e}", verbose=verbose, exc=e)

    if not body:
        logger.debug("Response body is empty.")
        return

    try:
        pretty = json.dumps(json.loads(body), indent=2)
    except ValueError as e:
        _die(f"failed to prepare json output: {e}", verbose=verbose, exc=e)
    click.echo(pretty)


def main():
    """Main entry point"""
    cli(obj={})


if __name__ == "__main__":
    main()
