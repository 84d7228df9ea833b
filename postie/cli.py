"""CLI interface for Postie."""

import asyncio
import json
import logging
import sys

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from . import commands as cmd
from .config import get_settings
from .errors import InvalidMethodError
from .http_client import HttpxTransport
from .models import (
    DEFAULT_HEADERS,
    AuthMode,
    Folder,
    HttpMethod,
    HttpRequest,
    OAuth2Request,
    OAuthRequestBody,
    RequestAuth,
    RequestBody,
    ResponseKind,
)
from .state import AppState, StateSnapshot
from .storage import StorageBackend

console = Console()


def _configure_logging(verbose: bool):
    level = logging.DEBUG if verbose else get_settings().log_level
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
    )


async def _with_state(db_path, action):
    settings = get_settings()
    storage = StorageBackend(db_path or settings.db_path)
    transport = HttpxTransport(
        timeout=settings.request_timeout,
        verify_ssl=settings.verify_ssl,
        follow_redirects=settings.follow_redirects,
    )
    try:
        state = await AppState.load(storage, transport)
        return await action(state)
    finally:
        await transport.close()


def _snapshot(ctx) -> StateSnapshot:
    async def action(state: AppState):
        return state.snapshot()

    return asyncio.run(_with_state(ctx.obj["db"], action))


def _dispatch(ctx, build_command) -> StateSnapshot:
    """Post one command to a freshly loaded state, wait for it and report the status."""

    async def action(state: AppState):
        state.post(build_command(state.snapshot()))
        state.close()
        await state.run()
        return state.snapshot()

    snapshot = asyncio.run(_with_state(ctx.obj["db"], action))
    if snapshot.error:
        console.print(f"[red]{escape(snapshot.status)}[/red]: {escape(snapshot.error)}")
        sys.exit(1)
    console.print(f"[green]{snapshot.status}[/green]")
    return snapshot


def _split_path(path):
    if not path:
        return None
    return [segment for segment in path.split("/") if segment]


@click.group()
@click.option("--db", type=click.Path(dir_okay=False), help="SQLite database file")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logs")
@click.pass_context
def main(ctx, db, verbose):
    """Postie - a local HTTP client for Postman collections and environments."""
    _configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["db"] = db


@main.command("import-collection")
@click.argument("path", type=click.Path(dir_okay=False))
@click.pass_context
def import_collection(ctx, path):
    """Import a Postman v2.1 collection file."""
    _dispatch(ctx, lambda _: cmd.ImportCollection(path=path))


@main.command("import-environment")
@click.argument("path", type=click.Path(dir_okay=False))
@click.pass_context
def import_environment(ctx, path):
    """Import a Postman environment file."""
    _dispatch(ctx, lambda _: cmd.ImportEnvironment(path=path))


@main.command("export-collection")
@click.argument("collection_id")
@click.argument("output", type=click.Path(dir_okay=False))
@click.pass_context
def export_collection(ctx, collection_id, output):
    """Write a stored collection as Postman JSON."""
    _dispatch(ctx, lambda _: cmd.ExportCollection(collection_id=collection_id, path=output))


@main.command("export-environment")
@click.argument("environment_id")
@click.argument("output", type=click.Path(dir_okay=False))
@click.pass_context
def export_environment(ctx, environment_id, output):
    """Write a stored environment as Postman JSON."""
    _dispatch(ctx, lambda _: cmd.ExportEnvironment(environment_id=environment_id, path=output))


@main.command("new-collection")
@click.argument("name")
@click.pass_context
def new_collection(ctx, name):
    """Create an empty collection."""
    _dispatch(ctx, lambda _: cmd.NewCollection(name=name))


@main.command("new-environment")
@click.argument("name")
@click.pass_context
def new_environment(ctx, name):
    """Create an empty environment."""
    _dispatch(ctx, lambda _: cmd.NewEnvironment(name=name))


@main.command("add-folder")
@click.argument("collection_id")
@click.argument("name")
@click.option("--parent", help="Parent folder path, e.g. 'users/admin'")
@click.pass_context
def add_folder(ctx, collection_id, name, parent):
    """Add a folder to a collection."""
    _dispatch(ctx, lambda _: cmd.AddFolder(collection_id=collection_id, name=name, parent=_split_path(parent)))


@main.command()
@click.argument("collection_id")
@click.option("--folder", help="Folder path, e.g. 'users/admin'")
@click.option("--request", "request_name", help="Request name")
@click.pass_context
def delete(ctx, collection_id, folder, request_name):
    """Delete a collection, a folder or a request."""
    _dispatch(
        ctx,
        lambda _: cmd.DeleteNode(
            collection_id=collection_id, folder=_split_path(folder), request_name=request_name
        ),
    )


def _parse_headers(values):
    headers = []
    for value in values:
        key, sep, header_value = value.partition(":")
        if not sep:
            raise click.BadParameter(f"expected 'Key: Value', got {value!r}", param_hint="--header")
        headers.append((key.strip(), header_value.strip()))
    return headers


def _parse_form(values):
    fields = {}
    for value in values:
        key, sep, field_value = value.partition("=")
        if not sep:
            raise click.BadParameter(f"expected key=value, got {value!r}", param_hint="--form")
        fields[key] = field_value
    return fields


@main.command()
@click.argument("method")
@click.argument("url")
@click.option("--header", "-H", multiple=True, help="Header as 'Key: Value' (repeatable)")
@click.option("--env", "environment_id", help="Environment id used for {{variables}}")
@click.option("--json", "json_body", help="JSON request body")
@click.option("--form", "form_fields", multiple=True, help="Form field as key=value (repeatable)")
@click.option("--bearer", help="Bearer token")
@click.option("--api-key", help="API key header as NAME=VALUE")
@click.option("--name", help="Name recorded with the request")
@click.option("--save-to", help="Also save the request into COLLECTION_ID[:folder/path]")
@click.pass_context
def send(ctx, method, url, header, environment_id, json_body, form_fields, bearer, api_key, name, save_to):
    """Send an HTTP request and record it in the history."""
    try:
        http_method = HttpMethod.parse(method.upper())
    except InvalidMethodError as exc:
        raise click.BadParameter(str(exc), param_hint="METHOD")

    headers = _parse_headers(header) if header else list(DEFAULT_HEADERS)
    body = None
    if json_body is not None:
        try:
            body = RequestBody.json_body(json.loads(json_body))
        except json.JSONDecodeError as exc:
            raise click.BadParameter(str(exc), param_hint="--json")
    elif form_fields:
        body = RequestBody.form_body(_parse_form(form_fields))
        if not header:
            headers = [
                (key, "application/x-www-form-urlencoded" if key == "Content-Type" else value)
                for key, value in headers
            ]

    auth = RequestAuth()
    if bearer:
        auth = RequestAuth(mode=AuthMode.BEARER, bearer_token=bearer)
    elif api_key:
        key_name, _, key_value = api_key.partition("=")
        auth = RequestAuth(mode=AuthMode.APIKEY, api_key_name=key_name, api_key=key_value)

    def build(snapshot: StateSnapshot):
        request = HttpRequest(
            name=name,
            method=http_method,
            url=url,
            headers=headers,
            body=body,
            auth=auth,
        )
        if snapshot.active_tab_id:
            request.tab_id = snapshot.active_tab_id
        if environment_id:
            environment = next((e for e in snapshot.environments if e.id == environment_id), None)
            if environment is None:
                raise click.BadParameter(f"unknown environment {environment_id!r}", param_hint="--env")
            request.environment = environment
        return cmd.SubmitRequest(request=request)

    snapshot = _dispatch(ctx, build)
    response = snapshot.last_response
    if response is None:
        return
    console.print(f"[bold]{response.status}[/bold] in {response.elapsed_ms}ms")
    if response.data.kind == ResponseKind.JSON:
        console.print_json(data=response.data.payload)
    elif response.data.kind == ResponseKind.UNKNOWN:
        console.print("[yellow]Unsupported response type[/yellow]")
    else:
        console.print(response.data.payload, markup=False)

    if save_to:
        collection_id, _, folder = save_to.partition(":")
        saved = HttpRequest(name=name, method=http_method, url=url, headers=headers, body=body)
        _dispatch(
            ctx,
            lambda _: cmd.AddRequestToCollection(
                collection_id=collection_id, request=saved, folder=_split_path(folder)
            ),
        )


@main.command()
@click.argument("token_url")
@click.option("--client-id", required=True)
@click.option("--client-secret", required=True)
@click.option("--scope", default="")
@click.option("--audience", default="")
@click.option("--grant-type", default="client_credentials")
@click.pass_context
def token(ctx, token_url, client_id, client_secret, scope, audience, grant_type):
    """Request an OAuth2 access token (not recorded in history)."""
    request = OAuth2Request(
        access_token_url=token_url,
        client_id=client_id,
        client_secret=client_secret,
        request=OAuthRequestBody(grant_type=grant_type, scope=scope, audience=audience),
    )
    snapshot = _dispatch(ctx, lambda _: cmd.SubmitOAuth2Request(request=request))
    if snapshot.oauth_token:
        console.print(f"Token type: {snapshot.oauth_token.token_type}")
        console.print(f"Expires in: {snapshot.oauth_token.expires_in}s")
        console.print(snapshot.oauth_token.access_token, markup=False)


def _add_nodes(branch: Tree, nodes):
    for node in nodes:
        if isinstance(node, Folder):
            _add_nodes(branch.add(f"[bold]{escape(node.name)}/[/bold]"), node.item)
        else:
            branch.add(f"[cyan]{node.request.method}[/cyan] {escape(node.name)}  [dim]{escape(node.request.url.raw)}[/dim]")


@main.command("collections")
@click.pass_context
def list_collections(ctx):
    """Show stored collections as trees."""
    snapshot = _snapshot(ctx)
    if not snapshot.collections:
        console.print("[yellow]No collections stored[/yellow]")
        return
    for collection in snapshot.collections:
        tree = Tree(f"[bold green]{escape(collection.info.name)}[/bold green] [dim]{collection.info.id}[/dim]")
        _add_nodes(tree, collection.item)
        console.print(tree)


@main.command("environments")
@click.pass_context
def list_environments(ctx):
    """Show stored environments."""
    snapshot = _snapshot(ctx)
    table = Table(title="Environments")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Variables")
    for environment in snapshot.environments:
        values = environment.values or []
        table.add_row(
            environment.id,
            environment.name,
            ", ".join(v.key if v.enabled else f"{v.key} (disabled)" for v in values if v.key),
        )
    console.print(table)


@main.command()
@click.option("--limit", "-l", default=50, help="Number of entries to show")
@click.pass_context
def history(ctx, limit):
    """Show the request history, newest first."""
    snapshot = _snapshot(ctx)
    table = Table(title="Request history")
    table.add_column("Sent at", style="dim")
    table.add_column("Method", style="cyan")
    table.add_column("URL")
    table.add_column("Status", style="green")
    table.add_column("Time (ms)", justify="right")
    for item in list(reversed(snapshot.history))[:limit]:
        request = snapshot.requests_by_id.get(item.request_id)
        response = snapshot.responses_by_id.get(item.response_id)
        table.add_row(
            item.sent_at.strftime("%Y-%m-%d %H:%M:%S"),
            request.method if request else "?",
            request.url if request else "?",
            str(response.status_code) if response else "?",
            str(item.response_time),
        )
    console.print(table)


@main.command()
@click.pass_context
def tabs(ctx):
    """Show open request tabs."""
    snapshot = _snapshot(ctx)
    table = Table(title="Tabs")
    table.add_column("ID", style="dim")
    table.add_column("Method", style="cyan")
    table.add_column("URL")
    table.add_column("Last status", style="green")
    for tab in snapshot.tabs.values():
        marker = "*" if tab.id == snapshot.active_tab_id else ""
        table.add_row(f"{marker}{tab.id}", tab.method.value, tab.url, tab.res_status or "")
    console.print(table)


@main.command("close-tab")
@click.argument("tab_id")
@click.pass_context
def close_tab(ctx, tab_id):
    """Close a tab."""
    _dispatch(ctx, lambda _: cmd.RemoveTab(tab_id=tab_id))


if __name__ == "__main__":
    main()
