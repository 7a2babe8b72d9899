"""CodeHub admin CLI — provision and look after user accounts.

Usage:
    codehub init-db                              # Create tables
    codehub create-root --name admin --email admin@example.com
    codehub create-user --name alice --email alice@example.com
    codehub list-users                           # All users, display order
    codehub search-users ali                     # Best matches first
    codehub rename-user 2 alice.a                # Also rewrites protection rules
    codehub delete-user 2                        # Cascades to everything owned

Every command takes --database-url (or CODEHUB_DATABASE_URL).
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import sys
from typing import Optional

import click

from codehub import __version__
from codehub.config import settings
from codehub.db.engine import create_engine, create_session_factory
from codehub.db.models import Base
from codehub.errors import CodeHubError
from codehub.services.user_service import UserService

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        # No running loop: normal CLI invocation
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


async def _with_users(database_url: str, action):
    """Run action(UserService) against a fresh engine, then dispose it."""
    engine = create_engine(database_url)
    try:
        async with create_session_factory(engine)() as session:
            return await action(UserService(session))
    finally:
        await engine.dispose()


def _call(ctx: click.Context, action):
    try:
        return _run(_with_users(ctx.obj["database_url"], action))
    except CodeHubError as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(1)


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k, "-"))[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


_USER_COLUMNS = [
    ("ID", "id", 6),
    ("LOGIN", "name", 20),
    ("DISPLAY NAME", "display_name", 28),
    ("EMAIL", "email", 32),
]


def _user_row(user) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "display_name": user.display_name,
        "email": user.email,
    }


def _account_options(fn):
    fn = click.option(
        "--password",
        prompt=True,
        hide_input=True,
        confirmation_prompt=True,
        help="Prompted (masked, twice) if omitted",
    )(fn)
    fn = click.option("--full-name", default=None)(fn)
    fn = click.option("--email", required=True)(fn)
    fn = click.option("--name", required=True, help="Login name")(fn)
    return fn


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="codehub")
@click.option(
    "--database-url",
    envvar="CODEHUB_DATABASE_URL",
    default=None,
    help="SQLAlchemy async URL (defaults to settings)",
)
@click.pass_context
def main(ctx: click.Context, database_url: Optional[str]):
    """CodeHub user account administration."""
    ctx.ensure_object(dict)
    ctx.obj["database_url"] = database_url or settings.database_url


@main.command("init-db")
@click.pass_context
def init_db(ctx: click.Context):
    """Create all tables that do not exist yet."""

    async def _init():
        engine = create_engine(ctx.obj["database_url"])
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        finally:
            await engine.dispose()

    _run(_init())
    click.secho("Database initialized", fg="green")


@main.command("create-root")
@_account_options
@click.pass_context
def create_root(ctx, name, email, full_name, password):
    """Create the root account (id 1). Must run before any other account."""
    data = {"name": name, "email": email, "full_name": full_name, "password": password}
    user = _call(ctx, lambda users: users.ensure_root(data))
    click.secho(f"Root account: {user.name} (id {user.id})", fg="green")


@main.command("create-user")
@_account_options
@click.pass_context
def create_user(ctx, name, email, full_name, password):
    """Create an account."""
    data = {"name": name, "email": email, "full_name": full_name, "password": password}
    user = _call(ctx, lambda users: users.create_user(data))
    click.secho(f"Created {user.name} (id {user.id})", fg="green")


@main.command("list-users")
@click.pass_context
def list_users(ctx):
    """List all accounts in display order."""
    users = _call(ctx, lambda users: users.list_users())
    if not users:
        click.echo("No users")
        return
    _print_table([_user_row(u) for u in users], _USER_COLUMNS)


@main.command("search-users")
@click.argument("term")
@click.option("--limit", "-n", default=20, show_default=True)
@click.pass_context
def search_users(ctx, term: str, limit: int):
    """Find accounts by login or full name, best match first."""
    users = _call(ctx, lambda users: users.search_users(term, limit=limit))
    if not users:
        click.echo(f"No users match {term!r}")
        return
    _print_table([_user_row(u) for u in users], _USER_COLUMNS)


@main.command("rename-user")
@click.argument("user_id", type=int)
@click.argument("new_name")
@click.option(
    "--expected-version",
    type=int,
    default=None,
    help="Fail if the account changed since you looked at it",
)
@click.pass_context
def rename_user(ctx, user_id: int, new_name: str, expected_version: Optional[int]):
    """Change an account's login name."""
    user = _call(
        ctx,
        lambda users: users.rename_user(
            user_id, new_name, expected_version=expected_version
        ),
    )
    click.secho(f"Renamed to {user.name} (version {user.version})", fg="green")


@main.command("delete-user")
@click.argument("user_id", type=int)
@click.confirmation_option(prompt="Delete this account and everything it owns?")
@click.pass_context
def delete_user(ctx, user_id: int):
    """Delete an account with its authorizations, watches and saved queries."""
    _call(ctx, lambda users: users.delete_user(user_id))
    click.secho(f"Deleted user {user_id}", fg="green")
