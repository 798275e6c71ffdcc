"""Command-line interface for Relay CMS."""

import os
import shutil
import sys
from pathlib import Path

import click

from . import __version__
from .core.audit_log import AuditLogger
from .core.auth import AuthManager
from .core.config import AppConfig
from .core.errors import NotFound, PersistenceFailure, ValidationError
from .core.menus import DEFAULT_MENUS, MenuStore
from .core.models import Role
from .core.passwords import PasswordHasher
from .core.settings import DEFAULT_SETTINGS, SettingsStore
from .core.users import UserStore

BUNDLED_THEMES_DIR = Path(__file__).parent / "themes"

SAMPLE_CONTENT = """\
---
title: Welcome to Relay
author: Relay CMS
---

# Welcome to Relay

Relay is a lightweight flat-file content management system.

## Getting Started

- Content is managed through Markdown files in the `content` directory
- Menus can be edited through the [admin interface](/admin/)
- Users are managed from the command line: `relaycms --help`

## Features

- **Markdown Support**: Write content in simple Markdown format
- **Frontmatter**: Add metadata to pages with a `key: value` block
- **Multiple Menus**: Header, left sidebar, and right sidebar navigation
- **No Database**: All data stored in JSON and Markdown files
"""

DEFAULT_MENU_ITEMS = {
    "header-menu": [{"label": "Home", "url": "/"}],
}

dir_option = click.option(
    "--dir",
    "-d",
    "base_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Base directory for the site (default: current directory)",
)


def load_config(base_dir: Path | None) -> AppConfig:
    return AppConfig.from_env(base_dir)


def get_auth(config: AppConfig) -> AuthManager:
    return AuthManager(
        UserStore(config.users_file),
        hasher=PasswordHasher(config.password_scheme, config.bcrypt_rounds),
        password_min_length=config.password_min_length,
    )


def fail(message: str) -> None:
    click.echo(click.style("Error: ", fg="red") + message, err=True)
    sys.exit(1)


def ok(message: str) -> None:
    click.echo(click.style("✓ ", fg="green") + message)


def prompt_password(label: str = "Password") -> str:
    return click.prompt(label, hide_input=True, confirmation_prompt=True)


@click.group()
@click.version_option(version=__version__, prog_name="relaycms")
def main():
    """Relay CMS - a flat-file content management system."""
    pass


@main.command()
@dir_option
def init(base_dir: Path | None):
    """Initialize a new Relay site.

    Creates the directories, bundled themes, sample content, default menus
    and settings, and prompts for the first admin's password. Existing
    files are left alone.
    """
    config = load_config(base_dir)
    click.echo("Initializing Relay installation...")
    click.echo()

    for path in (config.content_dir, config.config_dir, config.themes_dir, config.data_dir):
        if path.is_dir():
            click.echo(f"  Directory already exists: {path}")
        else:
            path.mkdir(parents=True, exist_ok=True)
            ok(f"Created directory: {path}")

    for theme_dir in sorted(BUNDLED_THEMES_DIR.iterdir()):
        if not theme_dir.is_dir() or theme_dir.name.startswith((".", "_")):
            continue
        target = config.themes_dir / theme_dir.name
        if target.exists():
            click.echo(f"  Theme already exists: {theme_dir.name}")
        else:
            shutil.copytree(theme_dir, target)
            ok(f"Installed theme: {theme_dir.name}")

    index = config.content_dir / "index.md"
    if index.exists():
        click.echo(f"  File already exists: {index}")
    else:
        index.write_text(SAMPLE_CONTENT, encoding="utf-8")
        ok(f"Created sample content: {index}")

    menus = MenuStore(config.menu_dir)
    for name in DEFAULT_MENUS:
        if menus.exists(name):
            click.echo(f"  Menu already exists: {name}")
        else:
            menus.save(name, DEFAULT_MENU_ITEMS.get(name, []))
            ok(f"Created menu: {name}")

    settings = SettingsStore(config.settings_file)
    if settings.path.exists():
        click.echo(f"  File already exists: {settings.path}")
    else:
        settings.save(dict(DEFAULT_SETTINGS))
        ok(f"Created settings: {settings.path}")

    click.echo()
    if config.users_file.exists():
        click.echo(f"  Users file already exists: {config.users_file}")
    else:
        click.echo("Creating default admin user...")
        click.echo("Username: admin")
        create_account(config, "admin", Role.ADMIN.value, prompt_password())

    click.echo()
    click.echo(click.style("Relay initialized successfully!", fg="green", bold=True))
    click.echo()
    click.echo("Next steps:")
    click.echo("  1. Run: relaycms run")
    click.echo(f"  2. Visit http://{config.host}:{config.port}/ to view your site")
    click.echo(f"  3. Log in at http://{config.host}:{config.port}/admin/login")
    click.echo(f"  4. Edit content files in {config.content_dir}")


def create_account(config: AppConfig, username: str, role: str, password: str) -> None:
    try:
        get_auth(config).create_user(username, password, role)
    except ValidationError as e:
        fail(str(e))
    except PersistenceFailure:
        fail(f"Could not write {config.users_file}")
    AuditLogger(config.audit_log_path).log_user_change("create", username)
    ok(f"Created user {username} ({role})")


@main.command("create-user")
@click.argument("username")
@click.argument("role", type=click.Choice([r.value for r in Role]))
@dir_option
def create_user(username: str, role: str, base_dir: Path | None):
    """Create a user with role admin or editor."""
    config = load_config(base_dir)
    config.config_dir.mkdir(parents=True, exist_ok=True)
    click.echo(f"Creating user: {username} ({role})")
    create_account(config, username, role, prompt_password())


@main.command("reset-password")
@click.argument("username")
@dir_option
def reset_password(username: str, base_dir: Path | None):
    """Set a new password for an existing user."""
    config = load_config(base_dir)
    click.echo(f"Resetting password for: {username}")
    password = prompt_password("New password")
    try:
        get_auth(config).reset_password(username, password)
    except (ValidationError, NotFound) as e:
        fail(str(e))
    except PersistenceFailure:
        fail(f"Could not write {config.users_file}")
    AuditLogger(config.audit_log_path).log_user_change("reset_password", username)
    ok("Password reset successfully")


@main.command("list-users")
@dir_option
def list_users(base_dir: Path | None):
    """List all users and their roles."""
    config = load_config(base_dir)
    users = get_auth(config).list_users()
    if not users:
        click.echo("No users found.")
        return

    click.echo(f"{'Username':<20} Role")
    click.echo("-" * 30)
    for user in users:
        click.echo(f"{user.username:<20} {user.role.value}")
    click.echo()
    click.echo(f"Total users: {len(users)}")


@main.command("help")
@click.pass_context
def help_command(ctx: click.Context):
    """Show this help message."""
    click.echo(ctx.parent.get_help())


@main.command()
@click.option("--host", "-h", default=None, help="Host to bind to (default: 127.0.0.1)")
@click.option("--port", "-p", default=None, type=int, help="Port to bind to (default: 8080)")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
@click.option("--workers", "-w", default=1, type=int, help="Number of worker processes (default: 1)")
@click.option("--root-path", default="", help="Path prefix when served below a subdirectory")
@dir_option
def run(
    host: str | None,
    port: int | None,
    reload: bool,
    workers: int,
    root_path: str,
    base_dir: Path | None,
):
    """Start the Relay server."""
    import uvicorn

    config = load_config(base_dir)
    if not config.users_file.exists():
        fail("Site not initialized. Run 'relaycms init' first.")

    if workers > 1 and config.session_backend == "memory":
        fail("The memory session backend cannot be shared between workers.")

    # Workers build their own app from the environment
    os.environ["RELAY_BASE_DIR"] = str(config.base_dir.resolve())

    host = host or config.host
    port = port or config.port
    click.echo(f"Starting Relay on http://{host}:{port}{root_path}")

    uvicorn.run(
        "relaycms.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        workers=workers if not reload else 1,
        root_path=root_path,
    )


if __name__ == "__main__":
    main()
