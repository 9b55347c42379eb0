# src/shortlink_client/cli.py

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from typing import List, Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.text import Text
from rich.markup import escape as rich_escape

from .client import ShortlinkClient
from .error_handler import ApiError
from .login_orchestrator import LoginOutcome
from .settings import ClientSettings, data_root

console = Console()


async def _login(client: ShortlinkClient, identity: Optional[str]) -> int:
    identity = identity or Prompt.ask("Email")
    secret = Prompt.ask("Password", password=True)

    result = await client.auth.login(identity, secret)

    if result.outcome is LoginOutcome.INVALID_SECRET:
        console.print("[bold red]Incorrect password.[/bold red]")
        return 1

    if result.outcome is LoginOutcome.UNKNOWN_IDENTITY:
        console.print(
            Panel(
                Text.from_markup(
                    f"No account is registered for [bold]{rich_escape(identity)}[/bold].\n"
                    "Your email and password are already filled in; "
                    "only a display name is needed to finish signing up."
                ),
                title="Create an account?",
                style="bold blue",
            )
        )
        if not Confirm.ask("Create the account now?", default=True):
            return 1
        display_name = Prompt.ask("Display name")
        result = await result.registration_offer.accept(display_name)

    console.print(f"[bold green]Signed in as {rich_escape(result.identity or identity)}.[/bold green]")
    return 0


async def _status(client: ShortlinkClient) -> int:
    session = await client.auth.verify_session()
    if not session.authenticated:
        console.print("[yellow]Not signed in.[/yellow]")
        return 1
    expires = datetime.fromtimestamp(session.expires_at).strftime("%Y-%m-%d %H:%M:%S")
    console.print(
        f"Signed in as [bold]{rich_escape(session.identity or '?')}[/bold], "
        f"token valid until {expires}."
    )
    return 0


async def _logout(client: ShortlinkClient, everywhere: bool) -> int:
    ended = await (client.auth.logout_all() if everywhere else client.auth.logout())
    console.print("Signed out." if ended else "[yellow]Not signed in.[/yellow]")
    return 0


async def run(args: argparse.Namespace, settings: ClientSettings, transport=None) -> int:
    async with ShortlinkClient(settings, transport=transport) as client:
        try:
            if args.command == "login":
                return await _login(client, args.email)
            if args.command == "status":
                return await _status(client)
            return await _logout(client, args.all)
        except ApiError as e:
            console.print(f"[bold red]Error:[/bold red] {rich_escape(e.message)} ({e.code})")
            return 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shortlink-auth", description="Sign in to the shortlink service."
    )
    parser.add_argument("--api-url", type=str, default=None, help="Backend base URL.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    login = sub.add_parser("login", help="Sign in (offers to create an unknown account).")
    login.add_argument("--email", type=str, default=None)

    sub.add_parser("status", help="Show the stored session.")

    logout = sub.add_parser("logout", help="Sign out.")
    logout.add_argument("--all", action="store_true", help="Sign out every device.")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    load_dotenv(data_root() / ".env")
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = ClientSettings.from_env()
    if args.api_url:
        settings.api_url = args.api_url.rstrip("/")

    try:
        return asyncio.run(run(args, settings))
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        return 130


if __name__ == "__main__":
    sys.exit(main())
