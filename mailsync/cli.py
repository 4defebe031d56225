"""Command line entry point for the mailsync engine."""

import argparse
import asyncio
from typing import List

from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from mailsync.core.email.imap import ConnectionTestParams, ImapEngine
from mailsync.core.models.account import DEFAULT_IMAP_PORT
from mailsync.utils.config import ConfigManager
from mailsync.utils.errors import ConfigurationError, MailSyncError, format_error_message
from mailsync.utils.logging import async_log_call, get_logger, init_logging

logger = get_logger(__name__)


## Argument Parser


def setup_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mailsync",
        description="Per-account IMAP synchronisation into a local mail store.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override the configured log level",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    account_parser = subparsers.add_parser("account", help="Manage accounts")
    account_sub = account_parser.add_subparsers(dest="account_command", required=True)

    add_parser = account_sub.add_parser("add", help="Add an account (password is prompted)")
    add_parser.add_argument("email", help="Account e-mail address / IMAP user")
    add_parser.add_argument(
        "--provider",
        default="custom",
        help="Provider name used to look up the IMAP host (gmail, outlook, ...)",
    )
    add_parser.add_argument("--host", default=None, help="IMAP host")
    add_parser.add_argument("--port", type=int, default=None, help="IMAP port")

    account_sub.add_parser("list", help="List configured accounts")

    test_parser = subparsers.add_parser("test", help="Check IMAP credentials")
    test_parser.add_argument("email", help="IMAP user")
    test_parser.add_argument("--host", required=True, help="IMAP host")
    test_parser.add_argument(
        "--port",
        type=int,
        default=DEFAULT_IMAP_PORT,
        help=f"IMAP port (default: {DEFAULT_IMAP_PORT})",
    )

    folders_parser = subparsers.add_parser("folders", help="List and store server folders")
    folders_parser.add_argument("account_id", help="Account ID")

    sync_parser = subparsers.add_parser("sync", help="Fetch new messages once")
    sync_parser.add_argument("account_id", help="Account ID")
    sync_parser.add_argument("--mailbox", default="INBOX", help="Mailbox (default: INBOX)")

    watch_parser = subparsers.add_parser("watch", help="Sync and IDLE until interrupted")
    watch_parser.add_argument(
        "account_ids", nargs="*", help="Account IDs (default: all accounts)"
    )

    return parser


## Commands


async def _account_add(engine: ImapEngine, args, console: Console) -> int:
    password = Prompt.ask(f"Password for {args.email}", password=True, console=console)
    blob = await engine.secrets.encrypt(password)
    account = await engine.store.accounts.add(
        args.email,
        blob,
        provider=args.provider,
        imap_host=args.host,
        imap_port=args.port,
    )
    console.print(f"[green]Added account[/green] {account.email} ([cyan]{account.id}[/cyan])")
    return 0


async def _account_list(engine: ImapEngine, console: Console) -> int:
    accounts = await engine.store.accounts.list_all()
    if not accounts:
        console.print("[yellow]No accounts configured.[/yellow]")
        return 0

    table = Table(title="Accounts")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Email", style="magenta")
    table.add_column("Provider", style="green")
    table.add_column("Server", justify="right", style="yellow")

    for account in accounts:
        table.add_row(
            account.id, account.email, account.provider, f"{account.host}:{account.port}"
        )

    console.print(table)
    return 0


async def _test(engine: ImapEngine, args, console: Console) -> int:
    password = Prompt.ask(f"Password for {args.email}", password=True, console=console)
    result = await engine.test_connection(
        ConnectionTestParams(
            email=args.email, password=password, host=args.host, port=args.port
        )
    )
    if result.success:
        console.print(f"[green]Connected to {args.host}:{args.port}[/green]")
        return 0
    console.print(f"[red]Connection failed: {result.error}[/red]")
    return 1


async def _folders(engine: ImapEngine, args, console: Console) -> int:
    if not await engine.connect(args.account_id):
        console.print("[red]Could not connect, check the logs for details.[/red]")
        return 1

    folders = await engine.list_and_sync_folders(args.account_id)
    table = Table(title="Folders")
    table.add_column("Path", style="cyan")
    table.add_column("Name", style="magenta")
    table.add_column("Type", style="green")
    for folder in folders:
        table.add_row(folder.path, folder.name, folder.type.value)
    console.print(table)
    return 0


async def _sync(engine: ImapEngine, args, console: Console) -> int:
    engine.config.idle_on_connect = False
    if not await engine.connect(args.account_id):
        console.print("[red]Could not connect, check the logs for details.[/red]")
        return 1

    await engine.list_and_sync_folders(args.account_id)
    count = await engine.sync_new_emails(args.account_id, args.mailbox)
    console.print(f"[green]{count} new message(s) in {args.mailbox}[/green]")
    return 0


async def _watch(engine: ImapEngine, args, console: Console) -> int:
    account_ids: List[str] = args.account_ids or [
        account.id for account in await engine.store.accounts.list_all()
    ]
    if not account_ids:
        console.print("[yellow]No accounts configured.[/yellow]")
        return 1

    def on_new_mail(account_id: str, folder_id: str, count: int) -> None:
        console.print(f"[bold cyan]{count} new message(s)[/bold cyan] in {folder_id}")

    engine.set_new_email_callback(on_new_mail)
    mailbox = engine.config.idle_mailbox
    # IDLE starts below, after the first sync
    idle_on_connect = engine.config.idle_on_connect
    engine.config.idle_on_connect = False

    connected = []
    for account_id in account_ids:
        if await engine.connect(account_id):
            connected.append(account_id)
        else:
            console.print(f"[red]Could not connect {account_id}[/red]")

    for account_id in connected:
        await engine.list_and_sync_folders(account_id)
        await engine.sync_new_emails(account_id, mailbox)
        await engine.start_idle(account_id, mailbox)
    engine.config.idle_on_connect = idle_on_connect

    console.print(f"[green]Watching {mailbox} on {len(connected)} account(s), Ctrl-C to stop[/green]")
    try:
        await asyncio.Event().wait()
    finally:
        await engine.disconnect_all()
    return 0


@async_log_call
async def dispatch_command(args, console: Console, config_manager: ConfigManager) -> int:
    """Run one command against a fresh engine.

    Returns:
        Exit code (0 = success, 1 = error)
    """
    try:
        async with ImapEngine(config_manager=config_manager) as engine:
            if args.command == "account":
                if args.account_command == "add":
                    return await _account_add(engine, args, console)
                return await _account_list(engine, console)
            if args.command == "test":
                return await _test(engine, args, console)
            if args.command == "folders":
                return await _folders(engine, args, console)
            if args.command == "sync":
                return await _sync(engine, args, console)
            if args.command == "watch":
                return await _watch(engine, args, console)
            raise ValueError(f"Unknown command: {args.command}")

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e.message}")
        console.print(f"[red]{format_error_message(e)}[/red]")
        return 1

    except MailSyncError as e:
        logger.error(f"Command failed: {e.message}")
        console.print(f"[red]Error: {format_error_message(e)}[/red]")
        return 1


def main() -> int:
    """Main CLI entry point.

    Returns:
        Exit code
    """
    console = Console()

    try:
        parser = setup_argument_parser()
        args = parser.parse_args()

        try:
            config_manager = ConfigManager()
        except MailSyncError as e:
            console.print(f"[red]Configuration error: {e.message}[/red]")
            return 1

        logging_config = config_manager.config.logging
        init_logging(
            args.log_level or logging_config.log_level,
            log_to_files=logging_config.log_to_files,
        )

        return asyncio.run(dispatch_command(args, console, config_manager))

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
