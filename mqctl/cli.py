"""
CLI interface for mqctl using Click
Main entry point for all commands
"""
import asyncio
import json
import sys
from datetime import datetime

import click
from dateutil.relativedelta import relativedelta
from tabulate import tabulate

from .addressing import derive_journal_address, normalize_host, parse_address, to_provider_address
from .classifier import classify
from .config import get_config
from .errors import InvalidAddressError, MqctlError
from .logger import setup_logging
from .manager import ConnectionManager
from .models import Connection, ConnectionStatus, utcnow
from .storage import SqliteProvider


STATUS_COLORS = {
    ConnectionStatus.NOT_CONNECTED: 'white',
    ConnectionStatus.CONNECTING: 'blue',
    ConnectionStatus.CONNECTED: 'green',
    ConnectionStatus.FAILED: 'red',
    ConnectionStatus.DISCONNECTED: 'yellow',
    ConnectionStatus.TIMEOUT: 'magenta',
}

# Map CLI keys to internal keys
CONFIG_KEYS = {
    'max-retries': 'max_retries',
    'backoff-base': 'backoff_base',
    'probe-timeout': 'probe_timeout',
    'max-workers': 'max_workers',
    'auto-reconnect': 'auto_reconnect',
    'include-system-queues': 'include_system_queues',
    'refresh-interval': 'refresh_interval',
    'db-path': 'db_path',
    'log-level': 'log_level',
}


def _fail(message: str):
    click.echo(click.style(f"Error: {message}", fg='red'))
    sys.exit(1)


def _run(operation):
    """
    Run an async operation against a manager backed by the configured store.

    The manager disconnects everything on exit, so anything that shows
    connection state must be printed inside the operation.

    Args:
        operation: Coroutine function taking a ConnectionManager

    Returns:
        Whatever the operation returns
    """
    cfg = get_config()

    async def runner():
        provider = SqliteProvider(cfg.db_path)
        try:
            async with ConnectionManager(provider, cfg) as manager:
                return await operation(manager)
        finally:
            provider.close()

    try:
        return asyncio.run(runner())
    except MqctlError as e:
        _fail(classify(e))


def _age(moment: datetime) -> str:
    """Human-readable age such as '2h 5m' or '12s'"""
    delta = relativedelta(utcnow(), moment)
    parts = [
        (delta.years, 'y'), (delta.months, 'mo'), (delta.days, 'd'),
        (delta.hours, 'h'), (delta.minutes, 'm'),
    ]
    shown = [f"{value}{unit}" for value, unit in parts if value]
    if not shown:
        return f"{delta.seconds}s"
    return " ".join(shown[:2])


def _truncate(text: str, width: int) -> str:
    return text if len(text) <= width else text[:width - 3] + "..."


def _print_connection(connection: Connection):
    color = STATUS_COLORS.get(connection.status, 'white')
    click.echo(click.style(f"\n=== {connection.formatted_display_name} ===", fg='cyan', bold=True))
    click.echo(f"Status: {click.style(connection.status_description, fg=color)}")
    click.echo(f"Connection ID: {connection.id}")
    if connection.connected_at:
        click.echo(f"Connected for: {_age(connection.connected_at)}")


def _print_queues(connection: Connection, output_format: str):
    if output_format == 'json':
        click.echo(json.dumps(connection.to_dict(), indent=2))
        return

    if not connection.queues:
        click.echo(click.style("No queues found", fg='yellow'))
        return

    headers = ['Name', 'Category', 'Messages', 'Journal', 'Transactional', 'Label']
    rows = []
    for queue in connection.queues:
        name = queue.name if queue.accessible else click.style(queue.name, fg='red')
        messages = queue.message_count if queue.accessible else "N/A"
        rows.append([
            name,
            queue.category.value,
            messages,
            queue.journal_message_count,
            "yes" if queue.transactional else "no",
            _truncate(queue.label, 30),
        ])

    click.echo(f"\n{len(connection.queues)} queue(s) found:\n")
    click.echo(tabulate(rows, headers=headers, tablefmt='grid'))
    click.echo()


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
def cli(verbose):
    """
    mqctl - Message queue connectivity and discovery tool

    Connect to queue hosts, list their queues and journals, and inspect
    messages.
    """
    cfg = get_config()
    setup_logging('DEBUG' if verbose else cfg.log_level)


@cli.command()
@click.argument('host')
@click.option('--display-name', '-n', help='Name shown for the connection')
@click.option('--timeout', '-t', type=float, help='Seconds allowed for probe and discovery')
@click.option('--system', is_flag=True, help='Include system queues')
@click.option('--retry', is_flag=True, help='Retry with exponential backoff on failure')
@click.option('--format', '-f', 'output_format', type=click.Choice(['table', 'json']), default='table',
              help='Output format')
def connect(host, display_name, timeout, system, retry, output_format):
    """
    Connect to a host and list its queues.

    HOST: Computer name ("." or "localhost" for this machine)

    Example:
        mqctl connect . --system
        mqctl connect server01 --timeout 10 --retry
    """
    async def operation(manager):
        if retry:
            connection = await manager.connect_with_retry(host, display_name=display_name, timeout=timeout)
        else:
            connection = await manager.connect(host, display_name=display_name, timeout=timeout)
        if system:
            await manager.refresh(connection.id, include_system_queues=True, timeout=timeout)
        if output_format == 'table':
            _print_connection(connection)
        _print_queues(connection, output_format)

    _run(operation)


@cli.command()
@click.argument('host')
@click.option('--timeout', '-t', type=float, help='Seconds allowed for the probe')
def probe(host, timeout):
    """
    Check that a host's queue manager answers.

    Example:
        mqctl probe server01
    """
    canonical = _run(lambda manager: manager.probe(host, timeout=timeout))
    click.echo(click.style(f"[OK] {canonical.original} is reachable", fg='green'))


@cli.command()
@click.argument('host')
@click.option('--system', is_flag=True, help='Include system queues')
@click.option('--format', '-f', 'output_format', type=click.Choice(['table', 'json']), default='table',
              help='Output format')
def queues(host, system, output_format):
    """
    List the queues of a host.

    Example:
        mqctl queues . --format json
    """
    async def operation(manager):
        connection = await manager.connect(host)
        if system:
            await manager.refresh(connection.id, include_system_queues=True)
        _print_queues(connection, output_format)

    _run(operation)


@cli.command()
@click.argument('host')
@click.option('--interval', '-i', type=float, help='Seconds between refreshes')
@click.option('--count', '-c', default=0, help='Number of refreshes (0 runs until Ctrl+C)')
@click.option('--system', is_flag=True, help='Include system queues')
def watch(host, interval, count, system):
    """
    Refresh a host's queue list periodically.

    Example:
        mqctl watch server01 --interval 10
    """
    cfg = get_config()
    interval = cfg.refresh_interval if interval is None else interval
    if interval <= 0:
        _fail("Interval must be positive")

    async def operation(manager):
        connection = await manager.connect(host)
        refreshes = 0
        while True:
            await manager.refresh(connection.id, include_system_queues=system)
            click.echo(click.style(f"[{utcnow():%H:%M:%S}] {connection}", fg='cyan'))
            _print_queues(connection, 'table')
            refreshes += 1
            if count and refreshes >= count:
                return
            await asyncio.sleep(interval)

    try:
        _run(operation)
    except KeyboardInterrupt:
        click.echo("\nStopped watching")


@cli.command()
@click.argument('address')
def resolve(address):
    """
    Show the provider and journal addresses of a queue.

    Example:
        mqctl resolve 'DIRECT=OS:server01\\private$\\orders'
    """
    try:
        parsed = parse_address(address)
        rows = [
            ['Queue name', parsed.name],
            ['Machine', parsed.machine or "N/A"],
            ['Format name', "yes" if parsed.scheme_qualified else "no"],
            ['Private', "yes" if parsed.is_private else "no"],
            ['Journal', "yes" if parsed.is_journal else "no"],
            ['Provider address', to_provider_address(address)],
            ['Journal address', derive_journal_address(address)],
        ]
    except InvalidAddressError as e:
        _fail(str(e))
    click.echo(tabulate(rows, tablefmt='plain'))


@cli.command()
@click.argument('address')
@click.option('--timeout', '-t', type=float, help='Seconds allowed for the check')
def exists(address, timeout):
    """
    Check whether a queue exists.

    Example:
        mqctl exists '.\\private$\\orders'
    """
    if _run(lambda manager: manager.exists(address, timeout=timeout)):
        click.echo(click.style(f"[OK] Queue exists: {address}", fg='green'))
    else:
        click.echo(click.style(f"Queue not found: {address}", fg='yellow'))


@cli.command()
@click.argument('address')
@click.option('--limit', '-l', default=10, help='Maximum messages to show')
@click.option('--journal', '-j', is_flag=True, help="Peek the queue's journal instead")
@click.option('--format', '-f', 'output_format', type=click.Choice(['table', 'json']), default='table',
              help='Output format')
def peek(address, limit, journal, output_format):
    """
    Show messages without removing them.

    Example:
        mqctl peek '.\\private$\\orders' --journal
    """
    target = address
    if journal:
        try:
            target = derive_journal_address(address)
        except InvalidAddressError as e:
            _fail(str(e))

    messages = _run(lambda manager: manager.peek_messages(target, limit))

    if output_format == 'json':
        data = [
            {
                "id": m.id,
                "label": m.label,
                "body": m.body_text(),
                "arrived_at": m.arrived_at.isoformat() if m.arrived_at else None,
            }
            for m in messages
        ]
        click.echo(json.dumps(data, indent=2))
        return

    if not messages:
        click.echo(click.style(f"No messages in {target}", fg='yellow'))
        return

    headers = ['ID', 'Label', 'Body', 'Age']
    rows = [
        [m.id, _truncate(m.label, 20), _truncate(m.body_text(), 40),
         _age(m.arrived_at) if m.arrived_at else "N/A"]
        for m in messages
    ]
    click.echo(f"\n{len(messages)} message(s) in {target}:\n")
    click.echo(tabulate(rows, headers=headers, tablefmt='grid'))
    click.echo()


@cli.command()
@click.argument('address')
@click.argument('body')
@click.option('--label', default='', help='Message label')
def send(address, body, label):
    """
    Send a text message to a queue.

    Example:
        mqctl send '.\\private$\\orders' 'hello' --label greeting
    """
    message_id = _run(lambda manager: manager.send_message(address, body.encode('utf-8'), label))
    click.echo(click.style(f"[OK] Message {message_id} sent to {address}", fg='green'))


@cli.command()
@click.argument('address')
@click.option('--timeout', '-t', type=float, help='Seconds to wait for the store')
def receive(address, timeout):
    """
    Remove the oldest message from a queue and show it.

    Journaled queues keep a copy in their journal.

    Example:
        mqctl receive '.\\private$\\orders'
    """
    message = _run(lambda manager: manager.receive_message(address, timeout=timeout))
    click.echo(click.style(f"[OK] Received message {message.id} from {address}", fg='green'))
    click.echo(f"Label: {message.label or 'N/A'}")
    click.echo(f"Body: {message.body_text()}")


@cli.command()
@click.argument('address')
@click.option('--yes', '-y', is_flag=True, help='Do not ask for confirmation')
def purge(address, yes):
    """
    Delete every message in a queue (or journal).

    Example:
        mqctl purge '.\\private$\\orders;journal' --yes
    """
    if not yes:
        click.confirm(f"Delete all messages in {address}?", abort=True)
    count = _run(lambda manager: manager.purge_queue(address))
    click.echo(click.style(f"[OK] Purged {count} message(s) from {address}", fg='green'))


@cli.command(name='create-queue')
@click.argument('host')
@click.argument('name')
@click.option('--label', default='', help='Queue label')
@click.option('--transactional', is_flag=True, help='Create a transactional queue')
@click.option('--journal/--no-journal', default=True, help='Keep copies of received messages')
def create_queue(host, name, label, transactional, journal):
    """
    Create a private queue in the local store.

    Example:
        mqctl create-queue . orders --label "Order intake"
    """
    try:
        canonical = normalize_host(host)
    except InvalidAddressError as e:
        _fail(str(e))
    if not name.strip() or any(c in name for c in '\\/;'):
        _fail(f"Invalid queue name: {name!r}")

    provider = SqliteProvider(get_config().db_path)
    try:
        info = provider.create_queue(canonical.name, name.strip(), label, transactional, journal)
    finally:
        provider.close()
    click.echo(click.style(f"[OK] Queue created: {info.path}", fg='green'))


@cli.group()
def config():
    """Manage configuration settings"""
    pass


def _parse_value(value: str):
    lowered = value.lower()
    if lowered in ('true', 'yes', 'on'):
        return True
    if lowered in ('false', 'no', 'off'):
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        return value


@config.command(name='set')
@click.argument('key')
@click.argument('value')
def config_set(key, value):
    """
    Set a configuration value.

    Example:
        mqctl config set max-retries 5
        mqctl config set probe-timeout 10
    """
    internal_key = CONFIG_KEYS.get(key)
    if not internal_key:
        click.echo(f"Available keys: {', '.join(CONFIG_KEYS)}")
        _fail(f"Unknown config key '{key}'")

    parsed = _parse_value(value)
    get_config().set(internal_key, parsed)
    click.echo(click.style(f"[OK] Config updated: {key} = {parsed}", fg='green'))


@config.command(name='get')
@click.argument('key', required=False)
def config_get(key):
    """
    Get configuration value(s).

    Example:
        mqctl config get max-retries
        mqctl config get
    """
    cfg = get_config()

    if key:
        internal_key = CONFIG_KEYS.get(key)
        if not internal_key:
            _fail(f"Unknown config key '{key}'")
        click.echo(f"{key}: {cfg.get(internal_key)}")
    else:
        click.echo(click.style("\n=== Configuration ===", fg='cyan', bold=True))
        for k, v in cfg.get_all().items():
            click.echo(f"  {k}: {v}")
        click.echo()


def main():
    """Main entry point"""
    cli()


if __name__ == '__main__':
    main()
