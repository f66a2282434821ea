"""CLI for bond.credit - agent credit scoring, vault monitoring and NEAR wallets."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from bond_credit.config import LoggingConfig

app = typer.Typer(
    name="bond-credit",
    help="Agent credit scoring, credit vault risk monitoring and NEAR wallet tooling.",
    no_args_is_help=True,
)
console = Console()

_selected_root: Path | None = None


def _version_callback(value: bool):
    if value:
        from bond_credit import __version__
        console.print(f"bond-credit {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    root: Path = typer.Option(
        None,
        "--root",
        "-r",
        help="Directory containing .bond-credit (defaults to the current directory)",
        envvar="BOND_CREDIT_ROOT",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show info-level logs"),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
):
    """Agent credit scoring, credit vault risk monitoring and NEAR wallet tooling."""
    global _selected_root
    _selected_root = root
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _run(coro):
    """Run an async function synchronously."""
    return asyncio.run(coro)


def _add_file_logging(config: LoggingConfig, root_dir: Path) -> None:
    """Attach the configured log file to the package logger."""
    if not config.file:
        return
    path = root_dir / config.file
    path.parent.mkdir(parents=True, exist_ok=True)
    package_logger = logging.getLogger("bond_credit")
    if any(
        isinstance(h, logging.FileHandler) and Path(h.baseFilename) == path.resolve()
        for h in package_logger.handlers
    ):
        return
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    package_logger.addHandler(handler)
    package_logger.setLevel(config.level.upper())


async def _load():
    from bond_credit.core.platform import Platform

    try:
        platform = await Platform.load(_selected_root)
    except FileNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    _add_file_logging(platform.config.logging, platform.root_dir)
    return platform


# ------------------------------------------------------------------
# init
# ------------------------------------------------------------------


@app.command()
def init(
    name: str = typer.Option("bond.credit", "--name", "-n", help="Deployment name"),
    network: str = typer.Option(None, "--network", help="NEAR network (mainnet, testnet, localnet)"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config"),
):
    """Initialize a .bond-credit directory with config and event database."""
    from bond_credit.config import get_root_dir, save_config
    from bond_credit.core.platform import Platform

    root_dir = get_root_dir(_selected_root)
    if (root_dir / "config.yaml").exists() and not force:
        console.print(f"[yellow]Already initialized at {root_dir}.[/yellow] Use --force to overwrite.")
        raise typer.Exit(1)

    async def _init():
        platform = await Platform.init(_selected_root, name=name)
        if network:
            platform.config.near.network_id = network
            save_config(platform.config, root_dir / "config.yaml")
        await platform.shutdown()
        return platform.config

    config = _run(_init())
    console.print(Panel(
        f"[bold green]Initialized '{config.name}'[/bold green]\n\n"
        f"Config: {root_dir / 'config.yaml'}\n"
        f"Database: {root_dir / 'bond-credit.db'}\n"
        f"NEAR network: {config.near.resolved_network_id}\n\n"
        f"[dim]Next: 'bond-credit wallet create' or 'bond-credit serve'.[/dim]",
        title="bond.credit",
    ))


# ------------------------------------------------------------------
# serve
# ------------------------------------------------------------------


@app.command()
def serve(
    port: int = typer.Option(None, "--port", "-p", help="Port to serve on"),
    host: str = typer.Option(None, "--host", help="Host to bind to"),
):
    """Launch the JSON API."""
    from bond_credit.config import get_root_dir, load_config
    from bond_credit.dashboard.server import run_dashboard

    root_dir = get_root_dir(_selected_root)
    if not (root_dir / "config.yaml").exists():
        console.print(f"[red]No bond.credit setup found at {root_dir}.[/red] Run 'bond-credit init' first.")
        raise typer.Exit(1)
    config = load_config(root_dir / "config.yaml")
    _add_file_logging(config.logging, root_dir)
    host = host or config.dashboard.host
    port = port or config.dashboard.port

    console.print(f"[bold green]Starting API at http://{host}:{port}[/bold green]")
    run_dashboard(host=host, port=port, base_path=_selected_root)


# ------------------------------------------------------------------
# agents / tiers
# ------------------------------------------------------------------


@app.command()
def agents(
    tier: str = typer.Option(None, "--tier", "-t", help="Filter by credibility tier"),
    category: str = typer.Option(None, "--category", "-c", help="Filter by category"),
):
    """Show agents with their scores, tiers and max LTV."""
    from bond_credit.scoring.tiers import calculate_max_ltv

    async def _agents():
        platform = await _load()
        result = platform.store.list_agents()
        await platform.shutdown()
        return result

    rows = _run(_agents())
    if tier:
        rows = [a for a in rows if a.credibility_tier.value == tier.upper()]
    if category:
        rows = [a for a in rows if a.metadata.category.lower() == category.lower()]

    if not rows:
        console.print("[yellow]No agents match.[/yellow]")
        return

    table = Table(title="Agents")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="bold")
    table.add_column("Category", style="cyan")
    table.add_column("Score", justify="right")
    table.add_column("Tier")
    table.add_column("Max LTV", justify="right")
    table.add_column("Status", style="dim")
    for a in rows:
        table.add_row(
            a.id,
            a.name,
            a.metadata.category,
            str(a.score.overall),
            a.credibility_tier.value,
            f"{calculate_max_ltv(a)}%",
            a.status.value,
        )
    console.print(table)


@app.command()
def tiers():
    """Show the credibility tier table."""
    from bond_credit.scoring.tiers import CREDIBILITY_TIERS

    table = Table(title="Credibility Tiers")
    table.add_column("Tier", style="bold")
    table.add_column("Score Range", justify="right")
    table.add_column("Max LTV", justify="right")
    table.add_column("Description")
    for tier, info in CREDIBILITY_TIERS.items():
        table.add_row(
            tier.value,
            f"{info.min_score}-{info.max_score}",
            f"{info.max_ltv}%",
            info.description,
        )
    console.print(table)


# ------------------------------------------------------------------
# score-opportunities
# ------------------------------------------------------------------


def _prompt_metrics() -> list[dict]:
    """Interactively collect metrics for one opportunity."""
    console.print("\n[bold]Enter opportunity metrics[/bold] [dim](press Enter to skip optional values)[/dim]")

    def _float(label: str) -> float | None:
        raw = console.input(f"  {label}: ").strip()
        return float(raw) if raw else None

    opportunity_id = int(console.input("  Opportunity ID: ").strip())
    return [{
        "id": opportunity_id,
        "performance": {
            "apy_7d": _float("7-day APY %"),
            "apy_30d": _float("30-day APY %"),
            "target_apy": _float("Target APY %"),
        },
        "reliability": {
            "success_rate": _float("Intent success rate %") or 0,
            "avg_gas_used": _float("Average gas used") or 0,
            "avg_latency_ms": _float("Average latency (ms)") or 0,
            "total_intents": int(_float("Total intents") or 0),
        },
        "safety": {
            "is_audited": typer.confirm("  Audited?", default=False),
            "has_incidents": typer.confirm("  Any incidents?", default=False),
        },
    }]


@app.command("score-opportunities")
def score_opportunities(
    file: Path = typer.Option(None, "--file", "-f", help="YAML or JSON file with a list of opportunity metrics"),
):
    """Recompute trust scores and record the changes in the event log."""
    from bond_credit.scoring.opportunity import OpportunityMetrics

    if file:
        raw = yaml.safe_load(file.read_text(encoding="utf-8"))
        entries = raw.get("opportunities", []) if isinstance(raw, dict) else raw
    else:
        entries = _prompt_metrics()

    try:
        batch = [OpportunityMetrics.model_validate(e) for e in entries or []]
    except ValueError as e:
        console.print(f"[red]Invalid metrics: {e}[/red]")
        raise typer.Exit(1)
    if not batch:
        console.print("[yellow]No opportunities to score.[/yellow]")
        return

    async def _score():
        platform = await _load()
        scores = await platform.rescore_opportunities(batch)
        await platform.shutdown()
        return scores

    scores = _run(_score())

    table = Table(title="Trust Scores")
    table.add_column("Opportunity", style="bold")
    table.add_column("Performance", justify="right")
    table.add_column("Reliability", justify="right")
    table.add_column("Safety", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Band")
    for s in scores:
        table.add_row(
            str(s.opportunity_id),
            f"{s.performance_score}/40",
            f"{s.reliability_score}/40",
            f"{s.safety_score}/20",
            str(s.total_score),
            f"[{s.risk.color}]{s.risk.level}[/{s.risk.color}]",
        )
    console.print(table)


# ------------------------------------------------------------------
# events sub-commands
# ------------------------------------------------------------------

events_app = typer.Typer(
    name="events",
    help="Inspect the SQLite event log.",
    no_args_is_help=True,
)
app.add_typer(events_app, name="events")


@events_app.command("stats")
def events_stats():
    """Show event counts per table and for the last 24 hours."""

    async def _stats():
        platform = await _load()
        stats = await platform.events.get_event_stats()
        await platform.shutdown()
        return stats

    stats = _run(_stats())
    console.print(Panel(
        f"Deposits: {stats.deposits} ([dim]{stats.recent_deposits} in 24h[/dim])\n"
        f"Withdrawals: {stats.withdrawals} ([dim]{stats.recent_withdrawals} in 24h[/dim])\n"
        f"Allocations: {stats.allocations} ([dim]{stats.recent_allocations} in 24h[/dim])\n"
        f"Intents: {stats.intents}\n"
        f"Score updates: {stats.score_updates}",
        title="Event Log",
    ))


@events_app.command("list")
def events_list(
    kind: str = typer.Option(
        "system", "--type", "-t",
        help="deposits, withdrawals, allocations, intents, scores or system",
    ),
    user: str = typer.Option(None, "--user", "-u", help="Filter by user id"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum rows"),
):
    """List the newest events of one type."""
    queries = {
        "deposits": lambda ev: ev.get_deposit_events(user, limit),
        "withdrawals": lambda ev: ev.get_withdrawal_events(user, limit),
        "allocations": lambda ev: ev.get_allocation_events(user, None, limit),
        "intents": lambda ev: ev.get_intent_events(user, limit),
        "scores": lambda ev: ev.get_score_events(None, limit),
        "system": lambda ev: ev.get_system_events(limit),
    }
    if kind not in queries:
        console.print(f"[red]Unknown event type '{kind}'.[/red] Choose from: {', '.join(queries)}")
        raise typer.Exit(1)

    async def _list():
        platform = await _load()
        rows = await queries[kind](platform.events)
        await platform.shutdown()
        return rows

    rows = _run(_list())
    if not rows:
        console.print(f"[yellow]No {kind} events.[/yellow]")
        return

    data = [r.to_api() for r in rows]
    columns = [c for c in data[0] if c != "id"]
    table = Table(title=f"{kind.title()} Events")
    table.add_column("ID", style="dim")
    for c in columns:
        table.add_column(c)
    for row in data:
        table.add_row(str(row["id"]), *[
            json.dumps(row[c]) if isinstance(row[c], (dict, list)) else str(row[c]) for c in columns
        ])
    console.print(table)


# ------------------------------------------------------------------
# wallet sub-commands
# ------------------------------------------------------------------

wallet_app = typer.Typer(
    name="wallet",
    help="Manage NEAR wallets and transfers.",
    no_args_is_help=True,
)
app.add_typer(wallet_app, name="wallet")


def _ask_password(confirm: bool = False) -> str:
    password = console.input("[bold]Wallet password: [/bold]", password=True)
    if confirm and password != console.input("[bold]Confirm password: [/bold]", password=True):
        console.print("[red]Passwords do not match.[/red]")
        raise typer.Exit(1)
    return password


@wallet_app.command("create")
def wallet_create(
    count: int = typer.Option(5, "--count", "-c", help="Number of wallets to derive"),
    words: int = typer.Option(12, "--words", help="Mnemonic length (12 or 24)"),
    restore: bool = typer.Option(False, "--import", help="Enter an existing mnemonic instead of generating one"),
):
    """Create an encrypted keystore and derive implicit-account wallets."""
    from bond_credit.wallet.derivation import generate_mnemonic

    if restore:
        mnemonic = console.input("[bold]Mnemonic: [/bold]", password=True)
    else:
        mnemonic = generate_mnemonic(words)
    password = _ask_password(confirm=True)

    async def _create():
        platform = await _load()
        manager = platform.wallet_manager
        if manager.has_wallet():
            await platform.shutdown()
            return None
        try:
            accounts = manager.create(mnemonic, password, count=count)
            await manager.register_wallets_in_db()
        finally:
            await platform.shutdown()
        return accounts

    try:
        accounts = _run(_create())
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    if accounts is None:
        console.print("[yellow]Wallet already exists.[/yellow] Use 'bond-credit wallet derive' to list it.")
        raise typer.Exit(1)

    lines = "\n".join(f"  {a['index']}: [cyan]{a['accountId']}[/cyan]" for a in accounts)
    body = f"[bold green]Wallet created![/bold green]\n\n{lines}"
    if not restore:
        body += (
            f"\n\n[bold]Mnemonic:[/bold] {mnemonic}\n"
            f"[dim]Write this down. It is stored encrypted and will not be shown again.[/dim]"
        )
    console.print(Panel(body, title="NEAR Wallets"))


@wallet_app.command("derive")
def wallet_derive(
    count: int = typer.Option(None, "--count", "-c", help="Number of wallets (defaults to the keystore count)"),
    show_keys: bool = typer.Option(False, "--show-keys", help="Also print private keys"),
):
    """Re-derive wallets from the keystore mnemonic."""
    password = _ask_password()

    async def _derive():
        platform = await _load()
        try:
            return platform.wallet_manager.unlock(password, count)
        finally:
            await platform.shutdown()

    try:
        wallets = _run(_derive())
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    table = Table(title="Derived Wallets")
    table.add_column("#", justify="right")
    table.add_column("Path", style="dim")
    table.add_column("Account", style="cyan")
    table.add_column("Public Key")
    if show_keys:
        table.add_column("Private Key", style="red")
    for w in wallets:
        row = [str(w.index), w.path, w.account_id, w.public_key]
        if show_keys:
            row.append(w.secret_key)
        table.add_row(*row)
    console.print(table)


@wallet_app.command("balance")
def wallet_balance(
    account: str = typer.Argument(None, help="Account id (defaults to all keystore accounts)"),
):
    """Show NEAR balances."""

    async def _balance():
        platform = await _load()
        manager = platform.wallet_manager
        if account:
            ids = [account]
        else:
            ids = [a["accountId"] for a in manager.accounts] or [manager.default_account()]
        try:
            return [await manager.get_balance(i) for i in ids if i] or [await manager.get_balance()]
        finally:
            await platform.shutdown()

    results = _run(_balance())
    if len(results) == 1 and "accountId" not in results[0]:
        console.print(f"[red]{results[0]['error']}[/red]")
        raise typer.Exit(1)

    table = Table(title="NEAR Balances")
    table.add_column("Account", style="cyan")
    table.add_column("Balance (NEAR)", justify="right")
    table.add_column("Status", style="dim")
    for info in results:
        err = info.get("error")
        table.add_row(
            info["accountId"],
            info["balanceNear"],
            f"[red]{err}[/red]" if err else "[green]OK[/green]",
        )
    console.print(table)


@wallet_app.command("send")
def wallet_send(
    amount: str = typer.Argument(help="Amount of NEAR to send (e.g. 0.01)"),
    to: str = typer.Option(..., "--to", "-t", help="Receiver account id"),
    index: int = typer.Option(None, "--from-index", help="Sign with keystore wallet N instead of near.account_id"),
):
    """Send one NEAR transfer. Requires confirmation."""
    from bond_credit.wallet.rpc import NearRpcError
    from bond_credit.wallet.transactions import near_to_yocto

    try:
        amount_yocto = near_to_yocto(amount)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    console.print(f"\n[bold]Send {amount} NEAR[/bold]")
    console.print(f"  To: {to}\n")
    typer.confirm("Confirm this transaction?", abort=True)
    password = _ask_password() if index is not None else None

    async def _send():
        platform = await _load()
        manager = platform.wallet_manager
        try:
            if index is not None:
                wallet = manager.unlock(password, count=index + 1)[index]
                signer_id, keypair = wallet.account_id, wallet.keypair
            else:
                signer_id, keypair = manager.configured_signer()
            record = await manager.send_transfer(keypair, signer_id, to, amount_yocto)
            return record, manager.network
        finally:
            await platform.shutdown()

    try:
        record, network = _run(_send())
    except (NearRpcError, ValueError, FileNotFoundError) as e:
        console.print(f"[red]Transaction failed: {e}[/red]")
        raise typer.Exit(1)

    console.print(Panel(
        f"[bold green]Transaction sent![/bold green]\n\n"
        f"From: {record.sender_id}\n"
        f"Tx: [cyan]{record.tx_hash}[/cyan]\n"
        f"Explorer: {network.tx_url(record.tx_hash)}",
        title="Transaction Sent",
    ))


@wallet_app.command("bulk")
def wallet_bulk(
    receiver: str = typer.Option(None, "--receiver", help="Receiver account (defaults to near.receiver_id)"),
    wallets: int = typer.Option(None, "--wallets", "-w", help="Number of keystore wallets to use"),
    count: int = typer.Option(None, "--count", "-c", help="Transfers per wallet"),
    amount: str = typer.Option(None, "--amount", "-a", help="NEAR per transfer"),
    delay: float = typer.Option(None, "--delay", help="Seconds between transfers of one wallet"),
    batch_size: int = typer.Option(None, "--batch-size", help="Wallets per batch"),
):
    """Send a fixed number of transfers from each keystore wallet to one receiver."""
    from bond_credit.wallet.transfers import TransferWallet

    async def _bulk(password: str):
        platform = await _load()
        try:
            receiver_id = receiver or platform.config.near.receiver_id
            if not receiver_id:
                raise ValueError("No receiver given and near.receiver_id is not configured")
            derived = platform.wallet_manager.unlock(password, wallets)
            senders = [TransferWallet(w.account_id, w.secret_key) for w in derived]

            def _progress(account_id, result):
                console.print(
                    f"  [dim]{account_id[:12]}...[/dim] "
                    f"{result.successful} ok / {result.failed} failed"
                )

            executor = platform.bulk_executor(on_progress=_progress)
            return await executor.run_batched(
                senders, receiver_id, count, amount, delay, batch_size=batch_size,
            )
        finally:
            await platform.shutdown()

    password = _ask_password()
    typer.confirm("Start bulk transfers?", abort=True)
    try:
        summaries = _run(_bulk(password))
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    for summary in summaries:
        data = summary.to_dict()
        console.print(Panel(
            f"Run: [cyan]{data['runId']}[/cyan] -> {data['receiverId']}\n"
            f"Wallets: {data['wallets']} (skipped {len(data['skippedWallets'])})\n"
            f"Transfers: {data['successful']}/{data['totalTransfers']} successful "
            f"({data['successRate']}%)\n"
            f"Moved: {data['totalMovedNear']} NEAR",
            title="Bulk Transfer Summary",
        ))


@wallet_app.command("transfers")
def wallet_transfers(
    sender: str = typer.Option(None, "--sender", "-s", help="Filter by sender account"),
    run_id: str = typer.Option(None, "--run", help="Filter by bulk run id"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum rows"),
):
    """Show recorded transfers, newest first."""
    from bond_credit.wallet.transactions import format_near

    async def _transfers():
        platform = await _load()
        rows = await platform.wallet_manager.list_transfers(sender, run_id, limit)
        await platform.shutdown()
        return rows

    rows = _run(_transfers())
    if not rows:
        console.print("[yellow]No transfers recorded.[/yellow]")
        return

    table = Table(title="Transfers")
    table.add_column("Run", style="dim")
    table.add_column("Sender", style="cyan")
    table.add_column("Receiver")
    table.add_column("NEAR", justify="right")
    table.add_column("Status")
    table.add_column("Tx / Error", style="dim")
    for t in rows:
        ok = t.status.value == "success"
        table.add_row(
            t.run_id or "-",
            t.sender_id,
            t.receiver_id,
            format_near(t.amount_yocto, 6),
            f"[green]{t.status.value}[/green]" if ok else f"[red]{t.status.value}[/red]",
            (t.tx_hash if ok else t.error) or "",
        )
    console.print(table)
