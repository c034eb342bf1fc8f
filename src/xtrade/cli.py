from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import typer
import uvicorn

from xtrade.api import create_app
from xtrade.config import load_app_config
from xtrade.errors import XTradeError
from xtrade.ipc import IpcClient, IpcServer
from xtrade.logging_utils import configure_logging, verbosity_level
from xtrade.offline import OfflineClient
from xtrade.online import LocalClient, SharedStore
from xtrade.persistence import StateFile
from xtrade.remote import RemoteClient
from xtrade.schemas import (
    BotCreate,
    BotFilter,
    BotUpdate,
    ListenerCreate,
    ListenerFilter,
    ListenerUpdate,
)
from xtrade.settings import Settings
from xtrade.transport import BotTransport, encode_result

app = typer.Typer(no_args_is_help=True, add_completion=False)
logger = logging.getLogger("xtrade")


@dataclass(frozen=True)
class CliOptions:
    state: Optional[Path]
    url: Optional[str]
    ipc: Optional[Path]
    config: Optional[Path]
    verbose: int


def _open_transport(opts: CliOptions) -> BotTransport:
    """
    Pick the access mode: --url (REST), --ipc (socket), --state (offline),
    then the XTRADE_URL / XTRADE_IPC_SOCKET environment, then offline.
    """
    settings = Settings()
    if opts.url:
        return RemoteClient(base_url=opts.url)
    if opts.ipc is not None:
        return IpcClient(socket_path=opts.ipc)
    if opts.state is None:
        if settings.url:
            return RemoteClient(base_url=settings.url)
        if settings.ipc_socket:
            return IpcClient(socket_path=settings.ipc_socket)

    cfg = load_app_config(opts.config)
    state_path = opts.state or Path(
        settings.state_file_override() or cfg.local_state.state_file_path
    )
    return OfflineClient(
        state_file=StateFile(state_path),
        config=cfg.snapshot(),
        lock_timeout_seconds=cfg.api_server.lock_timeout_seconds,
    )


def _run(ctx: typer.Context, fn: Callable[[BotTransport], Any]) -> None:
    opts: CliOptions = ctx.obj
    transport: BotTransport | None = None
    try:
        transport = _open_transport(opts)
        result = fn(transport)
    except XTradeError as e:
        typer.echo(f"error ({e.kind}): {e.message}", err=True)
        raise typer.Exit(code=e.exit_code) from e
    finally:
        if transport is not None:
            transport.close()
    typer.echo(json.dumps(encode_result(result), indent=2, ensure_ascii=False))


@app.callback()
def main(
    ctx: typer.Context,
    state: Optional[Path] = typer.Option(None, help="Local state file (offline mode)."),
    url: Optional[str] = typer.Option(None, help="URL of a running xtrade server (online mode)."),
    ipc: Optional[Path] = typer.Option(None, help="Unix socket of a running xtrade server."),
    config: Optional[Path] = typer.Option(None, help="Config file (TOML). Default: config.toml."),
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="More logs (-v, -vv)."),
) -> None:
    """
    Manage trading bots and their listeners, locally or against a server.
    """
    if sum(x is not None for x in (state, url, ipc)) > 1:
        raise typer.BadParameter("use only one of --state, --url and --ipc")
    settings = Settings()
    configure_logging(verbosity_level(verbose, default=settings.log_level_or("WARNING")))
    ctx.obj = CliOptions(state=state, url=url, ipc=ipc, config=config, verbose=verbose)


@app.command()
def add_bot(
    ctx: typer.Context,
    name: str = typer.Option(..., help="Bot name."),
    exchange: str = typer.Option(..., help="Exchange the bot trades on."),
    trading_fee: float = typer.Option(0.0, help="Trading fee (>= 0)."),
    api_key: Optional[str] = typer.Option(None),
    api_secret: Optional[str] = typer.Option(None),
    rest_endpoint: Optional[str] = typer.Option(None),
    rpc_endpoint: Optional[str] = typer.Option(None),
    webhook_secret: Optional[str] = typer.Option(None),
    private_key: Optional[str] = typer.Option(None),
    contract_address: Optional[str] = typer.Option(None),
) -> None:
    payload = BotCreate(
        name=name,
        exchange=exchange,
        trading_fee=trading_fee,
        api_key=api_key,
        api_secret=api_secret,
        rest_endpoint=rest_endpoint,
        rpc_endpoint=rpc_endpoint,
        webhook_secret=webhook_secret,
        private_key=private_key,
        contract_address=contract_address,
    )
    _run(ctx, lambda t: t.add_bot(payload))


@app.command()
def list_bots(
    ctx: typer.Context,
    name: Optional[str] = typer.Option(None, help="Filter: name contains."),
    exchange: Optional[str] = typer.Option(None, help="Filter: exchange contains."),
) -> None:
    _run(ctx, lambda t: t.list_bots(BotFilter(name=name, exchange=exchange)))


@app.command()
def get_bot(ctx: typer.Context, bot_id: int = typer.Option(..., help="Bot id.")) -> None:
    _run(ctx, lambda t: t.get_bot(bot_id))


@app.command()
def update_bot(
    ctx: typer.Context,
    bot_id: int = typer.Option(..., help="Bot id."),
    name: Optional[str] = typer.Option(None),
    exchange: Optional[str] = typer.Option(None),
    trading_fee: Optional[float] = typer.Option(None),
    api_key: Optional[str] = typer.Option(None),
    api_secret: Optional[str] = typer.Option(None),
    rest_endpoint: Optional[str] = typer.Option(None),
    rpc_endpoint: Optional[str] = typer.Option(None),
    webhook_secret: Optional[str] = typer.Option(None),
    private_key: Optional[str] = typer.Option(None),
    contract_address: Optional[str] = typer.Option(None),
) -> None:
    payload = BotUpdate(
        name=name,
        exchange=exchange,
        trading_fee=trading_fee,
        api_key=api_key,
        api_secret=api_secret,
        rest_endpoint=rest_endpoint,
        rpc_endpoint=rpc_endpoint,
        webhook_secret=webhook_secret,
        private_key=private_key,
        contract_address=contract_address,
    )
    _run(ctx, lambda t: t.update_bot(bot_id, payload))


@app.command()
def delete_bot(ctx: typer.Context, bot_id: int = typer.Option(..., help="Bot id.")) -> None:
    _run(ctx, lambda t: t.delete_bot(bot_id))


@app.command()
def add_listener(
    ctx: typer.Context,
    bot_id: int = typer.Option(..., help="Owning bot id."),
    service: str = typer.Option(..., help="Service, e.g. TradingView, Telegram."),
    secret: str = typer.Option("", help="Webhook secret."),
    msg: Optional[str] = typer.Option(None, help="Message template. Default: per service."),
) -> None:
    payload = ListenerCreate(service=service, secret=secret, msg=msg)
    _run(ctx, lambda t: t.add_listener(bot_id, payload))


@app.command()
def list_listeners(
    ctx: typer.Context,
    bot_id: int = typer.Option(..., help="Owning bot id."),
    service: Optional[str] = typer.Option(None, help="Filter: service contains."),
) -> None:
    _run(ctx, lambda t: t.list_listeners(bot_id, ListenerFilter(service=service)))


@app.command()
def get_listener(
    ctx: typer.Context,
    bot_id: int = typer.Option(..., help="Owning bot id."),
    listener_id: int = typer.Option(..., help="Listener id."),
) -> None:
    _run(ctx, lambda t: t.get_listener(bot_id, listener_id))


@app.command()
def update_listener(
    ctx: typer.Context,
    bot_id: int = typer.Option(..., help="Owning bot id."),
    listener_id: int = typer.Option(..., help="Listener id."),
    service: Optional[str] = typer.Option(None),
    secret: Optional[str] = typer.Option(None),
    msg: Optional[str] = typer.Option(None),
) -> None:
    payload = ListenerUpdate(service=service, secret=secret, msg=msg)
    _run(ctx, lambda t: t.update_listener(bot_id, listener_id, payload))


@app.command()
def delete_listener(
    ctx: typer.Context,
    bot_id: int = typer.Option(..., help="Owning bot id."),
    listener_id: int = typer.Option(..., help="Listener id."),
) -> None:
    _run(ctx, lambda t: t.delete_listener(bot_id, listener_id))


@app.command()
def delete_listeners(
    ctx: typer.Context,
    bot_id: int = typer.Option(..., help="Owning bot id."),
    service: Optional[str] = typer.Option(None, help="Only listeners whose service contains this."),
) -> None:
    _run(ctx, lambda t: {"deleted": t.delete_listeners(bot_id, ListenerFilter(service=service))})


@app.command()
def clear_all(
    ctx: typer.Context,
    target: str = typer.Option(..., help="What to clear: bots | listeners."),
) -> None:
    if target == "bots":
        _run(ctx, lambda t: {"deleted": t.clear_bots()})
    elif target == "listeners":
        _run(ctx, lambda t: {"deleted": t.clear_listeners()})
    else:
        raise typer.BadParameter("target must be 'bots' or 'listeners'", param_hint="--target")


@app.command()
def server(
    ctx: typer.Context,
    port: Optional[int] = typer.Option(None, help="Override: API port."),
    bind: Optional[str] = typer.Option(None, help="Override: API bind address."),
    state: Optional[Path] = typer.Option(None, help="Override: state file."),
    web: Optional[bool] = typer.Option(None, "--web/--no-web", help="Serve the web client."),
    web_root: Optional[Path] = typer.Option(None, help="Override: web client static files."),
    ipc_socket: Optional[Path] = typer.Option(None, help="Override: IPC socket path."),
    no_ipc: bool = typer.Option(False, "--no-ipc", help="Do not open the IPC socket."),
) -> None:
    """
    Run the API server with a shared, write-through state.
    """
    opts: CliOptions = ctx.obj
    if opts.url or opts.ipc is not None:
        raise typer.BadParameter("server runs locally; --url/--ipc do not apply")

    settings = Settings()
    cfg = load_app_config(opts.config)
    if port is not None:
        if not (1 <= port <= 65535):
            raise typer.BadParameter("port must be within [1, 65535]", param_hint="--port")
        cfg.api_server.port = port
    if bind is not None:
        cfg.api_server.bind_address = bind
    state_path = state or opts.state
    if state_path is not None:
        cfg.api_server.state_file_path = str(state_path)
    elif settings.state_file_override():
        cfg.api_server.state_file_path = settings.state_file_override() or ""
    if web is not None:
        cfg.web_client.is_enabled = web
    if web_root is not None:
        cfg.web_client.static_files_path = str(web_root)
    if ipc_socket is not None:
        cfg.ipc.socket_path = str(ipc_socket)
    if no_ipc:
        cfg.ipc.is_enabled = False

    # The server logs at INFO unless LOG_LEVEL says otherwise.
    configure_logging(verbosity_level(opts.verbose, default=settings.log_level_or("INFO")))

    try:
        shared = SharedStore.open(
            StateFile(cfg.api_server.state_file_path),
            config=cfg.snapshot(),
            lock_timeout_seconds=cfg.api_server.lock_timeout_seconds,
        )
        ipc_server = (
            IpcServer(transport=LocalClient(shared), socket_path=cfg.ipc.socket_path)
            if cfg.ipc.is_enabled
            else None
        )
        if ipc_server is not None:
            ipc_server.ensure_available()
    except XTradeError as e:
        typer.echo(f"error ({e.kind}): {e.message}", err=True)
        raise typer.Exit(code=e.exit_code) from e

    static_files = (
        Path(cfg.web_client.static_files_path) if cfg.web_client.is_enabled else None
    )
    api = create_app(shared=shared, static_files_path=static_files, ipc_server=ipc_server)
    logger.info(
        "server_starting",
        extra={"path": cfg.api_server.state_file_path, "op": f"port={cfg.api_server.port}"},
    )
    uvicorn.run(
        api,
        host=cfg.api_server.bind_address,
        port=cfg.api_server.port,
        log_level="info" if opts.verbose == 0 else "debug",
    )
