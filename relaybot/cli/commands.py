"""
CLI 命令模块 - relaybot 的所有命令行命令定义。

本模块使用 Typer 框架定义 relaybot 的完整 CLI 命令体系：
- onboard：初始化默认配置文件
- gateway：启动网关服务（WhatsApp 会话核心 + 管理 HTTP 接口）
- status：查看当前配置
- ask：不经过 WhatsApp，直接用当前画像调用一次应答网关
- sessions：通过管理接口操作运行中的网关（列表、创建、删除）

技术栈：
- Typer：CLI 框架（基于 Click，支持类型注解自动生成帮助文档）
- Rich：终端美化输出（表格、颜色）
- httpx：sessions 子命令访问运行中的网关
- uvicorn：运行管理 HTTP 接口
"""

import asyncio
import sys

import httpx
import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from relaybot import __logo__, __version__

# 创建 Typer 应用实例（CLI 根命令）
app = typer.Typer(
    name="relaybot",
    help=f"{__logo__} relaybot - WhatsApp AI assistant bridge",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    """版本号回调：当用户传入 --version 参数时，打印版本号并退出。"""
    if value:
        console.print(f"{__logo__} relaybot v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", callback=version_callback, is_eager=True
    ),
):
    """relaybot CLI 根命令回调。处理全局选项（如 --version）。"""
    pass


def _setup_logging(verbose: bool) -> None:
    """loguru 默认输出到 stderr；verbose 时打开 DEBUG 级别。"""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


# ============================================================================
# Onboard / Setup
# ============================================================================


@app.command()
def onboard():
    """在 ~/.relaybot/ 下创建默认配置文件 config.json。"""
    from relaybot.config.loader import get_config_path, save_config
    from relaybot.config.schema import Config

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    save_config(Config())
    console.print(f"[green]✓[/green] Created config at {config_path}")

    console.print(f"\n{__logo__} relaybot is ready!")
    console.print("\nNext steps:")
    console.print("  1. Add your API key to [cyan]~/.relaybot/config.json[/cyan] (provider.apiKey)")
    console.print("     or export [cyan]DEEPSEEK_API_KEY[/cyan]")
    console.print("  2. Start the WhatsApp bridge, then: [cyan]relaybot gateway[/cyan]")
    console.print("  3. Create a session: [cyan]relaybot sessions create[/cyan]")


# ============================================================================
# Gateway / Server
# ============================================================================


def _make_profile_store(config):
    """创建 AI 画像存储，修改时写回配置文件。"""
    from relaybot.config.loader import save_config
    from relaybot.config.store import AIProfileStore

    def persist(profile):
        config.ai = profile
        save_config(config)

    return AIProfileStore(config.ai, on_change=persist)


def _make_registry(config, profiles, transport=None):
    """
    根据配置组装会话核心：传输层 + 应答网关 + 生命周期控制器 + 注册表。

    参数:
        config: 全局配置对象
        profiles: AI 画像存储
        transport: 可选的传输层实现，默认 WhatsAppBridgeTransport
    """
    from relaybot.agent.completion import PhraseCompletionDetector
    from relaybot.agent.responder import ResponderGateway
    from relaybot.providers import make_provider
    from relaybot.session.lifecycle import SessionLifecycleController
    from relaybot.session.manager import SessionRegistry
    from relaybot.transport.whatsapp import WhatsAppBridgeTransport

    responder = ResponderGateway.from_config(make_provider(config.provider), config.provider)
    controller = SessionLifecycleController(
        transport=transport or WhatsAppBridgeTransport(config.bridge),
        responder=responder,
        profiles=profiles,
        settings=config.sessions,
        logout_on_close=config.bridge.logout_on_remove,
        completion_detector=PhraseCompletionDetector(config.sessions.completion_phrases),
    )
    return SessionRegistry(controller)


@app.command()
def gateway(
    port: int = typer.Option(None, "--port", "-p", help="Admin API port (defaults to gateway.port)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    启动 relaybot 网关服务。

    1. 加载配置，创建 AI 画像存储
    2. 组装会话核心（WhatsApp 桥接传输、应答网关、生命周期控制器、注册表）
    3. 用 uvicorn 运行管理 HTTP 接口；进程退出时关闭所有会话
    """
    import uvicorn

    from relaybot.api.server import create_app
    from relaybot.config.loader import load_config

    _setup_logging(verbose)
    config = load_config()
    port = port or config.gateway.port

    if not config.provider.resolved_api_key:
        console.print("[yellow]Warning: No completion API key configured, replies will degrade[/yellow]")
    if not config.ai.is_complete:
        console.print("[yellow]Warning: AI profile incomplete, set it with PUT /config[/yellow]")

    profiles = _make_profile_store(config)
    registry = _make_registry(config, profiles)
    api = create_app(registry, profiles)

    console.print(f"{__logo__} Starting relaybot gateway on {config.gateway.host}:{port}...")
    console.print(f"[green]✓[/green] WhatsApp bridge: {config.bridge.url}")
    console.print(f"[green]✓[/green] Completion: {config.provider.kind} / {config.provider.model}")

    uvicorn.run(api, host=config.gateway.host, port=port, log_level="debug" if verbose else "info")


@app.command()
def status():
    """以表格形式显示当前配置摘要。"""
    from relaybot.config.loader import get_config_path, load_config

    config_path = get_config_path()
    config = load_config()

    console.print(f"{__logo__} relaybot Status\n")
    console.print(f"Config: {config_path} {'[green]✓[/green]' if config_path.exists() else '[red]✗[/red]'}")

    table = Table(title="Configuration")
    table.add_column("Section", style="cyan")
    table.add_column("Setting", style="green")
    table.add_column("Value", style="yellow")

    ai = config.ai
    table.add_row("AI", "Business", ai.business_name or "[dim]not set[/dim]")
    table.add_row("AI", "Industry", ai.industry or "[dim]not set[/dim]")
    table.add_row("Provider", "Kind / model", f"{config.provider.kind} / {config.provider.model}")
    table.add_row("Provider", "API key", "[green]✓[/green]" if config.provider.resolved_api_key else "[dim]not set[/dim]")
    table.add_row("Bridge", "URL", config.bridge.url)
    table.add_row("Bridge", "Pairing timeout", f"{config.bridge.pairing_timeout_s:.0f}s")
    table.add_row("Sessions", "History", f"{config.sessions.history_high_water} → {config.sessions.history_low_water}")
    table.add_row("Gateway", "Listen", f"{config.gateway.host}:{config.gateway.port}")

    console.print(table)


@app.command()
def ask(
    message: str = typer.Option(..., "--message", "-m", help="Message to send to the responder"),
):
    """不经过 WhatsApp，直接用当前 AI 画像调用一次应答网关（用于调试设置）。"""
    from relaybot.agent.responder import ResponderGateway
    from relaybot.config.loader import load_config
    from relaybot.providers import make_provider

    config = load_config()
    responder = ResponderGateway.from_config(make_provider(config.provider), config.provider)

    reply = asyncio.run(responder.respond(config.ai, [{"role": "user", "content": message}], message))
    console.print(f"[cyan]{__logo__} relaybot[/cyan]")
    console.print(reply)


# ============================================================================
# Sessions Commands（访问运行中的网关）
# ============================================================================


sessions_app = typer.Typer(help="Manage sessions on a running gateway")
app.add_typer(sessions_app, name="sessions")


def _api_url(url: str | None) -> str:
    if url:
        return url.rstrip("/")
    from relaybot.config.loader import load_config
    config = load_config()
    host = "127.0.0.1" if config.gateway.host in ("0.0.0.0", "") else config.gateway.host
    return f"http://{host}:{config.gateway.port}"


def _request(method: str, url: str, **kwargs) -> httpx.Response:
    try:
        response = httpx.request(method, url, timeout=10.0, **kwargs)
    except httpx.HTTPError as e:
        console.print(f"[red]Cannot reach gateway: {e}[/red]")
        raise typer.Exit(1)
    if response.status_code == 404:
        console.print(f"[red]{response.json().get('error', 'Not found')}[/red]")
        raise typer.Exit(1)
    response.raise_for_status()
    return response


@sessions_app.command("list")
def sessions_list(
    url: str = typer.Option(None, "--url", help="Gateway base URL"),
):
    """列出所有会话。"""
    data = _request("GET", f"{_api_url(url)}/sessions").json()
    sessions = data.get("sessions", [])

    if not sessions:
        console.print("No sessions.")
        return

    table = Table(title="Sessions")
    table.add_column("ID", style="cyan")
    table.add_column("Status")
    table.add_column("QR")
    table.add_column("Chats")
    table.add_column("Error", style="red")

    for s in sessions:
        table.add_row(
            s["id"],
            s["status"],
            "✓" if s["hasQrCode"] else "",
            str(s["connectedChats"]),
            s.get("error") or "",
        )

    console.print(table)


@sessions_app.command("create")
def sessions_create(
    session_id: str = typer.Option(None, "--id", help="Session ID (generated if omitted)"),
    url: str = typer.Option(None, "--url", help="Gateway base URL"),
):
    """创建新会话，随后用 GET /sessions/{id}/qr 获取二维码扫码。"""
    payload = {"sessionId": session_id} if session_id else {}
    data = _request("POST", f"{_api_url(url)}/sessions", json=payload).json()
    console.print(f"[green]✓[/green] Session {data['id']} ({data['status']})")


@sessions_app.command("remove")
def sessions_remove(
    session_id: str = typer.Argument(..., help="Session ID"),
    url: str = typer.Option(None, "--url", help="Gateway base URL"),
):
    """关闭并删除会话。"""
    data = _request("DELETE", f"{_api_url(url)}/sessions/{session_id}").json()
    if data.get("removed"):
        console.print(f"[green]✓[/green] Session {session_id} deleted")
    else:
        console.print(f"[yellow]Session {session_id} not found[/yellow]")


if __name__ == "__main__":
    app()
