from __future__ import annotations
import asyncio, json
from pathlib import Path
from typing import Optional
import typer
from rich import print
from rich.markup import escape
from rich.table import Table
from dingtalk_channel.accounts.resolver import AccountResolver
from dingtalk_channel.channels.dingtalk import DingtalkChannel
from dingtalk_channel.config import load_settings
from dingtalk_channel.domain.errors import DingtalkError
from dingtalk_channel.observability.logging import configure_logging
from dingtalk_channel.runtime import ChannelRuntime
from dingtalk_channel.text.chunker import chunk_markdown

app = typer.Typer(help="DingTalk channel adapter tools: config audit, chunk preview and test sends.")

def _load_config(path: Path) -> dict:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        print(f"[red]cannot read config {path}: {escape(str(e))}[/red]")
        raise typer.Exit(code=2)

def _runtime() -> ChannelRuntime:
    settings = load_settings()
    configure_logging(settings.log_level, settings.json_logs)
    return ChannelRuntime(settings=settings)

@app.command()
def doctor(config: Path = typer.Argument(..., help="Host config JSON with a channels.dingtalk section.")):
    """Describe every DingTalk account and list security warnings."""
    cfg = _load_config(config)
    accounts = AccountResolver(_runtime())
    table = Table(title="DingTalk accounts")
    for col in ("account", "enabled", "configured", "dmPolicy", "groupPolicy", "requireMention", "chunk limit"):
        table.add_column(col)
    for account_id in accounts.list_account_ids(cfg):
        acc = accounts.resolve_account(cfg, account_id)
        table.add_row(
            acc.account_id,
            str(acc.enabled),
            str(acc.configured),
            acc.policy.dm_policy.value,
            acc.policy.group_policy.value,
            str(acc.policy.require_mention),
            str(acc.text_chunk_limit),
        )
    print(table)
    warnings = accounts.collect_warnings(cfg)
    if not warnings:
        print("[green]no warnings[/green]")
        return
    for w in warnings:
        print(f"[yellow]{escape(w)}[/yellow]")

@app.command()
def chunk(
    file: Path = typer.Argument(..., help="Markdown file to split."),
    limit: int = typer.Option(4000, min=1, help="Characters per chunk."),
):
    """Preview how a markdown file would be split for delivery."""
    chunks = chunk_markdown(file.read_text(encoding="utf-8"), limit)
    table = Table(title=f"{len(chunks)} chunk(s), limit {limit}")
    table.add_column("#")
    table.add_column("chars")
    table.add_column("starts with")
    for i, c in enumerate(chunks, 1):
        size = f"[red]{len(c)}[/red]" if len(c) > limit else str(len(c))
        table.add_row(str(i), size, c[:40].replace("\n", "\\n"))
    print(table)

def _build_channel(runtime: ChannelRuntime) -> DingtalkChannel:
    return DingtalkChannel.create(runtime)

@app.command()
def send(
    config: Path = typer.Argument(..., help="Host config JSON with a channels.dingtalk section."),
    to: str = typer.Argument(..., help="user:<staffId> or group:<openConversationId>"),
    text: str = typer.Argument(""),
    media_url: Optional[str] = typer.Option(None, help="Media to send; text becomes the caption / fallback."),
    account_id: Optional[str] = typer.Option(None, help="Account id (default account if omitted)."),
):
    """Send a message through the DingTalk API."""
    cfg = _load_config(config)

    async def _run():
        channel = _build_channel(_runtime())
        try:
            if media_url:
                return await channel.send_media(cfg, to, text=text or None, media_url=media_url, account_id=account_id)
            return await channel.send_text(cfg, to, text, account_id=account_id)
        finally:
            await channel.outbound.provider.aclose()

    try:
        res = asyncio.run(_run())
    except (DingtalkError, ValueError) as e:
        print(f"[red]send failed: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)
    print(res.model_dump())

def main():
    """Entry point for the CLI."""
    app()
