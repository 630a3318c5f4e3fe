"""
Parley CLI

Command-line interface for the relay server and client.
"""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import click
import structlog

from parley import __version__
from parley.config import settings
from parley.log import configure_logging

logger = structlog.get_logger()


# ══════════════════════════════════════════════════════════════
# CLI Group
# ══════════════════════════════════════════════════════════════


@click.group()
@click.version_option(version=__version__, prog_name="parley")
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
def cli(debug: bool) -> None:
    """Parley - real-time meeting transcription and analysis relay."""
    configure_logging("DEBUG" if debug else settings.log_level)


# ══════════════════════════════════════════════════════════════
# Server Commands
# ══════════════════════════════════════════════════════════════


@cli.command()
@click.option("--host", default=settings.host, help="Host to bind to")
@click.option("--port", default=settings.port, help="Port to bind to")
@click.option("--reload/--no-reload", default=False, help="Enable auto-reload")
def serve(host: str, port: int, reload: bool) -> None:
    """Start the relay server.

    A single worker process: sessions live in memory.
    """
    import uvicorn

    click.echo(f"Starting Parley relay on {host}:{port}")
    click.echo(f"  WebSocket: ws://{host}:{port}/ws")

    uvicorn.run(
        "parley.api.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
    )


# ══════════════════════════════════════════════════════════════
# Client Commands
# ══════════════════════════════════════════════════════════════


def read_chunks(path: Path, chunk_size: int):
    with path.open("rb") as f:
        while True:
            chunk = f.read(chunk_size)
            if not chunk:
                return
            yield chunk


@cli.command()
@click.argument("session_id")
@click.option("--url", default=settings.relay_url, help="Relay WebSocket URL")
@click.option(
    "--audio",
    "-a",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Audio file to stream into the session",
)
@click.option("--chunk-size", default=64 * 1024, help="Bytes per audio chunk")
@click.option("--interval", default=1.0, help="Seconds between audio chunks")
@click.option("--wait", default=10.0, help="Seconds to keep listening after streaming")
def connect(
    session_id: str,
    url: str,
    audio: Optional[Path],
    chunk_size: int,
    interval: float,
    wait: float,
) -> None:
    """Join SESSION_ID and print transcript and analysis updates."""
    from parley.client import ClientConfig, ClientEvent, ReconnectingClient
    from parley.realtime.protocol import MessageType, RelayMessage

    client = ReconnectingClient(ClientConfig.from_settings(settings))
    client.config.url = url

    @client.on_message(MessageType.TRANSCRIPT_UPDATE)
    async def on_transcript(message: RelayMessage) -> None:
        speaker = message.payload.get("speakerName") or "speaker"
        click.echo(f"[{speaker}] {message.payload.get('text', '')}")

    @client.on_message(MessageType.ANALYSIS_UPDATE)
    async def on_analysis(message: RelayMessage) -> None:
        summary = message.payload.get("summary")
        if summary:
            click.echo(f"  summary: {summary}")
        for item in message.payload.get("actionItems", []):
            click.echo(f"  action: {item.get('text')}")

    @client.on_message(MessageType.ERROR)
    async def on_error(message: RelayMessage) -> None:
        click.echo(f"  error: {message.payload.get('error')}", err=True)

    async def run() -> int:
        if not await client.connect():
            click.echo(f"Could not connect to {url}", err=True)
            return 1

        await client.join_session(session_id)
        click.echo(f"Joined session {session_id} on {url}")

        # The relay forgets membership when the socket drops.
        async def rejoin() -> None:
            if client.session_id:
                click.echo(f"Reconnected, rejoining session {client.session_id}")
                await client.join_session(client.session_id)

        client.on(ClientEvent.CONNECTED, rejoin)

        try:
            if audio:
                sent = 0
                for chunk in read_chunks(audio, chunk_size):
                    if await client.send_audio(chunk):
                        sent += 1
                    await asyncio.sleep(interval)
                click.echo(f"Streamed {sent} chunks ({client.dropped_chunks} dropped)")
            await asyncio.sleep(wait)
        finally:
            await client.leave_session()
            await client.disconnect()
        return 0

    try:
        code = asyncio.run(run())
    except KeyboardInterrupt:
        code = 0
    sys.exit(code)


# ══════════════════════════════════════════════════════════════
# Config Commands
# ══════════════════════════════════════════════════════════════


@cli.command()
def config() -> None:
    """Show current configuration."""
    click.echo("Parley Configuration\n")

    config_items = [
        ("Environment", settings.app_env),
        ("Debug", str(settings.debug)),
        ("Listen", f"{settings.host}:{settings.port}"),
        ("Heartbeat Interval", f"{settings.heartbeat_interval_seconds}s"),
        ("Max Connections", str(settings.max_connections)),
        ("Audio Format", settings.audio_format),
        ("Analysis Types", ", ".join(settings.default_analysis_types)),
        ("OpenAI Model", settings.openai_model),
        ("Whisper Model", settings.openai_whisper_model),
        ("OpenAI API Key", settings.openai_api_key),
        ("Relay URL", settings.relay_url),
    ]

    for key, value in config_items:
        # Mask sensitive values
        if "key" in key.lower() or "secret" in key.lower():
            value = "***" if value else "Not set"
        click.echo(f"  {key:20} {value}")


# ══════════════════════════════════════════════════════════════
# Entry Point
# ══════════════════════════════════════════════════════════════


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
