"""
Discord voice bot for live meeting transcription.

This module provides the platform side of the pipeline:
- /join: join the caller's voice channel and start a session
- /leave: disconnect, drain and summarize the session, reply with the result

Decoded PCM arrives on discord-ext-voice-recv's reader thread and is handed to
the orchestrator on the event loop with ``call_soon_threadsafe``.
"""

import asyncio
import logging
import sys
from typing import Callable, Dict, List, Optional

import discord
from discord import app_commands
from discord.ext import voice_recv

from ..config import PipelineSettings, describe_settings, load_settings
from ..document import SummaryArchive
from ..errors import InvalidTransition
from ..models import SessionKey, SummaryResult
from ..session import SessionOrchestrator
from .replies import format_summary_reply

logger = logging.getLogger(__name__)

QUIET_LOGGERS = ("discord", "httpx", "openai")


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


class PcmSink(voice_recv.AudioSink):
    """Forwards decoded 48 kHz stereo PCM per user to a callback."""

    def __init__(self, on_frame: Callable[[int, bytes], None]):
        super().__init__()
        self._on_frame = on_frame

    def wants_opus(self) -> bool:
        return False

    def write(self, user, data) -> None:
        if user is None or getattr(user, "bot", False):
            return
        pcm = getattr(data, "pcm", None)
        if not pcm:
            return
        self._on_frame(user.id, pcm)

    def cleanup(self) -> None:
        return


class ProtokollBot(discord.Client):
    """Discord client exposing /join and /leave."""

    def __init__(self, settings: PipelineSettings, orchestrator: Optional[SessionOrchestrator] = None):
        intents = discord.Intents.default()
        intents.voice_states = True
        intents.members = True
        super().__init__(intents=intents)
        self.settings = settings
        self.tree = app_commands.CommandTree(self)
        self.archive = SummaryArchive(settings.summary_dir)
        self.orchestrator = orchestrator or SessionOrchestrator(
            settings,
            resolve_name=self.resolve_display_name,
            on_summary=self.archive_summary,
        )
        self._saved: Dict[SessionKey, Dict[str, str]] = {}
        self._register_commands()

    def _register_commands(self) -> None:
        @self.tree.command(name="join", description="Join the caller's voice channel & start transcribing")
        async def join(interaction: discord.Interaction):
            await self.handle_join(interaction)

        @self.tree.command(name="leave", description="Leave the current voice channel")
        async def leave(interaction: discord.Interaction):
            await self.handle_leave(interaction)

    async def setup_hook(self) -> None:
        try:
            await self.tree.sync()
            logger.info("Slash commands registered")
        except discord.HTTPException as e:
            logger.error(f"Failed to register slash commands: {e}")

    async def on_ready(self) -> None:
        logger.info(f"Logged in as {self.user}")

    async def resolve_display_name(self, key: SessionKey, speaker_id: str) -> str:
        guild = self.get_guild(int(key.room_id))
        if guild is None:
            raise LookupError(f"Unknown guild {key.room_id}")
        member = guild.get_member(int(speaker_id)) or await guild.fetch_member(int(speaker_id))
        return member.display_name

    async def archive_summary(self, result: SummaryResult) -> None:
        paths = self.archive.save(result)
        if paths:
            self._saved[result.key] = paths

    async def handle_join(self, interaction: discord.Interaction) -> None:
        guild = interaction.guild
        voice_state = getattr(interaction.user, "voice", None)
        channel = voice_state.channel if voice_state else None
        if guild is None or channel is None:
            await interaction.response.send_message("Jump into a voice channel first!", ephemeral=True)
            return

        voice_client = guild.voice_client
        if voice_client is not None and voice_client.channel.id != channel.id:
            await interaction.response.send_message(
                f"I'm already transcribing in **{voice_client.channel.name}**. Use /leave first.", ephemeral=True
            )
            return

        key = SessionKey(str(guild.id), str(channel.id))
        try:
            self.orchestrator.start_session(key)
        except InvalidTransition as e:
            logger.info(f"/join refused: {e}")
            await interaction.response.send_message(
                "I'm still summarizing the last session in this channel. Try /join again in a moment.", ephemeral=True
            )
            return
        if voice_client is None:
            voice_client = await channel.connect(cls=voice_recv.VoiceRecvClient)

        loop = asyncio.get_running_loop()

        def forward(user_id: int, pcm: bytes) -> None:
            loop.call_soon_threadsafe(self.orchestrator.on_audio_frame, key, user_id, pcm)

        if not voice_client.is_listening():
            voice_client.listen(PcmSink(forward))
        await interaction.response.send_message(f"🎙️ Transcriber online in **{channel.name}**. Speak and I'll type!")

    async def handle_leave(self, interaction: discord.Interaction) -> None:
        guild = interaction.guild
        voice_client = guild.voice_client if guild else None
        if voice_client is None:
            await interaction.response.send_message("I'm not in a voice channel right now.", ephemeral=True)
            return

        key = SessionKey(str(guild.id), str(voice_client.channel.id))
        await interaction.response.defer(thinking=True)
        if isinstance(voice_client, voice_recv.VoiceRecvClient) and voice_client.is_listening():
            voice_client.stop_listening()
        await voice_client.disconnect()

        result = await self.orchestrator.end_session(key)
        paths = self._saved.pop(key, {})
        content = format_summary_reply(result, paths)
        files: List[discord.File] = []
        if paths.get("document"):
            files.append(discord.File(paths["document"]))
        await interaction.followup.send(content=content, files=files)

    async def close(self) -> None:
        results = await self.orchestrator.end_all()
        if results:
            logger.info(f"Closed {len(results)} open session(s) on shutdown")
        await super().close()


def run_bot(settings: PipelineSettings) -> None:
    bot = ProtokollBot(settings)
    bot.run(settings.discord_token, log_handler=None)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Process entry point.

    ``check`` runs the backend diagnosis; no arguments starts the bot.
    """
    argv = list(sys.argv[1:] if argv is None else argv)
    settings = load_settings()
    setup_logging(settings.log_level)
    for row in describe_settings():
        logger.debug(f"config {row['key']}={row['value']} ({row['source']})")

    if argv and argv[0] == "check":
        from ..audio import AudioTranscriber

        report = asyncio.run(AudioTranscriber(settings).diagnose_backend())
        for name, value in report.items():
            print(f"{name}: {value}")
        return 0 if report["ok"] else 1

    missing = [name for name, value in (("DISCORD_TOKEN", settings.discord_token), ("OPENAI_API_KEY", settings.openai_api_key)) if not value]
    if missing:
        logger.error(f"Missing configuration: {', '.join(missing)}")
        return 1

    run_bot(settings)
    return 0
