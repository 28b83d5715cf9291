"""
Chat Command Router

Parses inbound chat text into a command and dispatches it to a registered
handler. Commands execute directly against the session that received them:

    !pair <number>   send this session's credentials to <number>
    !status          connection state and uptime
    !hello           greeting
    !help            command list

Text that is not a registered command is ignored without a reply, since every
message in the chat stream passes through the prefix filter.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, List, Optional

from .errors import CredentialsUnavailable, RelayError, SendFailed

if TYPE_CHECKING:
    from .controller import SessionController

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "!"

_NON_DIGITS = re.compile(r"\D")


@dataclass
class Command:
    """A parsed chat command"""
    name: str
    args: List[str] = field(default_factory=list)


def parse_command(text: str, prefix: str = DEFAULT_PREFIX) -> Optional[Command]:
    """
    Parse ``text`` into a Command.

    The first whitespace-delimited token after the prefix is the name (lower
    cased); the remaining tokens are the arguments. Returns None when the text
    does not start with the prefix or names nothing.
    """
    if not text or not text.startswith(prefix):
        return None

    tokens = text[len(prefix):].split()
    if not tokens:
        return None

    return Command(name=tokens[0].lower(), args=tokens[1:])


def digits_only(value: str) -> str:
    """Strip every non-digit character"""
    return _NON_DIGITS.sub("", value or "")


@dataclass
class CommandContext:
    """Explicit context passed to every command handler"""
    controller: "SessionController"
    sender: str
    command: Command

    async def reply(self, text: str) -> None:
        await self.controller.send_text(self.sender, text)


@dataclass
class ChatCommand:
    """A command that executes without any further routing"""
    name: str
    handler: Callable[[CommandContext], Awaitable[None]]
    description: str
    usage: str = ""


class CommandRouter:
    """Table of chat commands keyed by name"""

    def __init__(self, prefix: str = DEFAULT_PREFIX, started_at: Optional[float] = None):
        self.prefix = prefix
        self.started_at = started_at if started_at is not None else time.monotonic()
        self.commands: Dict[str, ChatCommand] = {}
        self._register_builtin_commands()

    def _register_builtin_commands(self):
        """Register the built-in chat commands"""
        self.register_command(ChatCommand(
            name="pair",
            handler=self._handle_pair,
            description="Pair with another number",
            usage="<number>"
        ))
        self.register_command(ChatCommand(
            name="status",
            handler=self._handle_status,
            description="Check bot status"
        ))
        self.register_command(ChatCommand(
            name="hello",
            handler=self._handle_hello,
            description="Greet the bot"
        ))
        self.register_command(ChatCommand(
            name="help",
            handler=self._handle_help,
            description="Show this help message"
        ))

    def register_command(self, command: ChatCommand):
        """Register a chat command"""
        self.commands[command.name] = command
        logger.debug(f"Registered command: {command.name}")

    def parse(self, text: str) -> Optional[Command]:
        return parse_command(text, self.prefix)

    def uptime_seconds(self) -> int:
        return int(time.monotonic() - self.started_at)

    async def dispatch(self, ctx: CommandContext) -> bool:
        """
        Run the handler for ``ctx.command``.

        Returns:
            True if a handler ran, False for unrecognized commands
        """
        command = self.commands.get(ctx.command.name)
        if command is None:
            logger.debug(f"Ignoring unknown command: {ctx.command.name}")
            return False

        logger.info(f"Command {self.prefix}{command.name} from {ctx.sender} on {ctx.controller.session_id}")
        try:
            await command.handler(ctx)
        except RelayError as e:
            logger.error(f"Command {command.name} failed for {ctx.sender}: {e}")
        return True

    # =========================================================================
    # BUILT-IN HANDLERS
    # =========================================================================

    async def _handle_pair(self, ctx: CommandContext) -> None:
        """Handle !pair <number>"""
        number = digits_only("".join(ctx.command.args))
        if not number:
            await ctx.reply(f"Please provide your number: {self.prefix}pair 1234567890")
            return

        target = ctx.controller.address_for(number)
        try:
            await ctx.controller.pair_with(target)
        except CredentialsUnavailable as e:
            logger.warning(f"Pairing {number} unavailable: {e}")
            await ctx.reply(f"❌ No credentials available yet for session {ctx.controller.session_id}")
            return
        except SendFailed as e:
            logger.error(f"Pairing error: {e}")
            await ctx.reply(f"❌ Failed to send credentials to {number}")
            return

        await ctx.reply(
            f"✅ Credentials sent to {number}\n\n"
            f"Session ID: {ctx.controller.session_id}\n"
            f"Status: Paired successfully!"
        )

    async def _handle_status(self, ctx: CommandContext) -> None:
        """Handle !status"""
        session = ctx.controller.session
        await ctx.reply(
            "📊 *BOT STATUS*\n\n"
            f"Session: {session.session_id}\n"
            f"State: {session.state.value}\n"
            f"Connected: {str(session.is_connected).lower()}\n"
            f"Uptime: {self.uptime_seconds()}s"
        )

    async def _handle_hello(self, ctx: CommandContext) -> None:
        """Handle !hello"""
        await ctx.reply("👋 Hello! I am your WhatsApp bot.")

    async def _handle_help(self, ctx: CommandContext) -> None:
        """Handle !help"""
        lines = ["🛠 *AVAILABLE COMMANDS*", ""]
        for command in self.commands.values():
            usage = f" {command.usage}" if command.usage else ""
            lines.append(f"{self.prefix}{command.name}{usage} - {command.description}")
        await ctx.reply("\n".join(lines))
