"""Chat-facing handlers: slash command routing and inbound message processing."""

from buddian.handlers.commands import ChatCommandContext, CommandRouter, render_plugins_overview
from buddian.handlers.message import MessageHandler

__all__ = ["ChatCommandContext", "CommandRouter", "MessageHandler", "render_plugins_overview"]
