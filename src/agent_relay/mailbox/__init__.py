"""Mailbox for mid-run human guidance and control commands."""

from agent_relay.mailbox.lock import MailboxLock
from agent_relay.mailbox.models import (
    DrainedCommand,
    DrainResult,
    MailboxCommand,
    MailboxEmptyError,
    MailboxError,
    MailboxIndexError,
    MailboxItem,
    MailboxItemKind,
    MailboxLockError,
    MailboxState,
)
from agent_relay.mailbox.parser import format_line, parse_command, parse_line
from agent_relay.mailbox.store import Mailbox

__all__ = [
    "DrainResult",
    "DrainedCommand",
    "Mailbox",
    "MailboxCommand",
    "MailboxEmptyError",
    "MailboxError",
    "MailboxIndexError",
    "MailboxItem",
    "MailboxItemKind",
    "MailboxLock",
    "MailboxLockError",
    "MailboxState",
    "format_line",
    "parse_command",
    "parse_line",
]
