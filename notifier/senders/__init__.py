"""Transport senders for the email and push channels."""

from notifier.senders.email import EmailSender
from notifier.senders.push import PushSender, parse_credential
from notifier.senders.templates import EmailRenderer, RenderedEmail

__all__ = [
    "EmailSender",
    "PushSender",
    "parse_credential",
    "EmailRenderer",
    "RenderedEmail",
]
