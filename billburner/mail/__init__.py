"""Mailbox access for email-delivered verification codes."""

from billburner.mail.otp import ImapMailbox, OtpRetriever, extract_code

__all__ = [
    "ImapMailbox",
    "OtpRetriever",
    "extract_code",
]
