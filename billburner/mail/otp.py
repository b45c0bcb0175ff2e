"""One-time verification code retrieval from an IMAP mailbox.

Providers with email-based two-factor login send a message whose body
contains the code between two known delimiters. Before the code is
requested the workflow records the highest matching message UID as a
baseline; afterwards the retriever only reads messages above it, so a code
left over from an earlier login is never used. Every failure is logged and
collapses to an empty string.
"""

import asyncio
import imaplib
from collections.abc import Callable

import structlog

from billburner.config import MailboxConfig
from billburner.errors import BillburnerError, OtpUnavailable, SessionConnectionError

logger = structlog.get_logger(__name__)


class ImapMailbox:
    """Mailbox capability over ``imaplib``.

    Message ids are UIDs within INBOX, which only grow as mail is delivered.
    """

    def __init__(self) -> None:
        self._conn: imaplib.IMAP4 | None = None

    def connect(self, host: str, secure: bool, port: int | None = None, timeout: float | None = None) -> None:
        port = port or (993 if secure else 143)
        try:
            if secure:
                self._conn = imaplib.IMAP4_SSL(host, port, timeout=timeout)
            else:
                self._conn = imaplib.IMAP4(host, port, timeout=timeout)
        except OSError as e:
            raise SessionConnectionError(f"Cannot connect to {host}:{port}: {e}") from e

    def login(self, username: str, password: str) -> None:
        self._require().login(username, password)

    def select_inbox(self) -> None:
        status, data = self._require().select("INBOX", readonly=True)
        if status != "OK":
            raise imaplib.IMAP4.error(f"SELECT INBOX failed: {data!r}")

    def search_by_subject(self, subject: str) -> list[int]:
        quoted = '"{}"'.format(subject.replace("\\", "\\\\").replace('"', '\\"'))
        status, data = self._require().uid("SEARCH", "HEADER", "Subject", quoted)
        if status != "OK":
            raise imaplib.IMAP4.error(f"SEARCH failed: {data!r}")
        return [int(num) for num in (data[0] or b"").split()]

    def fetch_body(self, message_id: int) -> bytes:
        """Fetch the full raw message without setting the \\Seen flag."""
        status, data = self._require().uid("FETCH", str(message_id), "(BODY.PEEK[])")
        if status != "OK":
            raise imaplib.IMAP4.error(f"FETCH failed: {data!r}")
        for part in data:
            if isinstance(part, tuple) and len(part) > 1:
                return part[1]
        return b""

    def logout(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.logout()
        except (imaplib.IMAP4.error, OSError) as e:
            logger.debug("imap_logout_failed", error=str(e))
        finally:
            self._conn = None

    def _require(self) -> imaplib.IMAP4:
        if self._conn is None:
            raise SessionConnectionError("Mailbox is not connected")
        return self._conn


def extract_code(body: str, start: str, end: str) -> str:
    """Return the trimmed text between ``start`` and the following ``end``.

    If ``end`` never follows ``start`` the rest of the body is used.

    Raises:
        OtpUnavailable: If ``start`` is not in the body or nothing follows it.
    """
    _, found, tail = body.partition(start)
    if not found:
        raise OtpUnavailable(f"delimiter {start!r} not found in body")
    code = tail.partition(end)[0].strip()
    if not code:
        raise OtpUnavailable(f"no code after delimiter {start!r}")
    return code


class OtpRetriever:
    """Fetches verification codes for workflows.

    Attributes:
        mailbox_factory: Callable returning a fresh mailbox capability per fetch.
    """

    def __init__(self, mailbox_factory: Callable[[], ImapMailbox] = ImapMailbox) -> None:
        self.mailbox_factory = mailbox_factory

    async def latest_message_id(self, mailbox: MailboxConfig, subject: str) -> int:
        """Return the highest UID of the messages matching ``subject``.

        Returns:
            The UID, or 0 if there are none or the mailbox could not be read.
        """
        return await asyncio.to_thread(self._latest_message_id, mailbox, subject)

    def _latest_message_id(self, mailbox: MailboxConfig, subject: str) -> int:
        client = self.mailbox_factory()
        try:
            self._open(client, mailbox)
            latest = max(client.search_by_subject(subject), default=0)
            logger.info("otp_baseline_recorded", subject=subject, message_id=latest)
            return latest
        except (BillburnerError, imaplib.IMAP4.error, OSError) as e:
            logger.warning(
                "otp_baseline_failed",
                host=mailbox.host,
                subject=subject,
                error_type=type(e).__name__,
                error=str(e),
            )
            return 0
        finally:
            client.logout()

    async def fetch_code(
        self, mailbox: MailboxConfig, subject: str, start: str, end: str, after_id: int = 0
    ) -> str:
        """Read the code from the newest message matching ``subject``.

        Only messages with a UID above ``after_id`` are considered. The IMAP
        exchange is blocking, so it runs in a worker thread bounded by the
        mailbox's socket timeout.

        Returns:
            The code, or "" if it could not be retrieved for any reason.
        """
        return await asyncio.to_thread(self._fetch_code, mailbox, subject, start, end, after_id)

    def _fetch_code(
        self, mailbox: MailboxConfig, subject: str, start: str, end: str, after_id: int
    ) -> str:
        client = self.mailbox_factory()
        try:
            self._open(client, mailbox)

            ids = [uid for uid in client.search_by_subject(subject) if uid > after_id]
            if not ids:
                raise OtpUnavailable(f"no new emails with subject: {subject}")

            latest = max(ids)
            body = client.fetch_body(latest).decode("utf-8", errors="replace")
            code = extract_code(body, start, end)

            logger.info("otp_code_retrieved", subject=subject, message_id=latest, code_length=len(code))
            return code

        except (BillburnerError, imaplib.IMAP4.error, OSError) as e:
            logger.warning(
                "otp_retrieval_failed",
                host=mailbox.host,
                subject=subject,
                error_type=type(e).__name__,
                error=str(e),
            )
            return ""
        finally:
            client.logout()

    @staticmethod
    def _open(client: ImapMailbox, mailbox: MailboxConfig) -> None:
        client.connect(mailbox.host, mailbox.secure, mailbox.port, mailbox.timeout_seconds)
        client.login(mailbox.username, mailbox.password.get_secret_value())
        client.select_inbox()

    async def poll_code(
        self,
        mailbox: MailboxConfig,
        subject: str,
        start: str,
        end: str,
        *,
        after_id: int = 0,
        timeout_seconds: float,
        interval_seconds: float,
    ) -> str:
        """Repeat ``fetch_code`` until a new code arrives or the timeout elapses.

        Returns:
            The code, or "" if none arrived in time.
        """
        loop = asyncio.get_running_loop()
        started = loop.time()
        attempt = 0
        while True:
            attempt += 1
            code = await self.fetch_code(mailbox, subject, start, end, after_id)
            if code:
                return code
            if loop.time() - started >= timeout_seconds:
                logger.warning("otp_poll_timed_out", subject=subject, attempts=attempt)
                return ""
            logger.debug("otp_not_yet_available", subject=subject, attempt=attempt)
            await asyncio.sleep(interval_seconds)
