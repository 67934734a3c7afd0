"""Integration tests for the SMTP gateway over a real socket

Starts the aiosmtpd listener on an ephemeral port and drives it with
smtplib from a worker thread, so the server keeps the event loop.
"""

import asyncio
import smtplib
from email.message import EmailMessage

import pytest
import pytest_asyncio

from tempmail.smtp_handler import start_smtp_server


def build_mail(to: str) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = "sender@example.org"
    msg["To"] = to
    msg["Subject"] = "Your invoice"
    msg.set_content("Invoice attached.")
    msg.add_attachment(b"%PDF-1.4 test", maintype="application", subtype="pdf", filename="invoice.pdf")
    return msg


def send(port: int, sender: str, recipients, msg: EmailMessage):
    with smtplib.SMTP("127.0.0.1", port, timeout=10) as client:
        return client.sendmail(sender, recipients, msg.as_bytes())


def oversize_then_resend(port: int, address: str):
    """One connection: a DATA over the size limit, then a normal message."""
    with smtplib.SMTP("127.0.0.1", port, timeout=10) as client:
        client.ehlo()
        client.mail("sender@example.org")
        client.rcpt(address)
        too_big = client.data(b"Subject: big\r\n\r\n" + (b"x" * 70 + b"\r\n") * 60)

        mail = client.mail("sender@example.org")
        rcpt = client.rcpt(address)
        accepted = client.data(b"Subject: small\r\n\r\nfits\r\n")
    return too_big, mail, rcpt, accepted


def ehlo_mid_transaction(port: int, address: str):
    """One connection: MAIL and RCPT, then EHLO, then a full transaction."""
    with smtplib.SMTP("127.0.0.1", port, timeout=10) as client:
        client.ehlo()
        client.mail("sender@example.org")
        client.rcpt(address)
        client.ehlo()

        mail = client.mail("sender@example.org")
        rcpt = client.rcpt(address)
        accepted = client.data(build_mail(address).as_bytes())
    return mail, rcpt, accepted


async def _serve(settings, directory, notifier):
    server = await start_smtp_server(settings, directory, notifier)
    return server, server.sockets[0].getsockname()[1]


@pytest_asyncio.fixture
async def smtp_port(settings, directory, notifier):
    server, port = await _serve(settings, directory, notifier)
    yield port
    server.close()
    await server.wait_closed()


@pytest_asyncio.fixture
async def small_smtp_port(settings, directory, notifier):
    small = settings.model_copy(update={"SMTP_MAX_SIZE": 1024})
    server, port = await _serve(small, directory, notifier)
    yield port
    server.close()
    await server.wait_closed()


class TestSMTPGateway:
    """End-to-end SMTP transfers against the ingestion gateway"""

    @pytest.mark.asyncio
    async def test_delivers_to_bound_channel(self, smtp_port, directory, registry, channel_factory):
        address = directory.create("a")
        channel = channel_factory(address)
        registry.bind(address, channel)

        refused = await asyncio.to_thread(
            send, smtp_port, "sender@example.org", [address], build_mail(address)
        )

        assert refused == {}
        events = channel.events("new_message")
        assert len(events) == 1
        message = events[0]["message"]
        assert message["subject"] == "Your invoice"
        assert message["from"] == "sender@example.org"
        assert [a["filename"] for a in message["attachments"]] == ["invoice.pdf"]
        assert directory.stats().total_messages_received == 1

    @pytest.mark.asyncio
    async def test_unknown_recipient_refused(self, smtp_port, directory, registry):
        with pytest.raises(smtplib.SMTPRecipientsRefused) as exc_info:
            await asyncio.to_thread(
                send,
                smtp_port,
                "sender@example.org",
                ["unknown@example.com"],
                build_mail("unknown@example.com"),
            )

        code, text = exc_info.value.recipients["unknown@example.com"]
        assert code == 550
        assert b"does not exist" in text
        assert len(directory) == 0
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_foreign_domain_refused(self, smtp_port):
        with pytest.raises(smtplib.SMTPRecipientsRefused) as exc_info:
            await asyncio.to_thread(
                send, smtp_port, "x@y.z", ["user@other.org"], build_mail("user@other.org")
            )

        code, text = exc_info.value.recipients["user@other.org"]
        assert code == 550
        assert b"do not serve" in text

    @pytest.mark.asyncio
    async def test_partial_recipients(self, smtp_port, directory, registry, channel_factory):
        address = directory.create("known")
        channel = channel_factory(address)
        registry.bind(address, channel)

        refused = await asyncio.to_thread(
            send,
            smtp_port,
            "x@y.z",
            [address, "ghost@example.com"],
            build_mail(address),
        )

        assert list(refused) == ["ghost@example.com"]
        assert len(channel.events("new_message")) == 1

    @pytest.mark.asyncio
    async def test_accepted_without_subscriber(self, smtp_port, directory):
        address = directory.create("offline")

        refused = await asyncio.to_thread(send, smtp_port, "x@y.z", [address], build_mail(address))

        assert refused == {}
        assert directory.stats().total_messages_received == 1


class TestConnectionReuse:
    """A connection stays usable after aiosmtpd drops a transaction on its own"""

    @pytest.mark.asyncio
    async def test_mail_accepted_after_oversize_data(
        self, small_smtp_port, directory, registry, channel_factory
    ):
        address = directory.create("big")
        channel = channel_factory(address)
        registry.bind(address, channel)

        too_big, mail, rcpt, accepted = await asyncio.to_thread(
            oversize_then_resend, small_smtp_port, address
        )

        assert too_big[0] == 552
        assert mail[0] == 250
        assert rcpt[0] == 250
        assert accepted[0] == 250
        assert len(channel.events("new_message")) == 1
        assert directory.stats().total_messages_received == 1

    @pytest.mark.asyncio
    async def test_mail_accepted_after_ehlo_mid_transaction(
        self, smtp_port, directory, registry, channel_factory
    ):
        address = directory.create("greeted")
        channel = channel_factory(address)
        registry.bind(address, channel)

        mail, rcpt, accepted = await asyncio.to_thread(ehlo_mid_transaction, smtp_port, address)

        assert mail[0] == 250
        assert rcpt[0] == 250
        assert accepted[0] == 250
        assert len(channel.events("new_message")) == 1
