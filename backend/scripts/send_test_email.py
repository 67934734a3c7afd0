#!/usr/bin/env python3
"""Test email sender for the TempMail SMTP gateway.

Builds a message (optionally with attachments and an HTML part) and either
prints it or sends it to a running gateway.

Usage:
    # Print the MIME message to stdout
    python backend/scripts/send_test_email.py --to abc123@example.com

    # Send it, with an attachment
    python backend/scripts/send_test_email.py --to abc123@example.com \
        --subject "Hello" --attachment report.pdf --send --smtp-port 2525

    # Create a mailbox first through the HTTP API, then send to it
    python backend/scripts/send_test_email.py --create test1 --api http://localhost:3000 --send
"""

import argparse
import json
import mimetypes
import smtplib
import sys
import urllib.request
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import List, Optional


def create_mailbox(api_url: str, prefix: Optional[str]) -> str:
    """Provision a mailbox through POST /api/email/generate and return its address."""
    payload = json.dumps({"prefix": prefix} if prefix else {}).encode("utf-8")
    request = urllib.request.Request(
        f"{api_url.rstrip('/')}/api/email/generate",
        data=payload,
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    with urllib.request.urlopen(request, timeout=10) as response:
        body = json.loads(response.read().decode("utf-8"))
    print(f"Created mailbox {body['email']} (expires {body['expiresAt']})", file=sys.stderr)
    return body["email"]


def create_email(
    from_email: str,
    to_email: str,
    subject: str,
    body: Optional[str] = None,
    html: Optional[str] = None,
    attachments: Optional[List[str]] = None,
) -> MIMEMultipart:
    """Create MIME email message with attachments.

    Args:
        from_email: Sender email address
        to_email: Recipient email address
        subject: Email subject
        body: Plain text body (optional)
        html: HTML body (optional)
        attachments: List of file paths to attach

    Returns:
        MIMEMultipart: Email message
    """
    msg = MIMEMultipart("mixed")
    msg['From'] = from_email
    msg['To'] = to_email
    msg['Subject'] = subject

    alternative = MIMEMultipart("alternative")
    alternative.attach(MIMEText(body or f"Test message for {to_email}", 'plain'))
    if html:
        alternative.attach(MIMEText(html, 'html'))
    msg.attach(alternative)

    for filepath in attachments or []:
        path = Path(filepath)
        if not path.exists():
            print(f"WARNING: Attachment not found: {filepath}", file=sys.stderr)
            continue

        mime_type, _ = mimetypes.guess_type(filepath)
        if mime_type is None:
            mime_type = 'application/octet-stream'
        maintype, subtype = mime_type.split('/', 1)

        content = path.read_bytes()
        part = MIMEBase(maintype, subtype)
        part.set_payload(content)
        encoders.encode_base64(part)
        part.add_header('Content-Disposition', 'attachment', filename=path.name)
        msg.attach(part)

        print(f"Attached: {path.name} ({len(content)} bytes)", file=sys.stderr)

    return msg


def send_email(msg: MIMEMultipart, smtp_host: str = 'localhost', smtp_port: int = 2525) -> None:
    """Send email via plain SMTP (the gateway offers neither AUTH nor STARTTLS)."""
    try:
        with smtplib.SMTP(smtp_host, smtp_port, timeout=30) as smtp:
            smtp.send_message(msg)
    except smtplib.SMTPRecipientsRefused as e:
        for recipient, (code, reason) in e.recipients.items():
            print(f"REJECTED {recipient}: {code} {reason.decode(errors='replace')}", file=sys.stderr)
        sys.exit(1)
    except (smtplib.SMTPException, OSError) as e:
        print(f"ERROR sending email: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Email sent successfully to {msg['To']} via {smtp_host}:{smtp_port}", file=sys.stderr)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='Send test emails to the TempMail SMTP gateway',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument('--from', dest='from_email', default='sender@example.org',
                        help='Sender email address')
    parser.add_argument('--to', dest='to_email', help='Recipient mailbox address')
    parser.add_argument('--create', metavar='PREFIX', nargs='?', const='',
                        help='Create a mailbox through the API first (random when no prefix)')
    parser.add_argument('--api', default='http://localhost:3000', help='HTTP API base URL')
    parser.add_argument('--subject', default='Test message', help='Email subject')
    parser.add_argument('--body', help='Plain text body')
    parser.add_argument('--html', help='HTML body')
    parser.add_argument('--attachment', action='append', help='File to attach (repeatable)')
    parser.add_argument('--send', action='store_true', help='Send via SMTP (otherwise print)')
    parser.add_argument('--smtp-host', default='localhost', help='SMTP host (default: localhost)')
    parser.add_argument('--smtp-port', type=int, default=2525, help='SMTP port (default: 2525)')

    args = parser.parse_args()

    if args.create is not None:
        args.to_email = create_mailbox(args.api, args.create or None)
    if not args.to_email:
        parser.error("Either --to or --create must be specified")

    msg = create_email(
        from_email=args.from_email,
        to_email=args.to_email,
        subject=args.subject,
        body=args.body,
        html=args.html,
        attachments=args.attachment,
    )

    if args.send:
        send_email(msg, args.smtp_host, args.smtp_port)
    else:
        print(msg.as_string())


if __name__ == '__main__':
    main()
