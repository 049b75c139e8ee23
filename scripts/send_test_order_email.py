#!/usr/bin/env python3
"""
Dev helper: send a vendor order email to the local FrameLedger webhook.

Builds an inbound webhook payload for the chosen provider format and POSTs
it to /api/email-intake/inbound. The body is either a built-in sample order
or the contents of --body-file; --pdf attaches an order PDF (Safilo,
Etnia Barcelona).

Usage
-----
# Built-in Europa sample, direct payload, to localhost:8000
python scripts/send_test_order_email.py --short-id abcd1234

# HTML body saved from a real vendor email
python scripts/send_test_order_email.py --short-id abcd1234 \\
    --from orders@modernoptical.com --body-file receipt.html

# Safilo PDF attachment, Postmark payload format
python scripts/send_test_order_email.py --short-id abcd1234 --provider postmark \\
    --from orders@mysafilo.com --pdf order_113006337.pdf

# Show the payload without sending it
python scripts/send_test_order_email.py --short-id abcd1234 --dry-run

Environment / .env
------------------
INBOUND_WEBHOOK_SECRET   Shared webhook secret (falls back to
                         POSTMARK_WEBHOOK_SECRET).
INBOUND_DOMAIN           Forwarding address domain
                         (default: inbound.frameledger.app).
"""

import argparse
import base64
import json
import os
import sys
from pathlib import Path

import httpx
from dotenv import load_dotenv

SAMPLE_SENDER = "receipts@europaeye.com"
SAMPLE_SUBJECT = "Europa Customer Receipt"
SAMPLE_BODY = """Europa Customer Receipt
Order #: 556677
Date: 01/15/2025
Order Placed By Rep: John Smith
Customer: EYE CARE CENTER (12345)
Cote D'Azur - CDA301 Black 52/18/140 2
Cote D'Azur - CDA302 Tortoise 52/17/140 1
Total: 3
"""


def _resolve_secret() -> str:
    return os.getenv("INBOUND_WEBHOOK_SECRET") or os.getenv("POSTMARK_WEBHOOK_SECRET") or ""


def _attachment(path: Path) -> dict:
    return {
        "filename": path.name,
        "content": base64.b64encode(path.read_bytes()).decode(),
        "content_type": "application/pdf",
    }


def build_payload(provider: str, sender: str, to: str, subject: str, html: str, text: str, pdf: Path | None) -> dict:
    attachments = [_attachment(pdf)] if pdf else []

    if provider == "postmark":
        return {
            "From": sender,
            "To": to,
            "Subject": subject,
            "HtmlBody": html,
            "TextBody": text,
            "Attachments": [
                {"Name": a["filename"], "Content": a["content"], "ContentType": a["content_type"]}
                for a in attachments
            ],
        }
    if provider == "resend":
        return {"from": sender, "to": [to], "subject": subject, "html": html, "text": text, "attachments": attachments}
    return {
        "senderAddress": sender,
        "recipient": to,
        "subject": subject,
        "htmlBody": html,
        "plainBody": text,
        "attachments": [
            {"filename": a["filename"], "content": a["content"], "contentType": a["content_type"]}
            for a in attachments
        ],
    }


def main() -> int:
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    load_dotenv(project_root / "backend" / ".env")

    parser = argparse.ArgumentParser(description="Send a test vendor order email to the FrameLedger webhook.")
    parser.add_argument("--url", default="http://localhost:8000", help="Backend base URL.")
    parser.add_argument("--short-id", required=True, help="First 8 characters of the account's user id.")
    parser.add_argument("--provider", choices=["direct", "postmark", "resend"], default="direct")
    parser.add_argument("--from", dest="sender", default=SAMPLE_SENDER, help="Sender address.")
    parser.add_argument("--subject", default=SAMPLE_SUBJECT)
    parser.add_argument("--body-file", type=Path, help="HTML (.html/.htm) or plain text body to send.")
    parser.add_argument("--pdf", type=Path, help="PDF order attachment.")
    parser.add_argument("--secret", help="Override the webhook secret.")
    parser.add_argument("--dry-run", action="store_true", help="Print the payload without sending it.")
    args = parser.parse_args()

    html, text = "", SAMPLE_BODY
    if args.body_file:
        if not args.body_file.exists():
            print(f"ERROR: File not found: {args.body_file}", file=sys.stderr)
            return 1
        content = args.body_file.read_text(encoding="utf-8", errors="replace")
        if args.body_file.suffix.lower() in (".html", ".htm"):
            html, text = content, ""
        else:
            text = content
    if args.pdf and not args.pdf.exists():
        print(f"ERROR: File not found: {args.pdf}", file=sys.stderr)
        return 1

    domain = os.getenv("INBOUND_DOMAIN", "inbound.frameledger.app")
    to_address = f"orders-{args.short_id}@{domain}"
    payload = build_payload(args.provider, args.sender, to_address, args.subject, html, text, args.pdf)
    endpoint = f"{args.url.rstrip('/')}/api/email-intake/inbound"

    print(f"Provider : {args.provider}")
    print(f"Endpoint : {endpoint}")
    print(f"From     : {args.sender}")
    print(f"To       : {to_address}")

    if args.dry_run:
        print(json.dumps(payload, indent=2)[:4000])
        return 0

    secret = args.secret or _resolve_secret()
    if not secret:
        print("ERROR: No webhook secret. Set INBOUND_WEBHOOK_SECRET or pass --secret.", file=sys.stderr)
        return 1

    header = "X-Postmark-Secret" if args.provider == "postmark" else "X-Webhook-Secret"
    try:
        response = httpx.post(endpoint, json=payload, headers={header: secret}, timeout=60)
    except httpx.HTTPError as e:
        print(f"ERROR: request failed: {e}", file=sys.stderr)
        return 1

    print(f"\nHTTP {response.status_code}")
    try:
        print(json.dumps(response.json(), indent=2))
    except ValueError:
        print(response.text)
    return 0 if response.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
