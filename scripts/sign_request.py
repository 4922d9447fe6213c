#!/usr/bin/env python3
"""
Sign a notification for a ``sigKey`` topic using HMAC-SHA256.

The topic secret never leaves your machine - only the signature is sent.

Usage:
    # Print the signature
    python scripts/sign_request.py "Disk full" "txt:/var is at 98%|at:10001"

    # Print a ready-to-run curl command
    python scripts/sign_request.py "Disk full" "txt:/var is at 98%" --curl --topic alerts

Environment:
    TOPIC_SECRET: the topic's secure.secret (or pass --secret)

Output:
    sig=abc123...

    Or with --curl flag:
    curl -X POST -H "Content-Type: application/json" -d '{...}' http://host/<topic>
"""
import argparse
import hashlib
import hmac
import json
import os
import sys


def compute_signature(title: str, content: str, secret: str) -> str:
    """Compute HMAC-SHA256 signature matching the server's compute_content_signature."""
    signing_string = f"title={title}&content={content}"

    signature = hmac.new(
        secret.encode(),
        signing_string.encode(),
        hashlib.sha256
    ).hexdigest()

    return signature


def main():
    parser = argparse.ArgumentParser(
        description="Sign mirai-webhook notifications with HMAC-SHA256",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument("title", help="Notification title")
    parser.add_argument("content", help="Notification content (raw markup)")
    parser.add_argument("--secret", "-s", help="Topic secret (or use TOPIC_SECRET env var)")
    parser.add_argument("--curl", "-c", action="store_true", help="Output as curl command")
    parser.add_argument("--topic", "-t", default="default", help="Topic id for curl")
    parser.add_argument("--host", "-H", default="http://localhost:8080", help="Host URL for curl")

    args = parser.parse_args()

    secret = args.secret or os.environ.get("TOPIC_SECRET")
    if not secret:
        print("Error: TOPIC_SECRET environment variable not set", file=sys.stderr)
        print("Set it with: export TOPIC_SECRET=your-topic-secret", file=sys.stderr)
        sys.exit(1)

    signature = compute_signature(args.title, args.content, secret)

    if args.curl:
        body = json.dumps({"title": args.title, "content": args.content, "sig": signature}, ensure_ascii=False)
        body = body.replace("'", "'\\''")
        cmd_parts = [
            "curl",
            "-X POST",
            '-H "Content-Type: application/json"',
            f"-d '{body}'",
            f'"{args.host.rstrip("/")}/{args.topic}"',
        ]
        print(" \\\n  ".join(cmd_parts))
    else:
        print(f"sig={signature}")


if __name__ == "__main__":
    main()
