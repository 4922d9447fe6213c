#!/usr/bin/env python3
"""
Generate a cryptographically secure topic secret.

Usage:
    python scripts/generate_token.py              # Generate default 32-byte secret
    python scripts/generate_token.py 48           # Generate 48-byte secret
    python scripts/generate_token.py --json       # Output as a config.json "secure" block
    python scripts/generate_token.py --json --token-method   # same, for a "token" topic

Example output:
    Yx8kL2mN9pQ4rS6tU0vW3xZ5aB7cD1eFgH2jK4lM6nP
"""
import json
import secrets
import sys


def generate_token(length: int = 32) -> str:
    """Generate a URL-safe random token."""
    return secrets.token_urlsafe(length)


def main():
    length = 32
    json_format = False
    method = "sigKey"

    for arg in sys.argv[1:]:
        if arg == "--json":
            json_format = True
        elif arg == "--token-method":
            method = "token"
        elif arg.isdigit():
            length = int(arg)
        elif arg in ("--help", "-h"):
            print(__doc__)
            return

    if json_format:
        print(json.dumps({"secure": {"method": method, "secret": generate_token(length)}}, indent=2))
    else:
        print(generate_token(length))


if __name__ == "__main__":
    main()
