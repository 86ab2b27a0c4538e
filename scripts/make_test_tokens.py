"""Print share tokens for manually checking decode error handling.

Each line is labelled with the outcome the decoder should produce:
  ok     loads normally
  warn   loads with a warning
  error  rejected with an error code

Usage:
    python -m scripts.make_test_tokens [--base-url URL] [--schema-version N]
"""

from __future__ import annotations

import argparse
from typing import Any

from talent_planner.codec.build_codec import encode_payload
from talent_planner.models.constants import CODEC_VERSION, SHARE_BUILD_QUERY_KEY


def reference_payload(schema_version: int) -> dict[str, Any]:
    return {"cv": CODEC_VERSION, "sv": schema_version, "m": "Player", "a": "", "t": {}}


def reference_tokens(schema_version: int) -> list[tuple[str, str, str]]:
    """Return (expectation, label, token) rows."""
    valid = reference_payload(schema_version)
    valid_token = encode_payload(valid)
    flipped = "B" if valid_token[-1] == "A" else "A"
    return [
        ("ok", "valid empty build", valid_token),
        ("error", "empty parameter (incomplete)", ""),
        ("error", "invalid base64 characters (corrupted)", "this!!!is!!!not!!!valid!!!base64!!!"),
        ("error", "last character altered (corrupted)", valid_token[:-1] + flipped),
        ("warn", "codec version mismatch", encode_payload({**valid, "cv": 999})),
        ("warn", "schema version mismatch", encode_payload({**valid, "sv": 999})),
        ("error", "unknown model (invalidModel)", encode_payload({**valid, "m": "InvalidModel"})),
    ]


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Print share tokens for decode checks")
    parser.add_argument("--base-url", default="http://localhost:5176/",
                        help="Prefix for printed URLs (default: %(default)s)")
    parser.add_argument("--schema-version", type=int, default=4)
    args = parser.parse_args(argv)

    for expectation, label, token in reference_tokens(args.schema_version):
        print(f"[{expectation}] {label}:")
        print(f"  {args.base_url}?{SHARE_BUILD_QUERY_KEY}={token}\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
