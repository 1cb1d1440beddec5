#!/usr/bin/env python3
"""Gate: PII check for runtime code under src/.

Fails if:
- print( appears in runtime code
- A logger call line names a PII field without going through redaction
- A logger message is an f-string (values must go in extra_fields)

Usage:
    python scripts/gate_security_pii.py
"""

import re
import sys
from pathlib import Path

# Field names that carry contact data or message text
SENSITIVE_KEYWORDS = (
    "payload",
    "body",
    "phone",
    "chat_id",
    "push_name",
    "content",
    "caption",
    "media_url",
    "api_key",
)

PRINT_PATTERN = re.compile(r"\bprint\s*\(")

LOGGER_CALL_PATTERN = re.compile(
    r"logger\.(debug|info|warning|error|critical|exception)\s*\("
)

FSTRING_MESSAGE_PATTERN = re.compile(
    r"logger\.(debug|info|warning|error|critical|exception)\s*\(\s*f[\"']"
)

REDACTION_PATTERNS = (
    "safe_log_context",
    "redact_value",
    "redact_string",
    "hash_identifier",
)


def _code_part(line: str) -> str:
    return line.split("#", 1)[0]


def check_file(filepath: Path) -> list[str]:
    """Return violation messages for one file."""
    try:
        content = filepath.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return []

    errors: list[str] = []

    for lineno, line in enumerate(content.splitlines(), start=1):
        if line.lstrip().startswith("#"):
            continue
        code = _code_part(line)

        if PRINT_PATTERN.search(code):
            errors.append(f"{filepath}:{lineno}: print() not allowed in runtime code")

        if not LOGGER_CALL_PATTERN.search(code):
            continue

        if FSTRING_MESSAGE_PATTERN.search(code):
            errors.append(f"{filepath}:{lineno}: logger message must not be an f-string")

        if any(rp in code for rp in REDACTION_PATTERNS):
            continue

        code_lower = code.lower()
        for keyword in SENSITIVE_KEYWORDS:
            if keyword in code_lower:
                errors.append(
                    f"{filepath}:{lineno}: logger call with '{keyword}' "
                    "must use redaction (safe_log_context/hash_identifier)"
                )

    return errors


def main() -> int:
    src_dir = Path("src")
    if not src_dir.exists():
        src_dir = Path(__file__).parent.parent / "src"

    if not src_dir.exists():
        sys.stderr.write("Error: src directory not found\n")
        return 1

    all_errors: list[str] = []
    for pyfile in sorted(src_dir.rglob("*.py")):
        all_errors.extend(check_file(pyfile))

    if all_errors:
        sys.stderr.write("PII gate FAILED - violations found:\n")
        for err in all_errors:
            sys.stderr.write(f"  {err}\n")
        return 1

    sys.stdout.write("PII gate PASSED - no violations found\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
