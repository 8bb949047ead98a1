from __future__ import annotations

SOURCE_MAX_BYTES = 128 * 1024
STDIN_MAX_BYTES = 1024 * 1024


class QuotaError(ValueError):
    pass


def enforce_source_size(source: str) -> None:
    if len(source.encode()) > SOURCE_MAX_BYTES:
        raise QuotaError("payload_too_large: source_code exceeds 128KiB limit")


def enforce_stdin_size(stdin: str | None, *, label: str = "stdin") -> None:
    if stdin and len(stdin.encode()) > STDIN_MAX_BYTES:
        raise QuotaError(f"payload_too_large: {label} exceeds 1MiB limit")


__all__ = ["enforce_source_size", "enforce_stdin_size", "QuotaError"]
