"""
Text helpers shared by chat replies, prompts and oracle response sanitation.
"""


def sanitize_utf8(raw: str) -> str:
    """Replace anything that cannot round-trip through UTF-8 with '?'."""
    if not raw:
        return ""
    # Lone surrogates (e.g. from surrogateescape) are the only unencodable input
    return raw.encode("utf-8", errors="replace").decode("utf-8")


def decode_utf8(data: bytes) -> str:
    """Decode bytes read from disk, replacing invalid sequences with '?'."""
    return data.decode("utf-8", errors="replace").replace("\ufffd", "?")


def truncate_chars(raw: str, max_len: int) -> str:
    """Trim and cut to at most max_len characters (no ellipsis)."""
    value = sanitize_utf8(raw or "").strip()
    if max_len <= 0 or len(value) <= max_len:
        return value
    return value[:max_len]


def compact_single_line(raw: str, max_len: int = 0) -> str:
    """Collapse whitespace into one line, truncating with '...' past max_len."""
    value = " ".join(sanitize_utf8(raw or "").split())
    if max_len <= 0 or len(value) <= max_len:
        return value
    if max_len <= 3:
        return value[:max_len]
    return value[:max_len - 3] + "..."


def value_or_dash(raw: str | None) -> str:
    if not raw or not raw.strip():
        return "-"
    return raw
