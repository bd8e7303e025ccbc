"""Binary detection for files offered to the folder ingester."""

from pathlib import Path

# Extensions whose content is never indexed as text
BINARY_EXTENSIONS = {
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".webp", ".tiff",
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".odt", ".ods",
    ".qdpx", ".zip", ".tar", ".gz", ".rar", ".7z", ".bz2", ".xz",
    ".exe", ".dll", ".so", ".dylib", ".bin",
    ".mp3", ".mp4", ".avi", ".mov", ".wav", ".flac", ".mkv", ".webm",
    ".pyc", ".class", ".o", ".wasm",
    ".ttf", ".otf", ".woff", ".woff2",
    ".db", ".sqlite", ".sqlite3",
}

_TEXT_BYTES = frozenset(range(32, 127)) | {9, 10, 13}


def is_binary_extension(path: str | Path) -> bool:
    return Path(path).suffix.lower() in BINARY_EXTENSIONS


def is_binary_content(content: bytes, sample_size: int = 8192) -> bool:
    """Sniff the first ``sample_size`` bytes.

    A NUL byte, or more than 30% of bytes outside printable ASCII and
    common whitespace, marks the content as binary. UTF-8 text decodes
    cleanly and is never treated as binary.
    """
    if not content:
        return False
    sample = content[:sample_size]
    if b"\x00" in sample:
        return True
    try:
        sample.decode("utf-8")
        return False
    except UnicodeDecodeError as e:
        # A multi-byte sequence cut at the sample edge is still text
        if e.start >= len(sample) - 3:
            return False
    non_text = sum(1 for byte in sample if byte not in _TEXT_BYTES)
    return (non_text / len(sample)) > 0.30


def detect_binary(path: str | Path, content: bytes) -> bool:
    """Extension check first, then content sniffing."""
    return is_binary_extension(path) or is_binary_content(content)
