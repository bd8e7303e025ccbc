"""Utility functions for citepack."""

from citepack.utils.binary import detect_binary
from citepack.utils.cancel import CancelToken
from citepack.utils.text import canonicalize, document_hash, sha256_hex
from citepack.utils.vector import cosine_similarity, from_float32_bytes, to_float32_bytes

__all__ = [
    "CancelToken",
    "canonicalize",
    "cosine_similarity",
    "detect_binary",
    "document_hash",
    "from_float32_bytes",
    "sha256_hex",
    "to_float32_bytes",
]
