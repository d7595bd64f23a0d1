"""SHA-256 helpers for stable ids and content hashes."""

import hashlib


def sha256(text: str) -> str:
    """Hash text using SHA256 and return lowercase hex."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_to_uint32(hex_hash: str) -> int:
    """Read the first 4 bytes of a hex digest as a big-endian unsigned int."""
    return int(hex_hash[:8], 16)
