"""Content fingerprints used as cache keys."""

from __future__ import annotations

_MASK_32 = 0xFFFFFFFF


def generate_content_hash(content: str) -> str:
    """Return a deterministic, non-cryptographic fingerprint of ``content``.

    The fingerprint is the 32-bit ``hash * 31 + code_unit`` accumulation over the UTF-16
    code units of the text, rendered as a non-negative decimal string. Empty content maps
    to the empty string.
    """
    if not content:
        return ""
    encoded = content.encode("utf-16-le", errors="surrogatepass")
    value = 0
    for i in range(0, len(encoded), 2):
        code_unit = encoded[i] | (encoded[i + 1] << 8)
        value = ((value << 5) - value + code_unit) & _MASK_32
    if value & 0x80000000:
        value -= 1 << 32
    return str(abs(value))
