"""
File safety utilities for receipt uploads.

Receipts attached to a plan assignment are the only files the console
accepts. This module keeps the checks that do not need Django so they can be
called from forms, the wizard engine and tests alike.

Typical usage::

    from tenantadmin.core.filesafety import build_safe_filename
    from tenantadmin.core.filesafety import sniff_content_type

    detected = sniff_content_type(first_bytes)
    safe_name = build_safe_filename(upload.name, content_type=detected)
"""

import re
import unicodedata
from pathlib import Path

SAFE_EXT_FOR_TYPE = {
    "application/pdf": ".pdf",
    "image/jpeg": ".jpg",
    "image/png": ".png",
}

# Browsers still send the non-standard image/jpg for some JPEG files.
CONTENT_TYPE_ALIASES = {
    "image/jpg": "image/jpeg",
    "image/pjpeg": "image/jpeg",
}

MAGIC_PREFIXES = (
    (b"%PDF", "application/pdf"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
)

_FILENAME_SAFE = re.compile(r"[^A-Za-z0-9._\-()+=,@ ]+")

_ASCII_MIN_PRINTABLE = 32
_ASCII_MAX_EXCLUSIVE = 127

_MAX_NAME_LENGTH = 100


def normalize_content_type(content_type: str | None) -> str:
    """Lowercase a declared MIME type, drop parameters and resolve aliases."""
    if not content_type:
        return ""
    base = content_type.split(";", 1)[0].strip().lower()
    return CONTENT_TYPE_ALIASES.get(base, base)


def sanitize_filename(candidate: str, *, fallback: str = "receipt") -> str:
    """
    Return a safe, filesystem-friendly version of a user-supplied filename.

    Strips directory components, normalises Unicode to NFKC, drops control
    characters, replaces anything outside the safe set with underscores and
    removes leading/trailing dots. Falls back to ``fallback`` when nothing
    usable is left.

    Examples::

        >>> sanitize_filename("../../etc/passwd")
        'passwd'
        >>> sanitize_filename(".hidden.pdf")
        'hidden.pdf'
    """
    candidate = candidate or fallback
    name = Path(candidate).name
    name = unicodedata.normalize("NFKC", name)

    name = "".join(
        ch for ch in name if _ASCII_MIN_PRINTABLE <= ord(ch) < _ASCII_MAX_EXCLUSIVE
    )
    name = _FILENAME_SAFE.sub("_", name)
    name = re.sub(r"\s+", " ", name).strip()

    if name.startswith("."):
        name = name.lstrip(".")
    name = name.rstrip(".")
    if not name:
        name = fallback

    return name[:_MAX_NAME_LENGTH]


def force_extension(name: str, *, content_type: str) -> str:
    """
    Replace the file extension to match the content type.

    ``.jpeg`` is accepted as-is for JPEG files; any other mismatch is
    replaced, so ``invoice.exe.pdf`` stays a PDF and ``scan.txt`` declared as
    PNG becomes ``scan.png``.
    """
    want_ext = SAFE_EXT_FOR_TYPE.get(content_type)
    if want_ext is None:
        return name
    path = Path(name)
    ext = path.suffix.lower()
    if ext == want_ext or (want_ext == ".jpg" and ext == ".jpeg"):
        return name
    return f"{path.stem}{want_ext}"


def build_safe_filename(original: str, *, content_type: str) -> str:
    """Sanitize ``original`` and enforce the extension for ``content_type``."""
    name = sanitize_filename(original)
    return force_extension(name, content_type=content_type)


def sniff_content_type(raw: bytes) -> str | None:
    """
    Return the MIME type matching the magic bytes of ``raw``, if any.

    Only the receipt formats are recognised; anything else yields None.
    """
    for prefix, content_type in MAGIC_PREFIXES:
        if raw.startswith(prefix):
            return content_type
    return None
