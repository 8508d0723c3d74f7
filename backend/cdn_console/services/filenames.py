"""
Filename sanitising and object-key construction for invite uploads.

Keys are built as ``<prefix>/<sanitized-base>-<suffix>.<ext>`` and never
exceed the 1024-character S3 key ceiling.
"""

import re
import unicodedata
from datetime import UTC, datetime

MAX_BASE_NAME_LENGTH = 200
MAX_KEY_LENGTH = 1024
FALLBACK_NAME = "file"

_SEPARATORS = "-._/"
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9/_.\-]")
_REPEATED = [
    (re.compile(r"-+"), "-"),
    (re.compile(r"\.+"), "."),
    (re.compile(r"_+"), "_"),
    (re.compile(r"/+"), "/"),
]


def _split_extension(name: str) -> tuple[str, str]:
    """Split at the last dot of the final path segment, if it is interior."""
    basename_start = name.rfind("/") + 1
    dot = name.rfind(".")
    if dot > basename_start and dot < len(name) - 1:
        return name[:dot], name[dot + 1 :]
    return name, ""


def sanitize_filename(raw: str | None) -> str:
    """
    Normalize an untrusted filename into a storage-safe name.

    The result only contains ``[A-Za-z0-9_./-]``, has no repeated or
    leading/trailing separators and no dot-only path segments, and its base
    name (extension excluded) is at most 200 characters. Applying it twice
    gives the same result as applying it once.
    """
    if not raw or not isinstance(raw, str):
        return FALLBACK_NAME

    name = unicodedata.normalize("NFKD", raw)
    name = "".join(ch for ch in name if unicodedata.category(ch) != "Cc").strip()
    name = re.sub(r"\s+", "-", name)
    name = _UNSAFE_CHARS.sub("", name)
    for pattern, replacement in _REPEATED:
        name = pattern.sub(replacement, name)

    segments = [seg for seg in name.split("/") if seg.strip(_SEPARATORS)]
    name = "/".join(segments).strip(_SEPARATORS)

    base, extension = _split_extension(name)
    base = base[:MAX_BASE_NAME_LENGTH].rstrip(_SEPARATORS) or FALLBACK_NAME

    return f"{base}.{extension}" if extension else base


def get_file_extension(filename: str | None) -> str:
    """Lower-cased extension without the leading dot; empty when there is none."""
    if not filename or not isinstance(filename, str):
        return ""
    return _split_extension(filename)[1].lower()


def resolve_prefix_template(template: str, label: str, date: datetime | None = None) -> str:
    """
    Substitute ``{label}``, ``{YYYY}``, ``{MM}`` and ``{DD}`` in an upload prefix.

    Resolution happens when an invite is created or its label/template is
    edited; every upload under the invite shares the resulting prefix.
    """
    date = date or datetime.now(UTC)
    return (
        template.replace("{label}", label)
        .replace("{YYYY}", f"{date.year:04d}")
        .replace("{MM}", f"{date.month:02d}")
        .replace("{DD}", f"{date.day:02d}")
    )


def normalize_prefix(prefix: str) -> str:
    """No leading slash, exactly one trailing slash (empty prefix stays empty)."""
    cleaned = prefix.strip("/")
    return f"{cleaned}/" if cleaned else ""


def build_object_key(prefix: str, filename: str, suffix: str) -> str:
    """
    Build the final object key for an upload.

    The random suffix goes right before the extension. When the key would
    pass 1024 characters the base name is cut; prefix, suffix and extension
    are kept whole.
    """
    normalized_prefix = normalize_prefix(prefix)
    base, extension = _split_extension(sanitize_filename(filename))

    tail = f"-{suffix}.{extension}" if extension else f"-{suffix}"
    max_base_length = MAX_KEY_LENGTH - len(normalized_prefix) - len(tail)
    if max_base_length < 1:
        raise ValueError("Upload prefix and extension leave no room for a file name")

    return normalized_prefix + base[:max_base_length] + tail


def build_public_url(public_base: str, key: str) -> str:
    return f"{public_base.rstrip('/')}/{key.lstrip('/')}"
