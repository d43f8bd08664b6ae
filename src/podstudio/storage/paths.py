"""Key and file-name helpers shared by the store client and job staging."""

import os
import re

DEFAULT_MOUNT_PREFIX = "/runpod-volume"

_UNSAFE = re.compile(r"[^a-zA-Z0-9._-]")
_UNDERSCORES = re.compile(r"_+")


def sanitize_file_name(name: str) -> str:
    """Restrict ``name`` to ``[a-zA-Z0-9._-]``.

    >>> sanitize_file_name("my file (v2).lora")
    'my_file_v2_.lora'
    """
    cleaned = _UNSAFE.sub("_", name)
    cleaned = _UNDERSCORES.sub("_", cleaned).strip("_")
    return cleaned or "file"


def normalize_key(*parts: str) -> str:
    """Join path parts into a store-relative key (no leading slash, no doubles)."""
    segments = []
    for part in parts:
        if not part:
            continue
        segments.extend(s for s in part.replace("\\", "/").split("/") if s)
    return "/".join(segments)


def normalize_prefix(prefix: str) -> str:
    """Folder prefix with a single trailing slash, or "" for the bucket root."""
    key = normalize_key(prefix or "")
    return f"{key}/" if key else ""


def split_extension(file_name: str):
    stem, ext = os.path.splitext(file_name)
    return stem, ext


def numbered_name(file_name: str, counter: int) -> str:
    """``photo.png`` -> ``photo_<counter>.png``."""
    stem, ext = split_extension(file_name)
    return f"{stem}_{counter}{ext}"


def to_volume_path(key: str, mount_prefix: str = DEFAULT_MOUNT_PREFIX) -> str:
    return f"{mount_prefix.rstrip('/')}/{normalize_key(key)}"


def is_volume_path(value: str, mount_prefix: str = DEFAULT_MOUNT_PREFIX) -> bool:
    return isinstance(value, str) and value.startswith(mount_prefix.rstrip("/") + "/")


def strip_mount_prefix(path: str, mount_prefix: str = DEFAULT_MOUNT_PREFIX) -> str:
    """Store-relative key for a volume path; other paths are only normalized."""
    prefix = mount_prefix.rstrip("/")
    if path.startswith(prefix + "/"):
        path = path[len(prefix) + 1:]
    return normalize_key(path)
