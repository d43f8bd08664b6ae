"""Locating the artifact in a heterogeneous backend output.

Backends answer with whatever their worker returns: an inline base64
payload, a URL, or a path on the shared volume. Candidates are tried in
a fixed order:

1. embedded base64 data (decoded and saved locally)
2. a direct URL field
3. the generic ``output_url`` field
4. a volume path (downloaded through the object store, saved locally)
5. nothing usable: a placeholder URL, marked ``unidentified``
"""

import asyncio
import base64
import binascii
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..results import LocalResultStore
from ..storage.paths import DEFAULT_MOUNT_PREFIX, is_volume_path, strip_mount_prefix

logger = logging.getLogger(__name__)

BASE64_FIELDS = ["image", "image_base64", "video", "mp4", "audio", "result", "video_path", "image_path", "audio_path"]
URL_FIELDS = ["image_url", "video_url", "audio_url", "url", "image", "video", "mp4", "audio", "result"]
VOLUME_FIELDS = ["video_path", "image_path", "audio_path", "video", "mp4", "image", "audio", "result", "output_path"]

MIN_BASE64_LENGTH = 100
TRUNCATE_OVER = 1000
TRUNCATE_KEEP = 100

FIELD_EXTENSIONS = {
    "video": ".mp4",
    "mp4": ".mp4",
    "video_path": ".mp4",
    "video_url": ".mp4",
    "audio": ".wav",
    "audio_path": ".wav",
    "audio_url": ".wav",
}

MIME_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
    "video/mp4": ".mp4",
    "audio/wav": ".wav",
    "audio/mpeg": ".mp3",
}


@dataclass
class ExtractedResult:
    result_url: str
    source: str
    output_field: Optional[str] = None
    local_path: Optional[str] = None
    notes: List[str] = field(default_factory=list)

    def to_options(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {"outputSource": self.source}
        if self.output_field:
            options["outputField"] = self.output_field
        if self.local_path:
            options["localPath"] = self.local_path
        if self.notes:
            options["extractionNotes"] = self.notes
        return options


def truncate_output(value: Any) -> Any:
    """Shorten strings over 1000 characters anywhere inside ``value`` to a
    100-character head plus the original length."""
    if isinstance(value, str):
        if len(value) > TRUNCATE_OVER:
            return f"{value[:TRUNCATE_KEEP]}... ({len(value)} characters)"
        return value
    if isinstance(value, dict):
        return {k: truncate_output(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [truncate_output(v) for v in value]
    return value


def _split_data_uri(value: str):
    """``data:image/png;base64,AAAA`` -> ("image/png", "AAAA")."""
    if value.startswith("data:") and "," in value:
        header, payload = value.split(",", 1)
        return header[5:].split(";", 1)[0], payload
    return None, value


def decode_base64(value: Any) -> Optional[bytes]:
    """Bytes if ``value`` looks like inline base64 data, else None."""
    if not isinstance(value, str) or len(value) <= MIN_BASE64_LENGTH:
        return None
    if value.startswith(("http://", "https://", "/")):
        return None
    _, payload = _split_data_uri(value)
    try:
        return base64.b64decode("".join(payload.split()), validate=True)
    except (binascii.Error, ValueError):
        return None


def is_url(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(("http://", "https://"))


def extension_for(field_name: Optional[str], value: Any, default: str) -> str:
    if isinstance(value, str):
        mime, _ = _split_data_uri(value)
        if mime in MIME_EXTENSIONS:
            return MIME_EXTENSIONS[mime]
        if value.startswith("/"):
            suffix = os.path.splitext(value)[1]
            if suffix:
                return suffix.lower()
    return FIELD_EXTENSIONS.get(field_name or "", default)


def normalize_output(output: Any) -> Dict[str, Any]:
    if isinstance(output, dict):
        return output
    if isinstance(output, list) and output and isinstance(output[0], dict):
        return output[0]
    if output is None:
        return {}
    return {"result": output}


class ResultExtractor:
    """Turns a completed backend output into a ``result_url``.

    Args:
        results: local store for decoded or downloaded artifacts
        download: fetches a store-relative key (blocking; run in a thread)
        mount_prefix: backend mount point identifying volume paths
    """

    def __init__(
        self,
        results: LocalResultStore,
        download: Optional[Callable[[str], bytes]] = None,
        mount_prefix: str = DEFAULT_MOUNT_PREFIX,
    ):
        self.results = results
        self.download = download
        self.mount_prefix = mount_prefix

    async def extract(self, job_id: str, output: Any, default_ext: str = ".png") -> ExtractedResult:
        data = normalize_output(output)

        # 1. inline base64
        for name in BASE64_FIELDS:
            decoded = decode_base64(data.get(name))
            if decoded is not None:
                ext = extension_for(name, data[name], default_ext)
                url, path = await asyncio.to_thread(self.results.save, f"{job_id}{ext}", decoded)
                return ExtractedResult(url, "base64", output_field=name, local_path=str(path))

        # 2. direct URL
        for name in URL_FIELDS:
            if is_url(data.get(name)):
                return ExtractedResult(data[name], "url", output_field=name)

        # 3. generic output_url
        if isinstance(data.get("output_url"), str) and data["output_url"]:
            return ExtractedResult(data["output_url"], "output_url", output_field="output_url")

        notes: List[str] = []

        # 4. volume path
        for name in VOLUME_FIELDS:
            value = data.get(name)
            if not is_volume_path(value, self.mount_prefix):
                continue
            if self.download is None:
                notes.append(f"{name}: no object store configured to fetch {value}")
                break
            key = strip_mount_prefix(value, self.mount_prefix)
            try:
                content = await asyncio.to_thread(self.download, key)
            except Exception as exc:
                logger.warning("Job %s: could not download %s: %s", job_id, key, exc)
                notes.append(f"{name}: download of {key} failed: {exc}")
                break
            ext = extension_for(name, value, default_ext)
            url, path = await asyncio.to_thread(self.results.save, f"{job_id}{ext}", content)
            return ExtractedResult(url, "volume", output_field=name, local_path=str(path))

        # 5. placeholder
        logger.warning("Job %s: no usable artifact in output keys %s", job_id, sorted(data))
        return ExtractedResult(f"/api/results/{job_id}{default_ext}", "unidentified", notes=notes)
