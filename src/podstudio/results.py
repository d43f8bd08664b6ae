import logging
import os
from pathlib import Path
from typing import Tuple, Union

logger = logging.getLogger(__name__)


class LocalResultStore:
    """Files extracted from job outputs, served under ``public_prefix``."""

    def __init__(self, base_dir: Union[str, Path], public_prefix: str = "/results"):
        self.base_dir = Path(base_dir)
        self.public_prefix = public_prefix.rstrip("/")

    def ensure_dir(self) -> Path:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        return self.base_dir

    def save(self, file_name: str, data: bytes) -> Tuple[str, Path]:
        """Write ``data`` and return ``(public_url, path)``."""
        name = os.path.basename(file_name)
        path = self.ensure_dir() / name
        with open(path, "wb") as f:
            f.write(data)
        logger.info("Saved result %s (%d bytes)", path, len(data))
        return f"{self.public_prefix}/{name}", path
