"""Model loader: locate, optionally fetch, and memory-map the model artifact.

The artifact is looked up by exact name in the configured models directory.
When it is missing and a HuggingFace repository is configured, it is fetched
once into that directory. The file is exposed as a read-only ``mmap`` region
and is never copied or modified by the loader.
"""

from __future__ import annotations

import logging
import mmap
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from huggingface_hub import hf_hub_download
from huggingface_hub.errors import HfHubHTTPError

from classifyx.errors import ModelIOError, ModelNotFoundError

if TYPE_CHECKING:
    from classifyx.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class ModelHandle:
    """A loaded model artifact, mapped read-only into memory."""

    name: str
    path: Path
    region: mmap.mmap

    @property
    def size(self) -> int:
        """Size of the mapped artifact in bytes."""
        return len(self.region)

    @property
    def closed(self) -> bool:
        return self.region.closed

    def close(self) -> None:
        """Release the mapping. The handle is unusable afterwards."""
        if not self.region.closed:
            self.region.close()


class ModelLoader:
    """Loads the single bundled model artifact on first use."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)
        self._lock = threading.Lock()
        self._handle: ModelHandle | None = None

    @property
    def model_path(self) -> Path:
        return self._models_dir / self._settings.model_filename

    @property
    def loaded(self) -> bool:
        with self._lock:
            return self._handle is not None

    def load(self) -> ModelHandle:
        """Return the mapped artifact, mapping it on the first call.

        Raises:
            ModelNotFoundError: If the artifact does not exist and cannot be fetched.
            ModelIOError: If the artifact cannot be read, mapped, or downloaded.
        """
        with self._lock:
            if self._handle is not None and not self._handle.closed:
                return self._handle

            path = self._locate()
            self._handle = ModelHandle(
                name=self._settings.model_filename,
                path=path,
                region=self._map(path),
            )
            logger.info("Mapped model %s (%d bytes)", path, self._handle.size)
            return self._handle

    def close(self) -> None:
        """Release the mapped artifact, if any."""
        with self._lock:
            if self._handle is not None:
                self._handle.close()
                self._handle = None
                logger.info("Model mapping released")

    # -- Internal -----------------------------------------------------------

    def _locate(self) -> Path:
        path = self.model_path
        if path.is_file():
            return path

        repo_id = self._settings.model_repo_id
        if repo_id is None:
            raise ModelNotFoundError(f"Model artifact not found: {path}")

        return self._download(repo_id)

    def _download(self, repo_id: str) -> Path:
        self._models_dir.mkdir(parents=True, exist_ok=True)
        try:
            downloaded = Path(
                hf_hub_download(
                    repo_id=repo_id,
                    filename=self._settings.model_filename,
                    local_dir=str(self._models_dir),
                )
            )
        except HfHubHTTPError as exc:
            raise ModelIOError(f"Failed to download {self._settings.model_filename} from {repo_id}: {exc}") from exc
        except OSError as exc:
            raise ModelIOError(f"Failed to store {self._settings.model_filename} from {repo_id}: {exc}") from exc

        logger.info("Downloaded %s to %s", self._settings.model_filename, downloaded)
        return downloaded

    @staticmethod
    def _map(path: Path) -> mmap.mmap:
        try:
            with path.open("rb") as fh:
                # The mapping stays valid after the file object is closed.
                return mmap.mmap(fh.fileno(), 0, access=mmap.ACCESS_READ)
        except FileNotFoundError as exc:
            raise ModelNotFoundError(f"Model artifact not found: {path}") from exc
        except (OSError, ValueError) as exc:
            # ValueError: mmap refuses empty files.
            raise ModelIOError(f"Cannot map model artifact {path}: {exc}") from exc
