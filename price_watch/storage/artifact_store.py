# price_watch/storage/artifact_store.py

"""Storage for per-run JSON log artifacts."""

import json
import logging
from pathlib import Path
from typing import Any, Protocol

from price_watch.config.settings import Settings

logger = logging.getLogger("price_watch.storage")


class ArtifactStoreError(RuntimeError):
    """An artifact could not be written."""


class ArtifactStore(Protocol):
    """Anything that can persist a JSON document at a relative path."""

    def upload(self, path: str, payload: dict[str, Any]) -> None:
        """Write *payload* at *path*, replacing any existing document."""
        ...


class LocalArtifactStore:
    """Writes artifacts as pretty-printed JSON below a bucket directory."""

    def __init__(
        self, root: Path, bucket: str | None = None,
    ) -> None:
        self.bucket_dir: Path = root / (bucket or Settings.LOG_BUCKET)
        logger.debug(
            "LocalArtifactStore initialised, bucket_dir=%s",
            self.bucket_dir,
        )

    def resolve(self, path: str) -> Path:
        """Map a bucket-relative path to a filesystem path."""
        target = (self.bucket_dir / path).resolve()
        if not target.is_relative_to(self.bucket_dir.resolve()):
            raise ArtifactStoreError(
                f"Artifact path escapes bucket: {path}"
            )
        return target

    def upload(self, path: str, payload: dict[str, Any]) -> None:
        """Write *payload* as JSON at *path* (upsert)."""
        target = self.resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "w", encoding="utf-8") as f:
                json.dump(
                    payload, f, ensure_ascii=False, indent=2,
                    default=str,
                )
        except OSError as exc:
            raise ArtifactStoreError(
                f"Failed to write {path}: {exc}"
            ) from exc
        logger.debug("Wrote artifact %s", target)
