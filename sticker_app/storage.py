"""
Artifact Storage

Supabase Storage bucket holding generated sticker images. Paths follow
`{job_id}/{work_item_id}.png`.
"""

import logging
from typing import List

from sticker_app.jobs.errors import DependencyError
from sticker_app.jobs.utils import chunk_list

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = "stickers"
DELETE_BATCH_SIZE = 100
LIST_PAGE_SIZE = 1000
PNG_CONTENT_TYPE = "image/png"


def artifact_path(job_id: str, work_item_id: str, ext: str = "png") -> str:
    return f"{job_id}/{work_item_id}.{ext}"


class ArtifactStore:
    """Upload, list and delete sticker images in one public bucket."""

    def __init__(self, supabase, bucket: str = DEFAULT_BUCKET):
        self.supabase = supabase
        self.bucket = bucket

    def _bucket(self):
        return self.supabase.storage.from_(self.bucket)

    def ensure_bucket(self) -> None:
        """Create the public bucket if it does not exist yet."""
        try:
            self.supabase.storage.create_bucket(self.bucket, options={"public": True})
            logger.info(f"Created storage bucket {self.bucket}")
        except Exception as e:
            message = str(e).lower()
            if "already exists" in message or "duplicate" in message:
                return
            logger.warning(f"create_bucket({self.bucket}) failed: {e}")

    def upload(self, path: str, data: bytes, content_type: str = PNG_CONTENT_TYPE) -> str:
        """Upload (or overwrite) an object and return its public URL."""
        try:
            self._bucket().upload(
                path,
                data,
                {"content-type": content_type, "upsert": "true"},
            )
            return self._bucket().get_public_url(path)
        except Exception as e:
            logger.error(f"Storage upload of {path} failed: {e}")
            raise DependencyError(f"Storage upload failed: {e}", {"path": path}) from e

    def list(self, prefix: str) -> List[str]:
        """
        List object paths directly under `prefix`.

        Pages through the listing; folder placeholders are skipped. Listing
        errors stop the scan and return what was found so far.
        """
        prefix = prefix.strip("/")
        paths: List[str] = []
        offset = 0
        while True:
            try:
                entries = self._bucket().list(prefix, {"limit": LIST_PAGE_SIZE, "offset": offset})
            except Exception as e:
                logger.warning(f"Listing {self.bucket}/{prefix} failed at offset {offset}: {e}")
                break

            entries = entries or []
            for entry in entries:
                name = entry.get("name")
                # Folders come back without an id
                if name and entry.get("id"):
                    paths.append(f"{prefix}/{name}")

            if len(entries) < LIST_PAGE_SIZE:
                break
            offset += LIST_PAGE_SIZE
        return paths

    def delete(self, paths: List[str]) -> int:
        """
        Delete objects in chunks the storage API accepts. A failing chunk is
        logged and skipped. Returns the number of objects removed.
        """
        unique = list(dict.fromkeys(p for p in paths if p))
        removed = 0
        for chunk in chunk_list(unique, DELETE_BATCH_SIZE):
            try:
                response = self._bucket().remove(chunk)
            except Exception as e:
                logger.warning(f"Failed to delete {len(chunk)} object(s) from {self.bucket}: {e}")
                continue
            removed += len(response) if isinstance(response, list) else len(chunk)
        return removed
