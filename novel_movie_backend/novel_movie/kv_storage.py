"""
Project persistence.

Snapshots go to Vercel KV when it is configured, otherwise to a JSON file in
DATA_DIR. The stored text is the export artifact, byte for byte.
"""
import os
import httpx
import logging
from datetime import date
from typing import Dict, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from . import actions as a
from .errors import StorageError
from .media import write_text
from .models import AssetFlags, ProjectState, Severity
from .settings import DATA_DIR, PROJECT_MAX_BYTES, PROJECT_NAME
from .store import ProjectStore

logger = logging.getLogger(__name__)

# Session-only fields that never reach a snapshot
SNAPSHOT_EXCLUDE = {"toasts", "is_movie_open", "is_project_saved", "has_api_key"}


def snapshot_project(state: ProjectState) -> str:
    """Serialize ``state`` with every transient field written in its idle form."""
    idle = state.model_copy(update={
        "status_message": "",
        "error": "",
        "is_saving": False,
        "scenes": [s.model_copy(update={"flags": AssetFlags()}) for s in state.scenes],
    })
    return idle.model_dump_json(exclude=SNAPSHOT_EXCLUDE)


def restore_project(text: str) -> ProjectState:
    try:
        return ProjectState.model_validate_json(text)
    except PydanticValidationError as e:
        raise StorageError("Saved project is not a valid project document", {"errors": e.error_count()})


def export_filename(today: Optional[date] = None) -> str:
    return f"novel-project-{(today or date.today()).isoformat()}.json"


class KVStorage:
    def __init__(self, project_name: str = PROJECT_NAME, data_dir: str = DATA_DIR,
                 max_bytes: int = PROJECT_MAX_BYTES):
        self.kv_rest_api_url = os.getenv("KV_REST_API_URL")
        self.kv_rest_api_token = os.getenv("KV_REST_API_TOKEN")
        self.key = f"project:{project_name}"
        self.path = os.path.join(data_dir, f"{project_name}.json")
        self.max_bytes = max_bytes

        if not self.kv_rest_api_url or not self.kv_rest_api_token:
            logger.warning(f"KV storage not configured - falling back to {self.path}")
            self.enabled = False
        else:
            self.enabled = True
            logger.info("KV storage enabled")

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.kv_rest_api_token}",
            "Content-Type": "application/json"
        }

    async def _kv_set(self, text: str):
        async with httpx.AsyncClient(timeout=10) as client:
            response = await client.post(
                f"{self.kv_rest_api_url}/set",
                headers=self._headers(),
                json=[self.key, text]
            )
            response.raise_for_status()

    async def _kv_get(self) -> Optional[str]:
        async with httpx.AsyncClient(timeout=10) as client:
            response = await client.post(
                f"{self.kv_rest_api_url}/get",
                headers=self._headers(),
                json=[self.key]
            )
            response.raise_for_status()
            return response.json().get("result")

    async def save_text(self, text: str):
        size = len(text.encode("utf-8"))
        if size > self.max_bytes:
            raise StorageError("Not enough storage space for this project",
                               {"bytes": size, "max_bytes": self.max_bytes})
        try:
            if self.enabled:
                await self._kv_set(text)
            else:
                write_text(self.path, text)
        except (httpx.HTTPError, OSError) as e:
            logger.error(f"Failed to store {self.key}: {e}")
            raise StorageError(f"Could not save the project: {e}")
        logger.info(f"Stored {self.key} ({size} bytes)")

    async def load_text(self) -> Optional[str]:
        try:
            if self.enabled:
                text = await self._kv_get()
            elif os.path.exists(self.path):
                with open(self.path, "r", encoding="utf-8") as f:
                    text = f.read()
            else:
                text = None
        except (httpx.HTTPError, OSError) as e:
            logger.error(f"Failed to read {self.key}: {e}")
            raise StorageError(f"Could not read the saved project: {e}")
        if not text:
            logger.info(f"No saved project under {self.key}")
            return None
        return text

    async def save_project(self, state: ProjectState) -> str:
        text = snapshot_project(state)
        await self.save_text(text)
        return text

    async def load_project(self) -> Optional[ProjectState]:
        text = await self.load_text()
        return restore_project(text) if text is not None else None

    async def export_project(self, today: Optional[date] = None) -> Optional[Tuple[str, str]]:
        """The stored snapshot, unmodified, with its download filename."""
        text = await self.load_text()
        if text is None:
            return None
        return text, export_filename(today)


async def save_current_project(store: ProjectStore, storage: KVStorage) -> bool:
    store.dispatch(a.SetSaving(is_saving=True))
    try:
        await storage.save_project(store.state)
    except StorageError as e:
        logger.error(f"Project save failed: {e}")
        store.dispatch(a.SetSaving(is_saving=False))
        store.notify(e.message, Severity.ERROR)
        raise
    store.dispatch(a.SetSaving(is_saving=False))
    store.dispatch(a.SetProjectSaved(is_project_saved=True))
    store.notify("Project saved!", Severity.SUCCESS)
    return True


async def load_saved_project(store: ProjectStore, storage: KVStorage) -> bool:
    project = await storage.load_project()
    if project is None:
        return False
    store.dispatch(a.LoadProject(project=project))
    store.notify("Project loaded.", Severity.SUCCESS)
    return True
