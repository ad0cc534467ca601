import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import NotFoundError, PersistenceError
from .models import Comic, ComicStatus, Panel, PanelHistoryEntry, check_transition, utcnow

logger = logging.getLogger(__name__)


class ComicStore(ABC):
    """Read/write contract for comic and panel records.

    Implementations only provide load/save primitives; the status state machine and
    the panel upsert rules live here so every backend enforces them the same way.
    """

    @abstractmethod
    def create_comic(self, comic: Comic) -> Comic:
        pass

    @abstractmethod
    def get_comic(self, comic_id: str) -> Comic:
        pass

    @abstractmethod
    def _save_comic(self, comic: Comic) -> None:
        pass

    @abstractmethod
    def list_panels(self, comic_id: str) -> List[Panel]:
        """Panels ordered by panel number."""

    @abstractmethod
    def _save_panel(self, panel: Panel) -> None:
        pass

    @abstractmethod
    def list_history(self, comic_id: str, panel_id: str) -> List[PanelHistoryEntry]:
        """History entries for a panel, newest version first."""

    @abstractmethod
    def add_history(self, entry: PanelHistoryEntry) -> PanelHistoryEntry:
        pass

    def _lock(self):
        return _NULL_LOCK

    def update_comic(self, comic_id: str, **changes) -> Comic:
        with self._lock():
            comic = self.get_comic(comic_id)
            updated = comic.model_copy(update={**changes, "updated_at": utcnow()})
            self._save_comic(updated)
            return updated

    def set_status(self, comic_id: str, status: ComicStatus) -> Comic:
        with self._lock():
            comic = self.get_comic(comic_id)
            check_transition(comic.status, status)
            if comic.status == status:
                return comic
            logger.info(f"[ComicStore] Comic {comic_id}: {comic.status.value} -> {status.value}")
            return self.update_comic(comic_id, status=status)

    def merge_metadata(self, comic_id: str, **values) -> Comic:
        with self._lock():
            comic = self.get_comic(comic_id)
            return self.update_comic(comic_id, metadata={**comic.metadata, **values})

    def set_character_reference(self, comic_id: str, reference: str) -> Comic:
        """Stores a non-empty reference. An existing reference is kept and reused, never replaced."""
        with self._lock():
            comic = self.get_comic(comic_id)
            if comic.character_reference or not reference or not reference.strip():
                return comic
            return self.update_comic(comic_id, character_reference=reference.strip())

    def get_panel(self, comic_id: str, panel_id: str) -> Panel:
        for panel in self.list_panels(comic_id):
            if panel.id == panel_id:
                return panel
        raise NotFoundError(f"Panel {panel_id} not found in comic {comic_id}")

    def upsert_panel(self, panel: Panel) -> Panel:
        """Creates the panel, or replaces the one already holding its panel number.

        Replacing keeps the existing id and regeneration counter, so a retried
        generation step does not leave duplicate panel numbers behind.
        """
        with self._lock():
            self.get_comic(panel.comic_id)
            for existing in self.list_panels(panel.comic_id):
                if existing.panel_number == panel.panel_number:
                    panel = panel.model_copy(update={
                        "id": existing.id,
                        "created_at": existing.created_at,
                        "regeneration_count": existing.regeneration_count,
                    })
                    break
            self._save_panel(panel)
            return panel

    def update_panel(self, comic_id: str, panel_id: str, **changes) -> Panel:
        with self._lock():
            panel = self.get_panel(comic_id, panel_id)
            changes.pop("panel_number", None)
            changes.pop("comic_id", None)
            updated = panel.model_copy(update=changes)
            self._save_panel(updated)
            return updated

    def get_history(self, comic_id: str, panel_id: str, history_id: str) -> PanelHistoryEntry:
        for entry in self.list_history(comic_id, panel_id):
            if entry.id == history_id:
                return entry
        raise NotFoundError(f"History entry {history_id} not found for panel {panel_id}")


class _NullLock:
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


_NULL_LOCK = _NullLock()


class InMemoryComicStore(ComicStore):
    def __init__(self):
        self._comics: Dict[str, Comic] = {}
        self._panels: Dict[str, Dict[str, Panel]] = {}
        self._history: Dict[str, List[PanelHistoryEntry]] = {}
        self._rlock = threading.RLock()

    def _lock(self):
        return self._rlock

    def create_comic(self, comic: Comic) -> Comic:
        with self._rlock:
            self._comics[comic.id] = comic.model_copy(deep=True)
            self._panels.setdefault(comic.id, {})
            return comic

    def get_comic(self, comic_id: str) -> Comic:
        with self._rlock:
            comic = self._comics.get(comic_id)
            if comic is None:
                raise NotFoundError(f"Comic {comic_id} not found")
            return comic.model_copy(deep=True)

    def _save_comic(self, comic: Comic) -> None:
        self._comics[comic.id] = comic.model_copy(deep=True)

    def list_panels(self, comic_id: str) -> List[Panel]:
        with self._rlock:
            panels = self._panels.get(comic_id, {}).values()
            return sorted((p.model_copy(deep=True) for p in panels), key=lambda p: p.panel_number)

    def _save_panel(self, panel: Panel) -> None:
        self._panels.setdefault(panel.comic_id, {})[panel.id] = panel.model_copy(deep=True)

    def list_history(self, comic_id: str, panel_id: str) -> List[PanelHistoryEntry]:
        with self._rlock:
            entries = [e for e in self._history.get(comic_id, []) if e.panel_id == panel_id]
            return sorted(entries, key=lambda e: e.version_number, reverse=True)

    def add_history(self, entry: PanelHistoryEntry) -> PanelHistoryEntry:
        with self._rlock:
            self._history.setdefault(entry.comic_id, []).append(entry.model_copy(deep=True))
            return entry


class S3ComicStore(ComicStore):
    """Keeps one JSON document per comic in S3: comics/<id>/comic.json.

    The document holds the comic record, its panels and their history, mirroring
    how the canon documents are stored next to project assets.
    """

    def __init__(self, bucket: str, region: Optional[str] = None, client=None, prefix: str = "comics"):
        if not bucket:
            raise ValueError("AWS_STORAGE_BUCKET_NAME is required for the S3 comic store.")
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.s3 = client or boto3.client(
            "s3",
            aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
            region_name=region,
        )
        self._rlock = threading.RLock()

    def _lock(self):
        return self._rlock

    def _key(self, comic_id: str) -> str:
        return f"{self.prefix}/{comic_id}/comic.json"

    def _load(self, comic_id: str) -> Dict:
        key = self._key(comic_id)
        try:
            response = self.s3.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise NotFoundError(f"Comic {comic_id} not found") from e
            raise PersistenceError(f"Error loading s3://{self.bucket}/{key}: {e}") from e
        except BotoCoreError as e:
            raise PersistenceError(f"Error loading s3://{self.bucket}/{key}: {e}") from e
        return json.loads(response["Body"].read().decode("utf-8"))

    def _store(self, comic_id: str, document: Dict) -> None:
        key = self._key(comic_id)
        try:
            self.s3.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=json.dumps(document, indent=2, ensure_ascii=False).encode("utf-8"),
                ContentType="application/json; charset=utf-8",
            )
        except (ClientError, BotoCoreError) as e:
            raise PersistenceError(f"Error saving s3://{self.bucket}/{key}: {e}") from e

    def create_comic(self, comic: Comic) -> Comic:
        with self._rlock:
            self._store(comic.id, {"comic": comic.model_dump(mode="json"), "panels": [], "history": []})
            return comic

    def get_comic(self, comic_id: str) -> Comic:
        return Comic.model_validate(self._load(comic_id)["comic"])

    def _save_comic(self, comic: Comic) -> None:
        document = self._load(comic.id)
        document["comic"] = comic.model_dump(mode="json")
        self._store(comic.id, document)

    def list_panels(self, comic_id: str) -> List[Panel]:
        panels = [Panel.model_validate(p) for p in self._load(comic_id).get("panels", [])]
        return sorted(panels, key=lambda p: p.panel_number)

    def _save_panel(self, panel: Panel) -> None:
        document = self._load(panel.comic_id)
        panels = [p for p in document.get("panels", []) if p.get("id") != panel.id]
        panels.append(panel.model_dump(mode="json"))
        document["panels"] = panels
        self._store(panel.comic_id, document)

    def list_history(self, comic_id: str, panel_id: str) -> List[PanelHistoryEntry]:
        entries = [
            PanelHistoryEntry.model_validate(e)
            for e in self._load(comic_id).get("history", [])
            if e.get("panel_id") == panel_id
        ]
        return sorted(entries, key=lambda e: e.version_number, reverse=True)

    def add_history(self, entry: PanelHistoryEntry) -> PanelHistoryEntry:
        with self._rlock:
            document = self._load(entry.comic_id)
            document.setdefault("history", []).append(entry.model_dump(mode="json"))
            self._store(entry.comic_id, document)
            return entry
