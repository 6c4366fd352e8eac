"""Desktop state store for the VirOS simulation.

``DesktopStore`` owns every piece of desktop state: items, the buffer (recycle
bin), open windows, the theme and the logged-in user. Callers change it only
through its methods; each method performs one state transition, replaces the
affected collections with new lists and then notifies subscribers with the new
``DesktopState`` snapshot.

Items, buffer, user, authentication flag and theme are written to a
``LocalStorage`` under ``STORAGE_KEY`` after every change to them. Those writes
go through a guarded writer: if the medium rejects the write (quota or I/O) the
user is alerted and the in-memory state is left as it was. Windows are never
persisted.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from viros.models import (
    BUFFER_PARENT,
    DesktopItem,
    DesktopState,
    Empty,
    ImageContent,
    NewItem,
    PersistedState,
    Position,
    Size,
    TextContent,
    User,
    Window,
    content_length,
)
from viros.persistence import LocalStorage, QuotaExceededError, StorageError


logger = logging.getLogger("viros.store")

STORAGE_KEY = "os-storage"
STORAGE_VERSION = 0
MAX_STORAGE_SIZE = int(4.5 * 1024 * 1024)
ALMOST_FULL_RATIO = 0.8
FULL_RATIO = 0.95
MAX_CONTENT_CHARS = 500_000
MAX_WINDOWS = 10
DEFAULT_WINDOW_SIZE = (600, 400)
WINDOW_ORIGIN = Position(x=50, y=50)
FOLDER_CHILD_POSITION = Position(x=20, y=20)
DEFAULT_CREDENTIALS = {"user": "password"}

STORAGE_FULL_MESSAGE = "Storage is almost full. Try emptying the Buffer or removing some files."
QUOTA_EXCEEDED_MESSAGE = "Storage quota exceeded. Try emptying the Buffer or removing some files."
STORAGE_ERROR_MESSAGE = "An error occurred while saving data. Try emptying the Buffer or removing some files."
PURGE_PROMPT = "Storage is getting full. This may cause issues. Would you like to empty the Buffer first?"
CONTENT_TOO_LARGE_MESSAGE = "Content too large. Please try with a smaller file."

ContentInput = Union[str, TextContent, ImageContent, Empty]
Listener = Callable[[DesktopState], None]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def default_items(created: datetime) -> List[DesktopItem]:
    seeds = [
        ("computer-1", "System", "computer", 15),
        ("folder-1", "Documents", "folder", 35),
        ("terminal-1", "Terminal", "terminal", 55),
        ("trash-1", "Buffer", "trash", 75),
    ]
    return [
        DesktopItem(id=item_id, name=name, type=item_type, position=Position(x=15, y=y), created=created)
        for item_id, name, item_type, y in seeds
    ]


def as_content(content: ContentInput) -> Union[TextContent, ImageContent, Empty]:
    if isinstance(content, str):
        return TextContent(text=content)
    return content


def log_alert(message: str) -> None:
    logger.warning("%s", message)


def decline(message: str) -> bool:
    return False


class DesktopStore:
    def __init__(
        self,
        storage: Optional[LocalStorage] = None,
        credentials: Optional[Dict[str, str]] = None,
        alert: Callable[[str], None] = log_alert,
        confirm: Callable[[str], bool] = decline,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
        max_storage_size: int = MAX_STORAGE_SIZE,
    ) -> None:
        self.storage = storage if storage is not None else LocalStorage()
        self.credentials = dict(credentials if credentials is not None else DEFAULT_CREDENTIALS)
        self.alert = alert
        self.confirm = confirm
        self.clock = clock
        self.id_factory = id_factory
        self.max_storage_size = max_storage_size
        self._listeners: List[Listener] = []
        self._state = self._hydrate()

    # State access

    @property
    def state(self) -> DesktopState:
        return self._state

    @property
    def items(self) -> List[DesktopItem]:
        return self._state.items

    @property
    def buffer_items(self) -> List[DesktopItem]:
        return self._state.buffer_items

    @property
    def windows(self) -> List[Window]:
        return self._state.windows

    @property
    def user(self) -> Optional[User]:
        return self._state.user

    @property
    def is_authenticated(self) -> bool:
        return self._state.is_authenticated

    @property
    def theme(self) -> str:
        return self._state.theme

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def get_item(self, item_id: str) -> Optional[DesktopItem]:
        for item in self._state.items:
            if item.id == item_id:
                return item
        return None

    def get_window(self, window_id: str) -> Optional[Window]:
        for window in self._state.windows:
            if window.id == window_id:
                return window
        return None

    # Persistence

    def _hydrate(self) -> DesktopState:
        fresh = DesktopState(items=default_items(self.clock()))
        try:
            raw = self.storage.get_item(STORAGE_KEY)
        except StorageError:
            logger.warning("could not read persisted desktop state", exc_info=True)
            return fresh
        if raw is None:
            return fresh

        try:
            payload = json.loads(raw)
            persisted = PersistedState.model_validate(payload["state"])
        except (ValueError, KeyError, TypeError, ValidationError):
            logger.warning("discarding unreadable desktop state under '%s'", STORAGE_KEY, exc_info=True)
            return fresh

        return DesktopState(
            items=persisted.items,
            buffer_items=persisted.buffer_items,
            user=persisted.user,
            is_authenticated=persisted.is_authenticated,
            theme=persisted.theme,
        )

    def _serialize(self, state: DesktopState) -> str:
        persisted = state.persisted().model_dump(mode="json", by_alias=True)
        return json.dumps({"state": persisted, "version": STORAGE_VERSION})

    def storage_size(self) -> int:
        return self.storage.usage_bytes()

    def is_storage_almost_full(self) -> bool:
        return self.storage_size() > self.max_storage_size * ALMOST_FULL_RATIO

    def is_storage_full(self) -> bool:
        return self.storage_size() > self.max_storage_size * FULL_RATIO

    def _commit(self, persist: bool = True, **changes: Any) -> bool:
        candidate = self._state.model_copy(update=changes)
        if persist:
            try:
                self.storage.set_item(STORAGE_KEY, self._serialize(candidate))
            except QuotaExceededError:
                logger.warning("desktop state rejected by storage quota")
                self.alert(QUOTA_EXCEEDED_MESSAGE)
                return False
            except StorageError:
                logger.exception("failed to persist desktop state")
                self.alert(STORAGE_ERROR_MESSAGE)
                return False

        self._state = candidate
        for listener in list(self._listeners):
            listener(candidate)
        return True

    def _guarded_commit(self, **changes: Any) -> bool:
        if self.is_storage_full():
            self.alert(STORAGE_FULL_MESSAGE)
            return False
        return self._commit(**changes)

    def _offer_buffer_purge(self) -> None:
        if self.is_storage_almost_full() and self.confirm(PURGE_PROMPT):
            self._commit(buffer_items=[])

    def reset_storage(self) -> None:
        """Forget everything persisted and start over from the default desktop."""
        try:
            self.storage.remove_item(STORAGE_KEY)
        except StorageError:
            logger.exception("failed to clear persisted desktop state")
            self.alert(STORAGE_ERROR_MESSAGE)
            return
        self._state = DesktopState(items=default_items(self.clock()))
        for listener in list(self._listeners):
            listener(self._state)

    # Session and theme

    def login(self, username: str, password: str) -> bool:
        expected = self.credentials.get(username)
        if expected is None or expected != password:
            return False
        return self._commit(user=User(username=username), is_authenticated=True)

    def logout(self) -> None:
        self._commit(user=None, is_authenticated=False)

    def toggle_theme(self) -> None:
        self._commit(theme="light" if self._state.theme == "dark" else "dark")

    # Desktop items

    def add_item(self, item: NewItem) -> str:
        """Place a new item on the desktop and return its id, or ``""`` if refused."""
        return self._insert(item, parent_id=None, position=item.position)

    def add_item_to_folder(self, item: NewItem, parent_id: str) -> str:
        parent = self.get_item(parent_id)
        if parent is None:
            raise KeyError(parent_id)
        if parent.type != "folder" or parent.parent_id is not None:
            raise ValueError(f"{parent_id} is not a top-level folder")
        return self._insert(item, parent_id=parent_id, position=FOLDER_CHILD_POSITION)

    def _insert(self, item: NewItem, parent_id: Optional[str], position: Position) -> str:
        if content_length(item.content) > MAX_CONTENT_CHARS:
            self.alert(CONTENT_TOO_LARGE_MESSAGE)
            return ""

        self._offer_buffer_purge()

        new_item = DesktopItem(
            id=self.id_factory(),
            name=item.name,
            type=item.type,
            position=position,
            content=item.content,
            file_type=item.file_type,
            parent_id=parent_id,
            created=self.clock(),
        )
        if not self._guarded_commit(items=[*self._state.items, new_item]):
            return ""
        return new_item.id

    def get_items_by_parent_id(self, parent_id: Optional[str]) -> List[DesktopItem]:
        return [item for item in self._state.items if item.parent_id == parent_id]

    def remove_item(self, item_id: str) -> None:
        # one level only: grandchildren keep their (now dangling) parent id
        remaining = [item for item in self._state.items if item.id != item_id and item.parent_id != item_id]
        if len(remaining) != len(self._state.items):
            self._commit(items=remaining)

    def _replace_item(self, item_id: str, guarded: bool = False, **changes: Any) -> bool:
        found = False
        updated: List[DesktopItem] = []
        for item in self._state.items:
            if item.id == item_id:
                found = True
                item = item.model_copy(update=changes)
            updated.append(item)
        if not found:
            return False
        if guarded:
            return self._guarded_commit(items=updated)
        return self._commit(items=updated)

    def update_item_position(self, item_id: str, x: float, y: float) -> None:
        self._replace_item(item_id, position=Position(x=x, y=y))

    def update_item_name(self, item_id: str, name: str) -> None:
        self._replace_item(item_id, name=name)

    def update_item_content(self, item_id: str, content: ContentInput) -> bool:
        value = as_content(content)
        if content_length(value) > MAX_CONTENT_CHARS:
            self.alert(CONTENT_TOO_LARGE_MESSAGE)
            return False
        return self._replace_item(item_id, guarded=True, content=value)

    # Buffer

    def move_to_buffer(self, item_id: str) -> None:
        item = self.get_item(item_id)
        if item is None:
            return
        self._commit(
            items=[other for other in self._state.items if other.id != item_id],
            buffer_items=[*self._state.buffer_items, item.model_copy(update={"parent_id": BUFFER_PARENT})],
        )

    def restore_from_buffer(self, item_id: str) -> None:
        item = next((entry for entry in self._state.buffer_items if entry.id == item_id), None)
        if item is None:
            return
        self._commit(
            items=[*self._state.items, item.model_copy(update={"parent_id": None})],
            buffer_items=[entry for entry in self._state.buffer_items if entry.id != item_id],
        )

    def empty_buffer(self) -> None:
        self._commit(buffer_items=[])

    def get_buffer_items(self) -> List[DesktopItem]:
        return self._state.buffer_items

    # Windows

    def _highest_z_index(self) -> int:
        return max((window.z_index for window in self._state.windows), default=0)

    def open_window(
        self,
        title: str,
        content: Any = None,
        width: float = DEFAULT_WINDOW_SIZE[0],
        height: float = DEFAULT_WINDOW_SIZE[1],
    ) -> str:
        windows = list(self._state.windows)
        highest = self._highest_z_index()
        if len(windows) >= MAX_WINDOWS:
            oldest = min(windows, key=lambda window: window.z_index)
            logger.info("closing window '%s' to stay under %d open windows", oldest.title, MAX_WINDOWS)
            windows = [window for window in windows if window.id != oldest.id]

        window = Window(
            id=self.id_factory(),
            title=title,
            content=content,
            position=WINDOW_ORIGIN,
            size=Size(width=width, height=height),
            z_index=highest + 1,
        )
        self._commit(persist=False, windows=[*windows, window])
        return window.id

    def _replace_window(self, window_id: str, **changes: Any) -> None:
        if self.get_window(window_id) is None:
            return
        self._commit(
            persist=False,
            windows=[
                window.model_copy(update=changes) if window.id == window_id else window
                for window in self._state.windows
            ],
        )

    def close_window(self, window_id: str) -> None:
        remaining = [window for window in self._state.windows if window.id != window_id]
        if len(remaining) != len(self._state.windows):
            self._commit(persist=False, windows=remaining)

    def focus_window(self, window_id: str) -> None:
        self._replace_window(window_id, z_index=self._highest_z_index() + 1, is_minimized=False)

    def minimize_window(self, window_id: str) -> None:
        self._replace_window(window_id, is_minimized=True)

    def maximize_window(self, window_id: str) -> None:
        self._replace_window(window_id, is_maximized=True, is_minimized=False)

    def restore_window(self, window_id: str) -> None:
        self._replace_window(window_id, is_maximized=False, is_minimized=False)

    def update_window_position(self, window_id: str, x: float, y: float) -> None:
        self._replace_window(window_id, position=Position(x=x, y=y))

    def update_window_size(self, window_id: str, width: float, height: float) -> None:
        self._replace_window(window_id, size=Size(width=width, height=height))

    def focused_window(self) -> Optional[Window]:
        visible = [window for window in self._state.windows if not window.is_minimized]
        if not visible:
            return None
        return max(visible, key=lambda window: window.z_index)
