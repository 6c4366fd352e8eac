import base64
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from viros.models import DesktopItem, Empty, ImageContent, NewItem, Position, TextContent
from viros.store import DesktopStore
from viros.terminal import TERMINAL_TITLE, TerminalSession


MIN_WINDOW_WIDTH = 300
MIN_WINDOW_HEIGHT = 200
# positions that mean "never placed"; such icons get scattered
INITIAL_POSITIONS = {(20, 20), (20, 120)}
TEXT_MIME_TYPES = {"application/json", "application/xml", "application/javascript"}

ICON_GLYPHS = {
    "folder": "folder",
    "computer": "monitor",
    "file": "file-text",
    "trash": "trash",
    "app": "file",
}


@dataclass
class Icon:
    id: str
    name: str
    type: str
    x: float
    y: float
    glyph: str


@dataclass
class FolderView:
    folder_id: str
    name: str
    store: DesktopStore

    @property
    def entries(self) -> List[DesktopItem]:
        return self.store.get_items_by_parent_id(self.folder_id)

    @property
    def summary(self) -> str:
        return f"{len(self.entries)} items"


@dataclass
class Drive:
    name: str
    capacity: str


@dataclass
class SystemView:
    drives: List[Drive] = field(
        default_factory=lambda: [Drive("System Drive", "80 GB"), Drive("Storage", "120 GB")]
    )

    @property
    def summary(self) -> str:
        return f"{len(self.drives)} drives"


@dataclass
class BufferView:
    entries: List[DesktopItem] = field(default_factory=list)


@dataclass
class DocumentView:
    item_id: str
    name: str
    content: object

    @property
    def placeholder(self) -> Optional[str]:
        return "No content available" if isinstance(self.content, Empty) else None


@dataclass
class TaskbarEntry:
    window_id: str
    title: str
    active: bool
    minimized: bool


class DesktopController:
    """Presentation logic over a ``DesktopStore``: icons, windows and taskbar."""

    def __init__(
        self,
        store: DesktopStore,
        viewport: Tuple[int, int] = (1920, 1080),
        rng: Optional[random.Random] = None,
    ) -> None:
        self.store = store
        self.viewport = viewport
        self.rng = rng or random.Random()
        self._scattered: Dict[str, Position] = {}

    # Icons

    def _scatter(self) -> Position:
        quadrants = [
            Position(x=self.rng.randint(15, 79), y=self.rng.randint(15, 64)),
            Position(x=self.rng.randint(55, 119), y=self.rng.randint(15, 64)),
            Position(x=self.rng.randint(15, 79), y=self.rng.randint(48, 97)),
            Position(x=self.rng.randint(55, 119), y=self.rng.randint(48, 97)),
        ]
        return self.rng.choice(quadrants)

    def display_position(self, item: DesktopItem) -> Position:
        if (item.position.x, item.position.y) not in INITIAL_POSITIONS:
            return item.position
        if item.id not in self._scattered:
            self._scattered[item.id] = self._scatter()
        return self._scattered[item.id]

    def icons(self) -> List[Icon]:
        icons = []
        for item in self.store.get_items_by_parent_id(None):
            position = self.display_position(item)
            icons.append(
                Icon(
                    id=item.id,
                    name=item.name,
                    type=item.type,
                    x=position.x,
                    y=position.y,
                    glyph=ICON_GLYPHS.get(item.type, "file"),
                )
            )
        return icons

    def drag_item(self, item_id: str, dx: float, dy: float) -> None:
        item = self.store.get_item(item_id)
        if item is None:
            return
        width, height = self.viewport
        start = self.display_position(item)
        x = min(100.0, max(0.0, start.x + dx * 100 / width))
        y = min(100.0, max(0.0, start.y + dy * 100 / height))
        self._scattered.pop(item_id, None)
        self.store.update_item_position(item_id, round(x, 2), round(y, 2))

    # Creating items

    def _unique_name(self, base: str, suffix: str = "", parent_id: Optional[str] = None) -> str:
        taken = {item.name for item in self.store.get_items_by_parent_id(parent_id)}
        candidate = f"{base}{suffix}"
        counter = 2
        while candidate in taken:
            candidate = f"{base} ({counter}){suffix}"
            counter += 1
        return candidate

    def new_folder(self) -> str:
        return self.store.add_item(NewItem(name=self._unique_name("New Folder"), type="folder"))

    def new_text_document(self) -> str:
        return self.store.add_item(
            NewItem(
                name=self._unique_name("New Text Document", ".txt"),
                type="file",
                content=TextContent(text=""),
                file_type="text/plain",
            )
        )

    def drop_file(self, name: str, mime_type: str, data: bytes, parent_id: Optional[str] = None) -> str:
        """Turn a file dropped on the desktop (or into a folder) into an item."""
        mime = (mime_type or "application/octet-stream").lower()
        if mime.startswith("image/"):
            encoded = base64.b64encode(data).decode("ascii")
            item = NewItem(
                name=name,
                type="image",
                content=ImageContent(data_url=f"data:{mime};base64,{encoded}"),
                file_type=mime,
            )
        elif mime.startswith("video/"):
            item = NewItem(name=name, type="video", file_type=mime)
        elif mime.startswith("text/") or mime in TEXT_MIME_TYPES:
            item = NewItem(
                name=name,
                type="file",
                content=TextContent(text=data.decode("utf-8", errors="replace")),
                file_type=mime,
            )
        else:
            item = NewItem(name=name, type="file", file_type=mime)

        if parent_id is not None:
            return self.store.add_item_to_folder(item, parent_id)
        return self.store.add_item(item)

    # Windows

    def open_item(self, item_id: str) -> str:
        item = self.store.get_item(item_id)
        if item is None:
            raise KeyError(item_id)

        if item.type == "folder":
            content = FolderView(folder_id=item.id, name=item.name, store=self.store)
        elif item.type == "computer":
            content = SystemView()
        elif item.type == "trash":
            content = BufferView(entries=list(self.store.get_buffer_items()))
        elif item.type == "terminal":
            username = self.store.user.username if self.store.user else "guest"
            content = TerminalSession(store=self.store, username=username, rng=self.rng)
            return self.store.open_window(TERMINAL_TITLE, content)
        else:
            content = DocumentView(item_id=item.id, name=item.name, content=item.content)
        return self.store.open_window(item.name, content)

    def drag_window(self, window_id: str, x: float, y: float) -> None:
        window = self.store.get_window(window_id)
        if window is None or window.is_maximized:
            return
        self.store.focus_window(window_id)
        self.store.update_window_position(window_id, x, y)

    def resize_window(self, window_id: str, width: float, height: float) -> None:
        window = self.store.get_window(window_id)
        if window is None or window.is_maximized:
            return
        self.store.focus_window(window_id)
        self.store.update_window_size(window_id, max(MIN_WINDOW_WIDTH, width), max(MIN_WINDOW_HEIGHT, height))

    # Taskbar

    def taskbar(self) -> List[TaskbarEntry]:
        focused = self.store.focused_window()
        return [
            TaskbarEntry(
                window_id=window.id,
                title=window.title,
                active=focused is not None and window.id == focused.id,
                minimized=window.is_minimized,
            )
            for window in sorted(self.store.windows, key=lambda window: window.title.casefold())
        ]

    def click_taskbar(self, window_id: str) -> None:
        self.store.focus_window(window_id)
