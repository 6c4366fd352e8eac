from __future__ import annotations

import random

import pytest

from viros.desktop import (
    BufferView,
    DesktopController,
    DocumentView,
    FolderView,
    SystemView,
)
from viros.models import Empty, ImageContent, NewItem, Position, TextContent
from viros.store import DesktopStore
from viros.terminal import TERMINAL_TITLE, TerminalSession


@pytest.fixture
def desktop() -> DesktopController:
    return DesktopController(DesktopStore(), viewport=(1000, 500), rng=random.Random(3))


def test_icons_show_top_level_items_only(desktop: DesktopController) -> None:
    desktop.drop_file("inner.txt", "text/plain", b"hi", parent_id="folder-1")

    icons = desktop.icons()
    assert [i.id for i in icons] == ["computer-1", "folder-1", "terminal-1", "trash-1"]
    assert [i.glyph for i in icons[:2]] == ["monitor", "folder"]


def test_unplaced_items_are_scattered_once(desktop: DesktopController) -> None:
    item_id = desktop.store.add_item(NewItem(name="a", type="file", position=Position(x=20, y=20)))
    item = desktop.store.get_item(item_id)

    first = desktop.display_position(item)
    assert desktop.display_position(item) == first
    assert 15 <= first.x <= 119 and 15 <= first.y <= 97
    assert desktop.store.get_item(item_id).position == Position(x=20, y=20)


def test_drag_converts_pixels_to_percent_and_clamps(desktop: DesktopController) -> None:
    desktop.drag_item("computer-1", 100, -500)

    moved = desktop.store.get_item("computer-1").position
    assert (moved.x, moved.y) == (25, 0)


def test_new_items_get_unique_names(desktop: DesktopController) -> None:
    first = desktop.new_folder()
    second = desktop.new_folder()
    doc = desktop.new_text_document()

    names = [desktop.store.get_item(i).name for i in (first, second, doc)]
    assert names == ["New Folder", "New Folder (2)", "New Text Document.txt"]
    assert desktop.store.get_item(doc).content == TextContent(text="")


def test_dropped_files_become_typed_items(desktop: DesktopController) -> None:
    image = desktop.store.get_item(desktop.drop_file("a.png", "image/png", b"\x89PNG"))
    video = desktop.store.get_item(desktop.drop_file("b.mp4", "video/mp4", b"...."))
    text = desktop.store.get_item(desktop.drop_file("c.json", "application/json", b'{"a": 1}'))
    other = desktop.store.get_item(desktop.drop_file("d.bin", "application/octet-stream", b"\x00"))

    assert image.type == "image"
    assert image.content == ImageContent(data_url="data:image/png;base64,iVBORw==")
    assert (video.type, video.content) == ("video", Empty())
    assert text.content == TextContent(text='{"a": 1}')
    assert (other.type, other.file_type, other.content) == ("file", "application/octet-stream", Empty())


def test_open_item_builds_the_matching_view(desktop: DesktopController) -> None:
    store = desktop.store
    child = desktop.drop_file("inner.txt", "text/plain", b"hi", parent_id="folder-1")
    store.move_to_buffer(desktop.new_folder())

    folder = store.get_window(desktop.open_item("folder-1")).content
    system = store.get_window(desktop.open_item("computer-1")).content
    buffer = store.get_window(desktop.open_item("trash-1")).content
    terminal = store.get_window(desktop.open_item("terminal-1"))

    assert isinstance(folder, FolderView) and [e.id for e in folder.entries] == [child]
    assert folder.summary == "1 items"
    assert isinstance(system, SystemView) and system.summary == "2 drives"
    assert isinstance(buffer, BufferView) and [e.name for e in buffer.entries] == ["New Folder"]
    assert terminal.title == TERMINAL_TITLE
    assert isinstance(terminal.content, TerminalSession)
    assert terminal.content.username == "guest"

    with pytest.raises(KeyError):
        desktop.open_item("missing")


def test_documents_without_content_show_a_placeholder(desktop: DesktopController) -> None:
    blank = desktop.drop_file("d.bin", "application/octet-stream", b"\x00")
    view = desktop.store.get_window(desktop.open_item(blank)).content

    assert isinstance(view, DocumentView)
    assert view.placeholder == "No content available"


def test_maximized_windows_ignore_drag_and_resize(desktop: DesktopController) -> None:
    store = desktop.store
    window_id = store.open_window("Notes")

    desktop.resize_window(window_id, 100, 100)
    assert (store.get_window(window_id).size.width, store.get_window(window_id).size.height) == (300, 200)

    store.maximize_window(window_id)
    desktop.drag_window(window_id, 400, 400)
    desktop.resize_window(window_id, 900, 900)
    window = store.get_window(window_id)
    assert (window.position.x, window.position.y) == (50, 50)
    assert window.size.width == 300


def test_taskbar_tracks_focus(desktop: DesktopController) -> None:
    store = desktop.store
    first = store.open_window("first")
    second = store.open_window("second")

    assert [(e.title, e.active) for e in desktop.taskbar()] == [("first", False), ("second", True)]

    store.minimize_window(first)
    desktop.click_taskbar(first)
    entries = {e.window_id: e for e in desktop.taskbar()}
    assert entries[first].active and not entries[first].minimized
    assert not entries[second].active


def test_dragging_or_resizing_brings_window_to_front(desktop: DesktopController) -> None:
    store = desktop.store
    back = store.open_window("back")
    front = store.open_window("front")

    desktop.drag_window(back, 100, 100)
    assert store.focused_window().id == back

    desktop.resize_window(front, 700, 500)
    assert store.focused_window().id == front
    assert [e.title for e in desktop.taskbar() if e.active] == ["front"]


def test_taskbar_is_sorted_by_title(desktop: DesktopController) -> None:
    for title in ("Terminal", "Documents", "System"):
        desktop.store.open_window(title)

    assert [e.title for e in desktop.taskbar()] == ["Documents", "System", "Terminal"]


def test_folder_view_follows_later_changes(desktop: DesktopController) -> None:
    view = desktop.store.get_window(desktop.open_item("folder-1")).content
    assert view.entries == []

    added = desktop.drop_file("late.txt", "text/plain", b"x", parent_id="folder-1")
    assert [e.id for e in view.entries] == [added]

    desktop.store.remove_item(added)
    assert view.summary == "0 items"
