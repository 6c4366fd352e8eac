from datetime import datetime
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


ItemType = Literal["computer", "folder", "file", "app", "trash", "terminal", "image", "video"]
Theme = Literal["dark", "light"]

BUFFER_PARENT = "buffer"


class Position(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: float
    y: float


class Size(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: float
    height: float


class TextContent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    text: str


class ImageContent(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: Literal["image"] = "image"
    data_url: str = Field(alias="dataUrl")


class Empty(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["empty"] = "empty"


Content = Annotated[Union[TextContent, ImageContent, Empty], Field(discriminator="kind")]


def content_length(content: Union[TextContent, ImageContent, Empty]) -> int:
    if isinstance(content, TextContent):
        return len(content.text)
    if isinstance(content, ImageContent):
        return len(content.data_url)
    return 0


class NewItem(BaseModel):
    """A desktop item before the store has given it an id."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    type: ItemType
    position: Position = Position(x=20, y=20)
    content: Content = Field(default_factory=Empty)
    file_type: Optional[str] = Field(default=None, alias="fileType")


class DesktopItem(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str
    type: ItemType
    position: Position
    content: Content = Field(default_factory=Empty)
    file_type: Optional[str] = Field(default=None, alias="fileType")
    parent_id: Optional[str] = Field(default=None, alias="parentId")
    created: Optional[datetime] = None


class User(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str


class Window(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, arbitrary_types_allowed=True)

    id: str
    title: str
    content: Any = None
    position: Position
    size: Size
    is_minimized: bool = Field(default=False, alias="isMinimized")
    is_maximized: bool = Field(default=False, alias="isMaximized")
    z_index: int = Field(alias="zIndex")


class PersistedState(BaseModel):
    """The slice of desktop state that survives a reload."""

    model_config = ConfigDict(populate_by_name=True)

    items: List[DesktopItem]
    buffer_items: List[DesktopItem] = Field(default_factory=list, alias="bufferItems")
    user: Optional[User] = None
    is_authenticated: bool = Field(default=False, alias="isAuthenticated")
    theme: Theme = "dark"


class DesktopState(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    items: List[DesktopItem]
    buffer_items: List[DesktopItem] = Field(default_factory=list, alias="bufferItems")
    windows: List[Window] = Field(default_factory=list)
    user: Optional[User] = None
    is_authenticated: bool = Field(default=False, alias="isAuthenticated")
    theme: Theme = "dark"

    def persisted(self) -> PersistedState:
        return PersistedState(
            items=self.items,
            buffer_items=self.buffer_items,
            user=self.user,
            is_authenticated=self.is_authenticated,
            theme=self.theme,
        )
