import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


STATUSES = ["unsolved", "solved"]
PROGRESS_STATES = ["not_started", "in_progress", "solved"]
PRIORITIES = ["low", "medium", "high", "critical"]
SENTIMENTS = ["positive", "neutral", "negative"]

ALLOWED_UPLOAD_TYPES = {
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
    "text/csv",
    "application/json",
    "application/zip",
    "application/x-zip-compressed",
}

HEX_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


def one_of(value: str, choices: list, field: str) -> str:
    if value not in choices:
        raise ValueError(f"{field} must be one of {', '.join(choices)}")
    return value


def required_text(value: str, field: str, max_length: int) -> str:
    text = value.strip()
    if not text:
        raise ValueError(f"{field} is required")
    if len(text) > max_length:
        raise ValueError(f"{field} too long")
    return text


class TicketCreate(BaseModel):
    title: str
    description: str
    category: str
    status: str = "unsolved"
    progress: str = "not_started"
    priority: str = "medium"
    sentiment: str = "neutral"

    @field_validator("title")
    @classmethod
    def validate_title(cls, value: str) -> str:
        return required_text(value, "title", 200)

    @field_validator("description")
    @classmethod
    def validate_description(cls, value: str) -> str:
        return required_text(value, "description", 10000)

    @field_validator("category")
    @classmethod
    def validate_category(cls, value: str) -> str:
        return required_text(value, "category", 50)

    @field_validator("status")
    @classmethod
    def validate_status(cls, value: str) -> str:
        return one_of(value, STATUSES, "status")

    @field_validator("progress")
    @classmethod
    def validate_progress(cls, value: str) -> str:
        return one_of(value, PROGRESS_STATES, "progress")

    @field_validator("priority")
    @classmethod
    def validate_priority(cls, value: str) -> str:
        return one_of(value, PRIORITIES, "priority")

    @field_validator("sentiment")
    @classmethod
    def validate_sentiment(cls, value: str) -> str:
        return one_of(value, SENTIMENTS, "sentiment")


class StatusUpdate(BaseModel):
    status: str

    @field_validator("status")
    @classmethod
    def validate_status(cls, value: str) -> str:
        return one_of(value, STATUSES, "status")


class ProgressUpdate(BaseModel):
    progress: str

    @field_validator("progress")
    @classmethod
    def validate_progress(cls, value: str) -> str:
        return one_of(value, PROGRESS_STATES, "progress")


class PriorityUpdate(BaseModel):
    priority: str

    @field_validator("priority")
    @classmethod
    def validate_priority(cls, value: str) -> str:
        return one_of(value, PRIORITIES, "priority")


class TagCreate(BaseModel):
    name: str
    color: str

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        return required_text(value, "name", 50)

    @field_validator("color")
    @classmethod
    def validate_color(cls, value: str) -> str:
        text = value.strip()
        if not HEX_COLOR.match(text):
            raise ValueError("color must be a hex value like #1e90ff")
        return text


class TicketTagCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # bool is a subclass of int; strict keeps `true` from becoming tag 1
    tag_id: int = Field(alias="tagId", strict=True)


class UserCredentials(BaseModel):
    username: str
    password: str

    @field_validator("username")
    @classmethod
    def validate_username(cls, value: str) -> str:
        return required_text(value, "username", 50)

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        if len(value) < 6:
            raise ValueError("Password must be at least 6 characters")
        if len(value) > 200:
            raise ValueError("password too long")
        return value


class PreferencesUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    dark_mode: Optional[bool] = Field(default=None, alias="darkMode")
    dashboard_layout: Optional[str] = Field(default=None, alias="dashboardLayout")

    def changes(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
