import time
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def now_ms() -> int:
    return int(time.time() * 1000)


class Task(BaseModel):
    """A todo item stored at users/{uid}/tasks/{id}.

    Firestore stores camelCase field names. The id is the document id
    and is never written as a field.
    """

    model_config = ConfigDict(frozen=True)

    id: str = ""
    user_id: str = Field("", validation_alias=AliasChoices("userId", "user_id"))
    title: str = ""
    description: str = ""
    is_completed: bool = Field(False, validation_alias=AliasChoices("isCompleted", "is_completed"))
    timestamp: int = Field(default_factory=now_ms)

    @classmethod
    def from_document(cls, doc_id: str, data: dict | None) -> "Task":
        data = dict(data or {})
        data.pop("id", None)
        # Documents written without a timestamp sort as the oldest entries.
        data.setdefault("timestamp", 0)
        return cls.model_validate({**data, "id": doc_id})

    def to_document(self) -> dict:
        return {
            "userId": self.user_id,
            "title": self.title,
            "description": self.description,
            "isCompleted": self.is_completed,
            "timestamp": self.timestamp,
        }


class TaskStatus(BaseModel):
    """Transient indicator for the last task operation."""

    model_config = ConfigDict(frozen=True)

    state: Literal["idle", "loading", "success", "error"]
    message: str | None = None

    @classmethod
    def idle(cls) -> "TaskStatus":
        return cls(state="idle")

    @classmethod
    def loading(cls) -> "TaskStatus":
        return cls(state="loading")

    @classmethod
    def success(cls) -> "TaskStatus":
        return cls(state="success")

    @classmethod
    def error(cls, message: str) -> "TaskStatus":
        return cls(state="error", message=message)

    @property
    def is_error(self) -> bool:
        return self.state == "error"


class TaskListResponse(BaseModel):
    tasks: list[Task]
    status: TaskStatus
    result_count: int


class CreateTaskRequest(BaseModel):
    title: str
    description: str = ""

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("title must not be blank")
        return v


class UpdateTaskRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    is_completed: bool | None = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            raise ValueError("title must not be blank")
        return v
