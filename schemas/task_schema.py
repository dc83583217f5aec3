# task_schema.py
from pydantic import AfterValidator, BaseModel, Field, ConfigDict
from typing import Annotated, Optional
from datetime import datetime, timezone

from models.models import TaskStatus


def _naive_utc(value: datetime) -> datetime:
    # the store keeps naive UTC timestamps
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


UtcDateTime = Annotated[datetime, AfterValidator(_naive_utc)]


class TaskCreate(BaseModel):
    title: str = Field(..., max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    due_date: Optional[UtcDateTime] = None
    project_id: int
    assigned_to_id: Optional[int] = None


class TaskRead(BaseModel):
    id: int
    title: str = Field(..., max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    status: TaskStatus
    due_date: Optional[datetime] = None
    project_id: int
    organization_id: int
    assigned_to_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    status: Optional[TaskStatus] = None
    due_date: Optional[UtcDateTime] = None
    assigned_to_id: Optional[int] = None
