# project_schema.py
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from datetime import datetime


class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    # organization_id is set from the path


class ProjectRead(BaseModel):
    id: int
    name: str = Field(..., max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    organization_id: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
