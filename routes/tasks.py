# routes/tasks.py
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from core.container import Services, get_services
from core.database import get_session
from core.security import get_current_user
from models.models import User
from schemas.task_schema import TaskCreate, TaskRead, TaskUpdate

router = APIRouter(prefix="/organizations/{organization_id}/tasks", tags=["Tasks"])


# ==================================================================
#  ✅ Create Task (counts against the plan's task ceiling)
# ==================================================================
@router.post("/", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
def create_task(
    organization_id: int,
    data: TaskCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.tasks.create_task(
        session,
        organization_id,
        current_user,
        project_id=data.project_id,
        title=data.title,
        description=data.description,
        due_date=data.due_date,
        assigned_to_id=data.assigned_to_id,
    )


# ==================================================================
#  ✅ List Tasks (optionally of one project)
# ==================================================================
@router.get("/", response_model=List[TaskRead])
def get_tasks(
    organization_id: int,
    project_id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    return services.tasks.list_tasks(session, organization_id, current_user, project_id)


# ==================================================================
#  ✅ Update Task (due date / assignee / status drive the reminder)
# ==================================================================
@router.patch("/{task_id}", response_model=TaskRead)
def update_task(
    organization_id: int,
    task_id: int,
    data: TaskUpdate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    changes = data.model_dump(exclude_unset=True)
    return services.tasks.update_task(session, organization_id, current_user, task_id, changes)
