# routes/projects.py
from typing import List

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from core.container import Services, get_services
from core.database import get_session
from core.security import get_current_user
from models.models import User
from schemas.project_schema import ProjectCreate, ProjectRead

router = APIRouter(prefix="/organizations/{organization_id}/projects", tags=["Projects"])


# ==================================================================
#  ✅ Create New Project (counts against the plan's project ceiling)
# ==================================================================
@router.post("/", response_model=ProjectRead, status_code=status.HTTP_201_CREATED)
def create_project(
    organization_id: int,
    data: ProjectCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return services.projects.create_project(session, organization_id, current_user, data.name, data.description)


# ==================================================================
#  ✅ Get All Projects of the organization
# ==================================================================
@router.get("/", response_model=List[ProjectRead])
def get_projects(
    organization_id: int,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    return services.projects.list_projects(session, organization_id, current_user)
