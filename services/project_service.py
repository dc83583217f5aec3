# ================================================================
# services/project_service.py
# ================================================================
import logging
from typing import List, Optional

from sqlalchemy import desc
from sqlmodel import Session, select

from core.errors import ConflictError, NotFoundError
from models.models import Project, ResourceKind, User
from services.organization_service import MANAGER_ROLES, require_role
from services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)


class ProjectService:
    def __init__(self, subscriptions: SubscriptionService):
        self.subscriptions = subscriptions

    def create_project(
        self,
        session: Session,
        organization_id: int,
        user: User,
        name: str,
        description: Optional[str] = None,
    ) -> Project:
        """
        Insert the project and take one project unit from the current cycle in
        the same transaction; a denied reservation rolls both back.
        """
        require_role(session, organization_id, user, MANAGER_ROLES)
        subscription = self.subscriptions.assert_active_subscription(session, organization_id)

        name = name.strip()
        duplicate = session.exec(
            select(Project).where(Project.organization_id == organization_id, Project.name == name)
        ).first()
        if duplicate:
            raise ConflictError("A project with this name already exists in your organization")

        project = Project(name=name, description=description, organization_id=organization_id)
        try:
            session.add(project)
            session.flush()
            self.subscriptions.usage.reserve(session, subscription.id, subscription.cycle_id, ResourceKind.PROJECTS)
            session.commit()
        except Exception:
            session.rollback()
            raise

        logger.info("📁 Project %s created in org %s", project.id, organization_id)
        return project

    def list_projects(self, session: Session, organization_id: int, user: User) -> List[Project]:
        require_role(session, organization_id, user)
        return session.exec(
            select(Project)
            .where(Project.organization_id == organization_id)
            .order_by(desc(Project.created_at))
        ).all()

    def get_project(self, session: Session, organization_id: int, project_id: int) -> Project:
        project = session.get(Project, project_id)
        if project is None or project.organization_id != organization_id:
            raise NotFoundError("Project not found")
        return project
