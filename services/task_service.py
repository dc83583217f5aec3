# ================================================================
# services/task_service.py — tasks + due-date reminders
# ================================================================
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlmodel import Session, select

from core.errors import NotFoundError, ValidationError
from models.models import Organization, ResourceKind, Task, TaskStatus, User
from services import email_templates
from services.email_service import EmailService
from services.organization_service import get_membership, require_role
from services.project_service import ProjectService
from services.reminder_service import ReminderOrchestrator
from services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("title", "description", "status", "due_date", "assigned_to_id")


class TaskService:
    def __init__(
        self,
        subscriptions: SubscriptionService,
        projects: ProjectService,
        reminders: ReminderOrchestrator,
        email: EmailService,
    ):
        self.subscriptions = subscriptions
        self.projects = projects
        self.reminders = reminders
        self.email = email

    def _validate_assignee(self, session: Session, organization_id: int, assigned_to_id: Optional[int]) -> None:
        if assigned_to_id is not None and get_membership(session, organization_id, assigned_to_id) is None:
            raise ValidationError("Assignee must be a member of the organization")

    def _validate_due_date(self, due_date: Optional[datetime]) -> None:
        if due_date is not None and due_date <= datetime.utcnow():
            raise ValidationError("Due date must be in the future")

    # ============================================================
    # ✅ Create
    # ============================================================
    def create_task(
        self,
        session: Session,
        organization_id: int,
        user: User,
        project_id: int,
        title: str,
        description: Optional[str] = None,
        due_date: Optional[datetime] = None,
        assigned_to_id: Optional[int] = None,
    ) -> Task:
        require_role(session, organization_id, user)
        subscription = self.subscriptions.assert_active_subscription(session, organization_id)
        project = self.projects.get_project(session, organization_id, project_id)
        self._validate_due_date(due_date)
        self._validate_assignee(session, organization_id, assigned_to_id)

        task = Task(
            title=title,
            description=description,
            due_date=due_date,
            project_id=project.id,
            organization_id=organization_id,
            assigned_to_id=assigned_to_id,
        )
        try:
            session.add(task)
            session.flush()
            self.subscriptions.usage.reserve(session, subscription.id, subscription.cycle_id, ResourceKind.TASKS)
            self.reminders.reschedule_task_reminder(task)
            session.add(task)
            session.commit()
        except Exception:
            session.rollback()
            raise

        logger.info("📝 Task %s created in project %s", task.id, project.id)
        return task

    # ============================================================
    # ✅ Update (reschedules / cancels the due reminder)
    # ============================================================
    def update_task(self, session: Session, organization_id: int, user: User, task_id: int, changes: Dict[str, Any]) -> Task:
        require_role(session, organization_id, user)
        task = self.get_task(session, organization_id, task_id)

        changes = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS}
        if "due_date" in changes and changes["due_date"] != task.due_date:
            self._validate_due_date(changes["due_date"])
        if "assigned_to_id" in changes:
            self._validate_assignee(session, organization_id, changes["assigned_to_id"])

        reschedule = any(
            field in changes and changes[field] != getattr(task, field)
            for field in ("due_date", "assigned_to_id")
        )
        for field, value in changes.items():
            setattr(task, field, value)

        if task.status == TaskStatus.DONE:
            self.reminders.cancel_task_reminder(task)
        elif reschedule:
            self.reminders.reschedule_task_reminder(task)

        session.add(task)
        session.commit()
        return task

    def get_task(self, session: Session, organization_id: int, task_id: int) -> Task:
        task = session.get(Task, task_id)
        if task is None or task.organization_id != organization_id:
            raise NotFoundError("Task not found")
        return task

    def list_tasks(self, session: Session, organization_id: int, user: User, project_id: Optional[int] = None) -> List[Task]:
        require_role(session, organization_id, user)
        query = select(Task).where(Task.organization_id == organization_id)
        if project_id is not None:
            query = query.where(Task.project_id == project_id)
        return session.exec(query.order_by(Task.created_at)).all()

    # ============================================================
    # ✅ Fired by the job worker
    # ============================================================
    def send_due_reminder(self, session: Session, task_id: int, job_id: str) -> bool:
        task = session.get(Task, task_id)
        if task is None:
            logger.warning("⚠️ Due reminder fired for missing task %s", task_id)
            return False
        if task.due_reminder_job_id != job_id:
            logger.info("⏭️ Stale due reminder %s for task %s", job_id, task_id)
            return False

        sent = False
        assignee = session.get(User, task.assigned_to_id) if task.assigned_to_id else None
        if task.status != TaskStatus.DONE and assignee is not None:
            organization = session.get(Organization, task.organization_id)
            sent = self.email.send_email(
                assignee.email,
                f"Task due soon: {task.title}",
                email_templates.task_due(assignee.first_name, organization.name if organization else "", task.title, task.due_date),
            )

        task.due_reminder_job_id = None
        session.add(task)
        session.commit()
        return sent
