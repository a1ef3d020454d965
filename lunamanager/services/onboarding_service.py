"""
Onboarding Service — first-run flow for a new account.

  Step 1: workspace  -> create workspace (caller becomes owner)
  Step 2: company    -> create the first company in it
  Step 3: complete   -> flag onboardingCompleted in the workspace settings JSON

``get_status`` tells the client which step comes next.
"""

import logging
from datetime import datetime, timezone

from lunamanager.core.exceptions import ValidationError
from lunamanager.models import db
from lunamanager.models.company import Company
from lunamanager.models.workspace import Workspace, WorkspaceMember
from lunamanager.services import company_service, workspace_service

logger = logging.getLogger(__name__)


def _user_workspaces(user_id: int) -> list[Workspace]:
    owned = Workspace.query.filter_by(owner_id=user_id)
    member_of = (
        Workspace.query.join(WorkspaceMember, WorkspaceMember.workspace_id == Workspace.id)
        .filter(WorkspaceMember.user_id == user_id)
    )
    return owned.union(member_of).order_by(Workspace.id).all()


def _first_company(workspace_id: int) -> Company | None:
    return workspace_service.workspace_companies_query(workspace_id).order_by(Company.id).first()


def create_workspace(user_id: int, data: dict) -> Workspace:
    """Step 1."""
    workspace = workspace_service.create_workspace(
        user_id, data["name"], description=data.get("description")
    )
    logger.info("Onboarding step 1: user %s created workspace %s", user_id, workspace.slug)
    return workspace


def create_company(workspace: Workspace, user_id: int, data: dict) -> Company:
    """Step 2. Owner/admin only."""
    workspace_service.require_manager(workspace, user_id)
    company = company_service.create_company(workspace, data, user_id=user_id)
    logger.info("Onboarding step 2: company %s in workspace %s", company.id, workspace.id)
    return company


def complete(user_id: int) -> Workspace:
    """Step 3. Needs a workspace that already has a company."""
    for workspace in _user_workspaces(user_id):
        if _first_company(workspace.id) is not None:
            workspace.settings = {
                **(workspace.settings or {}),
                "onboardingCompleted": True,
                "onboardingCompletedAt": datetime.now(timezone.utc).isoformat(),
            }
            db.session.flush()
            logger.info("Onboarding completed for user %s (workspace %s)", user_id, workspace.id)
            return workspace
    raise ValidationError("Create a workspace and a company before completing onboarding")


def get_status(user_id: int) -> dict:
    workspaces = _user_workspaces(user_id)
    workspace = workspaces[0] if workspaces else None
    company = None
    for ws in workspaces:
        company = _first_company(ws.id)
        if company is not None:
            workspace = ws
            break

    completed = any((ws.settings or {}).get("onboardingCompleted") for ws in workspaces)
    if workspace is None:
        next_step = "workspace"
    elif company is None:
        next_step = "company"
    else:
        next_step = "done"

    return {
        "hasWorkspace": workspace is not None,
        "hasCompany": company is not None,
        "completed": completed,
        "workspace": workspace.to_dict() if workspace else None,
        "company": company.to_dict() if company else None,
        "nextStep": next_step,
    }
