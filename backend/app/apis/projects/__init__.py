"""Projects API - project lifecycle, versions, sharing and deployment.

Every endpoint acts through the caller's editor session so that the open
project, its live subscription and its notifications stay in one place.
"""

from typing import List, Dict, Any

from fastapi import APIRouter, HTTPException

from app.auth import AuthorizedUser
from app.libs.editor_session import EditorContext, get_editor_context
from app.libs.models import ProjectCreate, ProjectUpdate, ShareRequest

router = APIRouter()


def _fail(context: EditorContext, default: str, status_code: int = 400):
    raise HTTPException(status_code=status_code, detail=context.last_error() or default)


# =============================================================================
# PROJECTS
# =============================================================================


@router.get("/projects")
async def list_projects(user: AuthorizedUser) -> Dict[str, List[Dict[str, Any]]]:
    """
    List the caller's own projects and the ones shared with them.

    Cards flag ``needsUpdate`` when a deployed project has unpublished edits.
    """
    context = get_editor_context(user)
    return {
        "projects": await context.list_projects(),
        "shared": await context.list_shared_projects(),
    }


@router.post("/projects")
async def create_project(body: ProjectCreate, user: AuthorizedUser):
    """Create a project and open it in the editor."""
    context = get_editor_context(user)
    project_id = await context.create_project(body.name)
    if not project_id:
        _fail(context, "Could not create project.")
    return {"project_id": project_id, "state": context.state()}


@router.post("/projects/{project_id}/open")
async def open_project(project_id: str, user: AuthorizedUser):
    """
    Open a project in the editor.

    Opening someone else's unshared project creates an editable copy; the
    returned ``project_id`` is then the copy's id.
    """
    context = get_editor_context(user)
    opened = await context.load_project(project_id)
    if not opened:
        _fail(context, "Project not found.", status_code=404)
    return {"project_id": opened, "state": context.state()}


@router.put("/projects/current")
async def save_project(body: ProjectUpdate, user: AuthorizedUser):
    """Save the open workspace, creating a project when none is open."""
    context = get_editor_context(user)
    if body.html_content is not None:
        context.html = body.html_content
    if not await context.save_project(body.name):
        _fail(context, "Save failed.")
    return context.state()


@router.delete("/projects/{project_id}")
async def delete_project(project_id: str, user: AuthorizedUser):
    context = get_editor_context(user)
    if not await context.delete_project(project_id):
        _fail(context, "Delete failed.", status_code=403)
    return {"success": True}


@router.post("/projects/{project_id}/deploy")
async def deploy_project(project_id: str, user: AuthorizedUser):
    """Publish the project's stored HTML and record the live URL."""
    context = get_editor_context(user)
    url = await context.deploy(project_id)
    if not url:
        _fail(context, "Deploy failed.", status_code=502)
    return {"url": url, "notifications": context.drain_notifications()}


# =============================================================================
# VERSIONS
# =============================================================================


@router.get("/projects/current/versions")
async def list_versions(user: AuthorizedUser):
    return {"versions": await get_editor_context(user).list_versions()}


@router.post("/projects/current/versions/{version_id}/restore")
async def restore_version(version_id: str, user: AuthorizedUser):
    context = get_editor_context(user)
    if not await context.restore_version(version_id):
        _fail(context, "Restore failed.")
    return context.state()


# =============================================================================
# COLLABORATORS
# =============================================================================


@router.post("/projects/current/collaborators")
async def share_project(body: ShareRequest, user: AuthorizedUser):
    context = get_editor_context(user)
    if not await context.share(body.email, body.role):
        _fail(context, "Could not share project.")
    return context.state()


@router.delete("/projects/current/collaborators/{uid}")
async def remove_collaborator(uid: str, user: AuthorizedUser):
    context = get_editor_context(user)
    if not await context.remove_collaborator(uid):
        _fail(context, "Could not remove collaborator.", status_code=403)
    return context.state()
