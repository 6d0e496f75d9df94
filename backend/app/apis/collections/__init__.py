"""Collections API - project data buckets and the form submissions they receive.

``POST /collections/{project_id}/{collection_id}/submissions`` is public:
generated sites call it from their forms with either JSON or form data.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Request, UploadFile

from app.auth import AuthorizedUser
from app.libs.document_store import DocumentNotFoundError, get_document_store
from app.libs.editor_session import get_editor_context
from app.libs.models import CollectionCreate
from app.libs.project_data import add_submission, render_submission_data, submission_title

logger = logging.getLogger("stylo.api.collections")

router = APIRouter()


@router.get("/collections")
async def list_collections(user: AuthorizedUser):
    """Collections of the project open in the caller's editor."""
    context = get_editor_context(user)
    await context.refresh_assets()
    return {"collections": [{"id": c.id, "name": c.name} for c in context.collections]}


@router.post("/collections")
async def create_collection(body: CollectionCreate, user: AuthorizedUser):
    context = get_editor_context(user)
    collection_id = await context.create_collection(body.name)
    if not collection_id:
        raise HTTPException(status_code=400, detail=context.last_error() or "Could not create collection.")
    return {"collection_id": collection_id, "state": context.state()}


@router.get("/collections/{collection_id}/submissions")
async def list_submissions(collection_id: str, user: AuthorizedUser):
    """Submissions of one collection of the open project, newest first."""
    context = get_editor_context(user)
    submissions = await context.submissions(collection_id)
    return {
        "submissions": [
            {
                "id": s["id"],
                "title": submission_title(s),
                "createdAt": s.get("createdAt"),
                "formData": s.get("formData"),
                "html": render_submission_data(s.get("formData")),
            }
            for s in submissions
        ],
        "notifications": context.drain_notifications(),
    }


async def _read_form(request: Request) -> Dict[str, Any]:
    if request.headers.get("content-type", "").startswith("application/json"):
        data = await request.json()
        if not isinstance(data, dict):
            raise HTTPException(status_code=422, detail="Submission must be a JSON object")
        return data
    form = await request.form()
    data: Dict[str, Any] = {}
    for key, value in form.multi_items():
        if isinstance(value, UploadFile):
            value = value.filename
        if key in data:
            existing = data[key]
            data[key] = existing + [value] if isinstance(existing, list) else [existing, value]
        else:
            data[key] = value
    return data


@router.post("/collections/{project_id}/{collection_id}/submissions")
async def submit_form(project_id: str, collection_id: str, request: Request):
    """Store a form submission from a generated site."""
    form_data = await _read_form(request)
    if not form_data:
        raise HTTPException(status_code=400, detail="Empty submission")
    try:
        submission_id = await add_submission(get_document_store(), project_id, collection_id, form_data)
    except DocumentNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return {"success": True, "id": submission_id}
