"""Project data collections and their form submissions.

Generated sites post form data into
``ai_templates/{project}/project_collections/{collection}/submissions``.
"""

import html
import logging
from typing import Any, Dict, List, Optional

from app.libs.document_store import SERVER_TIMESTAMP, DocumentNotFoundError, DocumentStore

logger = logging.getLogger("stylo.project_data")

PROJECTS_COLLECTION = "ai_templates"


def project_path(project_id: str) -> str:
    return f"{PROJECTS_COLLECTION}/{project_id}"


def collections_path(project_id: str) -> str:
    return f"{project_path(project_id)}/project_collections"


def images_path(project_id: str) -> str:
    return f"{project_path(project_id)}/project_images"


def versions_path(project_id: str) -> str:
    return f"{project_path(project_id)}/versions"


def submissions_path(project_id: str, collection_id: str) -> str:
    return f"{collections_path(project_id)}/{collection_id}/submissions"


async def add_submission(store: DocumentStore, project_id: str, collection_id: str,
                         form_data: Dict[str, Any]) -> str:
    """Store one form submission; the collection must exist."""
    collection = await store.get(f"{collections_path(project_id)}/{collection_id}")
    if not collection.exists:
        raise DocumentNotFoundError("This form is not connected to a database yet.", path=collection.path)
    submission_id = await store.add(
        submissions_path(project_id, collection_id),
        {"formData": form_data, "createdAt": SERVER_TIMESTAMP},
    )
    logger.info("Stored submission %s in %s/%s", submission_id, project_id, collection_id)
    return submission_id


async def list_submissions(store: DocumentStore, project_id: str, collection_id: str) -> List[Dict[str, Any]]:
    snapshots = await store.query(
        submissions_path(project_id, collection_id), order_by="createdAt", descending=True
    )
    return [s.to_dict() for s in snapshots]


def submission_title(submission: Dict[str, Any]) -> str:
    form_data = submission.get("formData") or {}
    return form_data.get("name") or form_data.get("title") or submission.get("createdAt") or f"Submission {submission.get('id')}"


def render_submission_data(data: Optional[Dict[str, Any]]) -> str:
    """Nested key/value markup for one submission's ``formData``.

    Uploaded files (maps carrying ``url`` and ``publicId``) render as links.
    """
    if data is None:
        return '<div class="firestore-item--empty">No form data found in this submission.</div>'
    parts = []
    for key, value in data.items():
        parts.append('<div class="data-viewer__group">')
        parts.append(f'<span class="data-viewer__key">{html.escape(str(key))}</span>')
        if isinstance(value, dict):
            if value.get("url") and value.get("publicId"):
                label = html.escape(str(value.get("name") or "View Image"))
                url = html.escape(str(value["url"]))
                parts.append(
                    f'<div class="data-viewer__value"><a href="{url}" target="_blank" '
                    f'class="data-viewer__link">{label}</a></div>'
                )
            else:
                parts.append(f'<div class="data-viewer__value">{render_submission_data(value)}</div>')
        else:
            parts.append(f'<span class="data-viewer__value">{html.escape(str(value))}</span>')
        parts.append("</div>")
    return "".join(parts)
