"""Editor API - chat-driven generation, mentions, assets and the live preview."""

import asyncio
import json
from typing import List

from fastapi import APIRouter, File, HTTPException, Request, UploadFile
from fastapi.responses import StreamingResponse

from app.auth import AuthorizedUser
from app.libs.editor_session import get_editor_context
from app.libs.models import (
    ChatAction,
    ChatSubmit,
    ImageRename,
    MentionRemoveRequest,
    MentionSelectRequest,
    MentionSuggestRequest,
    MentionType,
)

router = APIRouter()

PREVIEW_KEEPALIVE_SECONDS = 15.0


@router.get("/editor/state")
async def get_state(user: AuthorizedUser):
    return get_editor_context(user).state()


@router.post("/editor/close")
async def close_project(user: AuthorizedUser):
    """Leave the open project and return to an empty workspace."""
    context = get_editor_context(user)
    context.reset_workspace()
    return context.state()


# =============================================================================
# CHAT
# =============================================================================


@router.post("/editor/chat")
async def submit_chat(body: ChatSubmit, user: AuthorizedUser):
    """
    Send the input to the AI and wait for the generated page.

    Mentions selected earlier through ``/editor/mentions/select`` are
    resolved against ``text``. The finished HTML is both returned in the
    state and pushed to preview listeners while it streams.
    """
    context = get_editor_context(user)
    started = await context.submit_chat(body.text, body.persona)
    return {"started": started, "state": context.state()}


@router.post("/editor/chat/action")
async def chat_action(body: ChatAction, user: AuthorizedUser):
    context = get_editor_context(user)
    try:
        text = await context.chat_action(body.action, body.index)
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"input": text, "state": context.state()}


# =============================================================================
# MENTIONS
# =============================================================================


@router.post("/editor/mentions/suggest")
async def suggest_mentions(body: MentionSuggestRequest, user: AuthorizedUser):
    mention_type, candidates = get_editor_context(user).suggest_mentions(body.text, body.cursor)
    return {"type": mention_type.value if mention_type else None, "suggestions": candidates}


@router.post("/editor/mentions/select")
async def select_mention(body: MentionSelectRequest, user: AuthorizedUser):
    context = get_editor_context(user)
    try:
        text = context.select_mention(body.text, body.type, body.id, body.cursor)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"No {body.type.value} with id {body.id}")
    return {"text": text, "input": context.state()["input"]}


@router.post("/editor/mentions/remove")
async def remove_mention(body: MentionRemoveRequest, user: AuthorizedUser):
    context = get_editor_context(user)
    try:
        text = context.remove_mention(body.text, body.index)
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"text": text, "input": context.state()["input"]}


# =============================================================================
# ASSETS
# =============================================================================


@router.post("/editor/images")
async def upload_images(user: AuthorizedUser, files: List[UploadFile] = File(...)):
    """Upload one or more images to the CDN and attach them to the open project."""
    context = get_editor_context(user)
    payload = [(f.filename or "image", await f.read(), f.content_type or "application/octet-stream") for f in files]
    stored = await context.upload_images(payload)
    if not stored and context.last_error():
        raise HTTPException(status_code=400, detail=context.last_error())
    return {"uploaded": stored, "state": context.state()}


@router.patch("/editor/assets/{asset_type}/{asset_id}")
async def rename_asset(asset_type: MentionType, asset_id: str, body: ImageRename, user: AuthorizedUser):
    context = get_editor_context(user)
    if not await context.rename_asset(asset_type, asset_id, body.name):
        raise HTTPException(status_code=400, detail=context.last_error() or "Rename failed.")
    return context.state()


@router.delete("/editor/assets/{asset_type}/{asset_id}")
async def delete_asset(asset_type: MentionType, asset_id: str, user: AuthorizedUser):
    context = get_editor_context(user)
    if not await context.delete_asset(asset_type, asset_id):
        raise HTTPException(status_code=400, detail=context.last_error() or "Delete failed.")
    return context.state()


# =============================================================================
# LIVE PREVIEW
# =============================================================================


@router.get("/editor/preview/stream", tags=["stream"])
async def preview_stream(request: Request, user: AuthorizedUser):
    """
    Server-sent events carrying the preview HTML.

    The current HTML is sent first, then every throttled update pushed while
    a generation streams and every change merged from the live subscription.
    """
    context = get_editor_context(user)
    queue: asyncio.Queue = asyncio.Queue()
    queue.put_nowait(context.html)
    remove_listener = context.add_preview_listener(queue.put_nowait)

    async def generate():
        try:
            while not await request.is_disconnected():
                try:
                    html = await asyncio.wait_for(queue.get(), timeout=PREVIEW_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield f"data: {json.dumps({'html': html})}\n\n"
        finally:
            remove_listener()

    return StreamingResponse(generate(), media_type="text/event-stream")
