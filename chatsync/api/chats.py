"""
Chat API endpoints - Chat list, selection, messaging and metadata.
Replies can be streamed to the client as Server-Sent Events.
"""

import json
from fastapi import APIRouter, HTTPException, Depends, status, Query
from fastapi.responses import StreamingResponse
from typing import Any, Dict, Optional

from ..core.exceptions import ChatNotFoundError, PersistenceError, SendRejectedError
from ..core.workspace import ChatWorkspace, get_workspace
from ..models import Chat, SendMessageRequest, ChatUpdateRequest

router = APIRouter(prefix="/chats", tags=["chats"])


def _dump(chat: Optional[Chat]) -> Optional[Dict[str, Any]]:
    return chat.model_dump(mode="json", by_alias=True) if chat else None


def _selection(workspace: ChatWorkspace) -> Dict[str, Any]:
    return {
        "activeChatId": workspace.store.active_chat_id,
        "location": workspace.navigation.location,
    }


def _sse(event: Dict[str, Any]) -> str:
    return f"data: {json.dumps(event, ensure_ascii=False)}\n\n"


@router.get("")
async def list_chats(
    include_archived: bool = Query(True, description="Include archived chats"),
    workspace: ChatWorkspace = Depends(get_workspace),
):
    """List chats, most recently active first."""
    chats = workspace.chats if include_archived else workspace.store.visible_chats
    return {
        "chats": [_dump(c) for c in chats],
        "isLoading": workspace.is_loading,
        "loadError": workspace.load_error,
        **_selection(workspace),
    }


@router.get("/active")
async def get_active_chat(workspace: ChatWorkspace = Depends(get_workspace)):
    """Currently selected chat, or null while composing a new one."""
    return {"chat": _dump(workspace.active_chat), **_selection(workspace)}


@router.post("/navigate")
async def navigate(
    location: str = Query(..., description="Location carrying the chat id query parameter"),
    workspace: ChatWorkspace = Depends(get_workspace),
):
    """Adopt the chat named by a shared link, dropping stale references."""
    workspace.navigation.navigate(location)
    return {"chat": _dump(workspace.active_chat), **_selection(workspace)}


@router.post("/new")
async def new_chat(workspace: ChatWorkspace = Depends(get_workspace)):
    """Clear the selection so the next message starts a new chat."""
    workspace.new_chat()
    return _selection(workspace)


@router.post("/select/{chat_id}")
async def select_chat(chat_id: str, workspace: ChatWorkspace = Depends(get_workspace)):
    try:
        chat = workspace.select_chat(chat_id)
    except ChatNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return {"chat": _dump(chat), **_selection(workspace)}


@router.post("/message")
async def send_message(
    message: SendMessageRequest,
    stream: bool = Query(False, description="Enable streaming output"),
    workspace: ChatWorkspace = Depends(get_workspace),
):
    """
    Send a message to the active chat (or a new chat when none is active).

    Returns:
        The reply outcome (stream=false) or a StreamingResponse (stream=true)
    """
    if not message.text.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message text is empty")

    if not stream:
        try:
            outcome = await workspace.send(message.text)
        except SendRejectedError as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
        except PersistenceError as e:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)

        return {
            "chatId": outcome.chat_id,
            "state": outcome.state.value,
            "text": outcome.text,
            "fallback": outcome.fallback,
            "chat": _dump(workspace.store.get(outcome.chat_id)),
        }

    # Reject before the response starts so the client gets a real status code
    if workspace.is_loading:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A reply is already in progress.")

    async def event_generator():
        try:
            async for event in workspace.send_stream(message.text):
                yield _sse(event)
        except (SendRejectedError, PersistenceError) as e:
            yield _sse({"type": "error", "error": str(e), "fatal": True})

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        }
    )


@router.post("/cancel")
async def cancel_reply(workspace: ChatWorkspace = Depends(get_workspace)):
    """Cancel the reply currently being generated."""
    return {"cancelled": workspace.cancel()}


@router.patch("/{chat_id}")
async def update_chat(
    chat_id: str,
    update: ChatUpdateRequest,
    workspace: ChatWorkspace = Depends(get_workspace),
):
    """Rename and/or archive/restore a chat."""
    try:
        chat = workspace.store.get(chat_id)
        if chat is None:
            raise ChatNotFoundError(chat_id)
        if update.title is not None:
            chat = await workspace.rename_chat(chat_id, update.title) or chat
        if update.archived is True:
            chat = await workspace.archive_chat(chat_id)
        elif update.archived is False:
            chat = await workspace.restore_chat(chat_id)
    except ChatNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)
    return {"chat": _dump(chat)}


@router.delete("/{chat_id}")
async def delete_chat(chat_id: str, workspace: ChatWorkspace = Depends(get_workspace)):
    try:
        await workspace.delete_chat(chat_id)
    except ChatNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)
    return {"deleted": True, **_selection(workspace)}
