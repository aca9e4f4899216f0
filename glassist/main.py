"""
FastAPI application, the glassist entry point.

Endpoints:
  POST   /api/chat          stream one chat turn as server-sent events
  GET    /api/chat          load a stored transcript
  GET    /api/chats         paginated chat list
  DELETE /api/chats/{id}    delete a chat and its messages
  GET    /api/search        substring search over titles and messages
  GET    /api/tools         registered GitLab tools
  GET    /health            liveness and version

Dependencies live on app.state. create_app() accepts ready-made ones
(tests pass fakes); anything left out is built from config at startup.
"""

import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse

from glassist import __version__
from glassist.backends.base import BaseBackend
from glassist.backends.openai_compat import OpenAICompatibleBackend
from glassist.config import get_config
from glassist.errors import ChatNotFoundError, HistoryValidationError
from glassist.gitlab.client import GitLabClient
from glassist.orchestrator import TurnOrchestrator
from glassist.search import search_chats
from glassist.storage.models import Message
from glassist.storage.sqlite_store import SQLiteStore
from glassist.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _setup_logging(cfg: dict):
    log_cfg = cfg.get("logging", {})
    level = getattr(logging, log_cfg.get("level", "INFO").upper(), logging.INFO)
    log_file = log_cfg.get("file")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    cfg = get_config()
    _setup_logging(cfg)

    state = app.state
    if state.store is None:
        state.store = SQLiteStore(cfg["storage"]["sqlite_path"])
    if state.registry is None:
        state.registry = ToolRegistry(GitLabClient.from_config())
    if state.backend is None:
        state.backend = OpenAICompatibleBackend.from_config()
    if state.orchestrator is None:
        state.orchestrator = TurnOrchestrator.from_config(state.store, state.registry, state.backend)
    state.search_cfg = {**state.search_cfg, **cfg.get("search", {})}

    logger.info(
        "glassist started (model=%s, tools=%d, db=%s)",
        state.backend.model, len(state.registry.list_tools()), state.store.db_path,
    )
    yield
    logger.info("glassist shutting down")


# ---------------------------------------------------------------------------
# Chat turns
# ---------------------------------------------------------------------------

router = APIRouter()


@router.post("/api/chat")
async def chat(request: Request):
    """
    Run one chat turn.

    Body:
        chatId    str (opt)    existing chat; a new one is created when absent
        messages  list[dict]   new messages {id?, role, content, toolCalls?, metadata?}

    Returns: text/event-stream of JSON events, ended by [DONE]:
        {type:"start",       chatId, messageId}
        {type:"text-delta",  delta}
        {type:"tool-call",   toolCallId, toolName, input}
        {type:"tool-result", toolCallId, toolName, output, isError}
        {type:"finish-step", step, toolCalls}
        {type:"finish",      chatId, messageId, steps, capped, persisted, messages}
        {type:"error",       message}
    """
    try:
        body = await request.json()
    except Exception:
        return JSONResponse({"error": "invalid JSON"}, status_code=400)
    if not isinstance(body, dict):
        return JSONResponse({"error": "body must be an object"}, status_code=400)

    raw_messages = body.get("messages")
    if not isinstance(raw_messages, list) or not raw_messages:
        return JSONResponse({"error": "messages required"}, status_code=400)
    if not all(isinstance(m, dict) for m in raw_messages):
        return JSONResponse({"error": "each message must be an object"}, status_code=400)

    requested_id = body.get("chatId")
    if requested_id is not None and not isinstance(requested_id, str):
        return JSONResponse({"error": "chatId must be a string"}, status_code=400)

    orch: TurnOrchestrator = request.app.state.orchestrator
    try:
        chat_id = orch.resolve_chat(requested_id)
    except Exception as e:
        logger.error("Failed to create chat: %s", e)
        return JSONResponse({"error": "Failed to create chat"}, status_code=500)

    messages = [Message.from_dict(m, chat_id=chat_id) for m in raw_messages]

    async def _event_stream():
        try:
            async for event in orch.run_turn(chat_id, messages):
                yield f"data: {json.dumps(event)}\n\n"
        except Exception as e:
            logger.exception("Turn for chat %s crashed", chat_id)
            yield f"data: {json.dumps({'type': 'error', 'message': str(e)})}\n\n"
        yield "data: [DONE]\n\n"

    return StreamingResponse(
        _event_stream(),
        media_type="text/event-stream",
        headers={**SSE_HEADERS, "X-Chat-Id": chat_id},
    )


@router.get("/api/chat")
async def get_chat(request: Request, chatId: str | None = None):
    """Full transcript for one chat."""
    if not chatId:
        return JSONResponse({"error": "chatId is required"}, status_code=400)
    store: SQLiteStore = request.app.state.store
    try:
        messages = store.load_chat(chatId)
    except ChatNotFoundError:
        return JSONResponse({"error": "Chat not found"}, status_code=404)
    except HistoryValidationError as e:
        logger.error("Chat %s has unreadable history: %s", chatId, e)
        return JSONResponse({"error": "Chat history is unreadable"}, status_code=500)
    return JSONResponse({"chatId": chatId, "messages": [m.to_dict() for m in messages]})


# ---------------------------------------------------------------------------
# Chat history
# ---------------------------------------------------------------------------

@router.get("/api/chats")
async def list_chats(request: Request, page: int = 1, limit: int = DEFAULT_PAGE_SIZE):
    """Page through chats, most recently updated first."""
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)
    offset = (page - 1) * limit

    store: SQLiteStore = request.app.state.store
    result = store.list_chats(limit=limit, offset=offset)
    total = result["total"]
    return JSONResponse({
        "chats": [c.to_dict() for c in result["chats"]],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "hasMore": offset + limit < total,
        },
    })


@router.delete("/api/chats/{chat_id}")
async def delete_chat(request: Request, chat_id: str):
    store: SQLiteStore = request.app.state.store
    try:
        store.delete_chat(chat_id)
    except ChatNotFoundError:
        return JSONResponse({"error": "Chat not found"}, status_code=404)
    return JSONResponse({"ok": True, "chatId": chat_id})


@router.get("/api/search")
async def search(request: Request, q: str = ""):
    state = request.app.state
    results = search_chats(
        state.store,
        q,
        limit=state.search_cfg.get("limit", 10),
        excerpt_length=state.search_cfg.get("excerpt_length", 100),
    )
    return JSONResponse({"query": q, "results": results})


# ---------------------------------------------------------------------------
# Introspection
# ---------------------------------------------------------------------------

@router.get("/api/tools")
async def list_tools(request: Request):
    registry: ToolRegistry = request.app.state.registry
    return JSONResponse({
        "tools": [
            {"name": name, "description": spec.description}
            for name, spec in registry.tools.items()
        ]
    })


@router.get("/health")
async def health(request: Request):
    """Health check. Reports whether the completion backend is reachable."""
    backend: BaseBackend | None = request.app.state.backend
    reachable = await backend.health_check() if backend else False
    return JSONResponse({
        "status": "ok",
        "version": __version__,
        "model": backend.model if backend else None,
        "backend": "reachable" if reachable else "unreachable",
    })


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

def create_app(
    store: SQLiteStore | None = None,
    registry: ToolRegistry | None = None,
    backend: BaseBackend | None = None,
    orchestrator: TurnOrchestrator | None = None,
) -> FastAPI:
    app = FastAPI(
        title="glassist",
        description="GitLab chat assistant with persistent, searchable history.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.registry = registry
    app.state.backend = backend
    if orchestrator is None and None not in (store, registry, backend):
        orchestrator = TurnOrchestrator(store, registry, backend)
    app.state.orchestrator = orchestrator
    app.state.search_cfg = {"limit": 10, "excerpt_length": 100}
    app.include_router(router)
    return app


app = create_app()
