import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from adaptive_chat.backend import Backend
from adaptive_chat.errors import (
    AdaptiveChatError,
    DuplicateFeedback,
    InvalidApiKey,
    NotFound,
    PersistenceError,
    ProviderError,
)

logger = logging.getLogger("adaptive_chat.server")

app = FastAPI(title="adaptive-chat")

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins for dev
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_STATUS_BY_ERROR = (
    (InvalidApiKey, 401),
    (NotFound, 404),
    (DuplicateFeedback, 409),
    (ProviderError, 502),
    (PersistenceError, 503),
)


@lru_cache(maxsize=1)
def get_backend() -> Backend:
    return Backend()


@app.exception_handler(AdaptiveChatError)
async def _adaptive_chat_error_handler(request: Request, exc: AdaptiveChatError):
    status = next((code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 500)
    logger.info(f"{request.method} {request.url.path} -> {status}: {exc}")
    return JSONResponse(status_code=status, content={"error": str(exc)})


class ConversationIn(BaseModel):
    title: str
    mode: Optional[str] = "general"


class MessageIn(BaseModel):
    content: str
    mode: Optional[str] = "general"
    model: Optional[str] = "gemini"
    apiKey: Optional[str] = None


class ApiKeyIn(BaseModel):
    apiKey: Optional[str] = None
    model: Optional[str] = "gemini"


class FeedbackIn(BaseModel):
    rating: str


@app.get("/api/conversations")
def list_conversations(backend: Backend = Depends(get_backend)):
    return backend.list_conversations()


@app.post("/api/conversations")
def create_conversation(body: ConversationIn, backend: Backend = Depends(get_backend)):
    if not body.title.strip():
        raise HTTPException(status_code=400, detail="Invalid conversation data")
    return backend.create_conversation(body.title.strip(), body.mode or "general")


@app.get("/api/conversations/{conversation_id}/messages")
def get_messages(conversation_id: int, backend: Backend = Depends(get_backend)):
    return backend.get_messages(conversation_id)


@app.post("/api/conversations/{conversation_id}/messages")
def send_message(conversation_id: int, body: MessageIn, backend: Backend = Depends(get_backend)):
    if not body.content or not body.content.strip():
        raise HTTPException(status_code=400, detail="Message content is required")
    if not body.apiKey:
        raise HTTPException(status_code=400, detail="API key is required")
    return backend.send_message(
        conversation_id,
        body.content,
        mode=body.mode or "general",
        model=body.model or "gemini",
        api_key=body.apiKey,
    )


@app.post("/api/test-api-key")
def test_api_key(body: ApiKeyIn, backend: Backend = Depends(get_backend)):
    if not body.apiKey:
        raise HTTPException(status_code=400, detail="API key is required")
    return backend.test_api_key(body.apiKey, model=body.model or "gemini")


@app.post("/api/messages/{message_id}/feedback")
def submit_feedback(message_id: int, body: FeedbackIn, backend: Backend = Depends(get_backend)):
    if body.rating not in ("positive", "negative"):
        raise HTTPException(status_code=400, detail="Valid rating is required")
    backend.record_feedback(message_id, body.rating)
    return {"success": True}


@app.get("/api/learning/stats")
def learning_stats(backend: Backend = Depends(get_backend)):
    stats = backend.get_learning_stats()
    stats["isLearning"] = False  # set by the frontend while a request is in flight
    return stats


@app.delete("/api/learning")
def clear_learning(backend: Backend = Depends(get_backend)):
    backend.clear_learning()
    return {"success": True}


@app.get("/api/conversations/{conversation_id}/suggestions")
def list_suggestions(conversation_id: int, backend: Backend = Depends(get_backend)):
    return backend.list_suggestions(conversation_id)


@app.post("/api/suggestions/{suggestion_id}/use")
def use_suggestion(suggestion_id: int, backend: Backend = Depends(get_backend)):
    backend.mark_suggestion_used(suggestion_id)
    return {"success": True}


@app.get("/api/conversations/{conversation_id}/export")
def export_conversation(conversation_id: int, backend: Backend = Depends(get_backend)):
    return backend.export_conversation(conversation_id)


@app.get("/api/search")
def search(q: Optional[str] = None, backend: Backend = Depends(get_backend)):
    if not q or not q.strip():
        raise HTTPException(status_code=400, detail="Search query is required")
    return backend.search_conversations(q)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
