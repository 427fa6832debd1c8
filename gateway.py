#!/usr/bin/env python3
"""
Claude CLI Gateway
OpenAI-compatible chat completions API backed by one Claude CLI process per
request. Conversations map onto persistent CLI sessions; a conversation whose
primary session is busy gets a temporary secondary session instead of waiting.
"""

import asyncio
import contextlib
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

# Import configuration
from config import (
    VERSION, BRIDGE_HOST, BRIDGE_PORT, SUPPORTED_MODELS, CLAUDE_CLI_PATH,
    PROXY_CWD, ACTIVITY_TIMEOUT, SESSION_CLEANUP_INTERVAL
)

# Import models
from models import ChatCompletionRequest, Model, ModelList, GatewayError, InvalidRequestError

# Import session, routing and notification components
from session_manager import SessionStore
from routing import ActiveRequestRegistry, SubagentRouter
from notifications import build_notifier

# Import CLI adapters
from cli_adapters.claude_adapter import ClaudeSubprocess, SubprocessOptions, verify_claude
from cli_adapters.request_adapter import extract_model, openai_to_cli, tools_enabled, subagent_preamble
from cli_adapters.response_adapter import create_error_event

# Import response rendering
from streaming import StreamingPipeline, NonStreamingAssembler, attach_tool_tracking

from utils.helpers import make_trace_logger, format_elapsed, truncate as _truncate

# Configure logging
logger = logging.getLogger(__name__)

# Process-wide state, created once
session_store = SessionStore()
registry = ActiveRequestRegistry()
notifier = build_notifier()
router = SubagentRouter(registry, notifier)


# ============================================================================
# Application Lifecycle
# ============================================================================

async def _session_cleanup_loop():
    while True:
        await asyncio.sleep(SESSION_CLEANUP_INTERVAL)
        try:
            session_store.cleanup()
        except Exception as e:
            logger.error(f"Session cleanup failed: {e}")


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    status = await verify_claude(CLAUDE_CLI_PATH)
    if status["ok"]:
        logger.info(f"Claude CLI found: {status['version']}")
    else:
        logger.warning(f"Claude CLI check failed: {status['error']}")

    session_store.load()
    cleanup_task = asyncio.create_task(_session_cleanup_loop())
    try:
        yield
    finally:
        cleanup_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await cleanup_task
        await notifier.aclose()


# Initialize FastAPI app
app = FastAPI(title="Claude CLI Gateway", version=VERSION, lifespan=lifespan)


# ============================================================================
# Helper Functions
# ============================================================================

def get_conversation_id(request: Request, body: ChatCompletionRequest) -> Optional[str]:
    """
    Caller's conversation id: forwarded chat headers first, then the body.
    Without one the request runs without session tracking or routing.
    """
    return (
        request.headers.get("x-conversation-id")
        or request.headers.get("x-openwebui-chat-id")
        or request.headers.get("x-chat-id")
        or body.conversation_id
        or body.user
        or None
    )


def error_response(error: GatewayError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.to_envelope())


def _invalidate_session(conversation_id: str, detail: str, trace):
    trace("session.resume_failed", f"conversation={conversation_id} detail={_truncate(detail)}", level=logging.WARNING)
    session_store.delete(conversation_id)


# ============================================================================
# API Endpoints
# ============================================================================

@app.get("/")
async def root():
    return {
        "message": "Claude CLI Gateway",
        "version": VERSION,
        "status": "running",
        "active_sessions": session_store.size(),
    }


@app.get("/v1/models")
async def list_models() -> ModelList:
    """List available models (OpenAI-compatible)"""
    return ModelList(
        data=[
            Model(id=model_id, object="model", owned_by=meta["owned_by"])
            for model_id, meta in SUPPORTED_MODELS.items()
        ]
    )


@app.get("/health")
async def health():
    """Liveness plus what the CLI is doing right now"""
    requests = registry.snapshot()
    return {
        "status": "ok",
        "provider": "claude-code-cli",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "cli": {
            "state": "busy" if requests else "idle",
            "activeRequests": len(requests),
            "requests": requests,
        },
        "subagentSessions": router.snapshot(),
    }


@app.get("/sessions")
async def list_sessions():
    """List session mappings (debug endpoint)"""
    return {"sessions": session_store.get_all()}


@app.delete("/sessions/{conversation_id}")
async def delete_session(conversation_id: str):
    if session_store.delete(conversation_id):
        return {"status": "deleted", "conversation_id": conversation_id}
    raise HTTPException(status_code=404, detail="Session not found")


@app.post("/v1/chat/completions")
async def chat_completions(request: Request, body: ChatCompletionRequest):
    """Handle chat completion requests (OpenAI-compatible)"""
    request_id = uuid.uuid4().hex[:24]
    trace_id, trace = make_trace_logger()

    if not body.messages:
        return error_response(InvalidRequestError("messages is required and must be a non-empty array"))

    conversation_id = get_conversation_id(request, body)
    has_tools = tools_enabled(body)
    model = extract_model(body.model)
    trace(
        "request.start",
        f"id={request_id} model={model} conversation={conversation_id} stream={body.stream} tools={has_tools}",
    )

    lease = await router.route(request_id, conversation_id, model, trace=trace)
    handed_off = False
    proc: Optional[ClaudeSubprocess] = None
    assembler: Optional[NonStreamingAssembler] = None
    try:
        effective_id = lease.effective_conversation_id

        # Resume when the conversation already has a CLI session, else mint one
        existing = session_store.get(effective_id) if effective_id else None
        new_session_id = None
        if existing:
            session_store.touch(effective_id)
            trace("session.resume", f"{effective_id} -> {existing.backend_session_id}")
        elif effective_id:
            new_session_id = session_store.get_or_create(effective_id, model)
            trace("session.new", f"{effective_id} -> {new_session_id}")

        cli_input = openai_to_cli(body, has_existing_session=existing is not None, has_tools=has_tools, trace=trace)

        system_prompt = cli_input.system_prompt
        if lease.is_subagent:
            preamble = subagent_preamble(format_elapsed(lease.primary_elapsed or 0), lease.primary_tools, lease.cwd)
            system_prompt = f"{preamble}\n{system_prompt}" if system_prompt else preamble

        options = SubprocessOptions(
            model=cli_input.model,
            session_id=new_session_id,
            resume_session_id=existing.backend_session_id if existing else None,
            system_prompt=system_prompt,
            cwd=lease.cwd or PROXY_CWD,
        )
        trace(
            "prompt.ready",
            f"len={len(cli_input.prompt)} session={'resume' if cli_input.is_resuming else 'new'} subagent={lease.is_subagent}",
        )

        proc = ClaudeSubprocess(cli_path=CLAUDE_CLI_PATH, activity_timeout=ACTIVITY_TIMEOUT, trace=trace)
        if effective_id:
            proc.on("resume_failed", lambda detail: _invalidate_session(effective_id, detail, trace))

        if body.stream:
            progress = notifier.progress_reporter()
            attach_tool_tracking(proc, request_id, registry, progress, trace)
            pipeline = StreamingPipeline(
                proc, request_id, lease,
                tools_mode=has_tools,
                progress=progress,
                notifier=notifier,
                trace=trace,
            )
            await proc.start(cli_input.prompt, options)
            handed_off = True
            return StreamingResponse(
                pipeline.stream(),
                media_type="text/event-stream",
                headers={"Cache-Control": "no-cache", "X-Request-Id": request_id},
                background=BackgroundTask(pipeline.cleanup),
            )

        attach_tool_tracking(proc, request_id, registry, trace=trace)
        assembler = NonStreamingAssembler(proc, request_id, effective_id, notifier=notifier, trace=trace)
        await proc.start(cli_input.prompt, options)
        response = await assembler.response()
        trace("request.done", f"finish={response['choices'][0]['finish_reason']}")
        return response

    except GatewayError as e:
        trace("request.error", str(e), level=logging.ERROR)
        return error_response(e)
    except Exception as e:
        logger.exception(f"[{trace_id}] Unexpected error")
        return JSONResponse(status_code=500, content=create_error_event(str(e)))
    finally:
        if not handed_off:
            if proc is not None and proc.is_running() and not (assembler and assembler.is_complete):
                proc.kill()
            lease.release()


# ============================================================================
# Main Entry Point
# ============================================================================

def main():
    import uvicorn
    uvicorn.run(app, host=BRIDGE_HOST, port=BRIDGE_PORT)


if __name__ == "__main__":
    main()
