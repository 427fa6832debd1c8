#!/usr/bin/env python3
"""
Pydantic Models for OpenAI-compatible API
Data structures for requests and responses, plus gateway exceptions
"""

import time
from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field


class ImageUrl(BaseModel):
    """Image URL in content parts"""
    url: str


class ContentPart(BaseModel):
    """Content part that can be text or image"""
    model_config = ConfigDict(extra="allow")

    type: str  # "text" or "image_url"
    text: Optional[str] = None
    image_url: Optional[ImageUrl] = None


class FunctionCall(BaseModel):
    name: str
    arguments: str = ""


class ToolCall(BaseModel):
    """Tool call as it appears on assistant messages"""
    id: str
    type: str = "function"
    function: FunctionCall


class Message(BaseModel):
    """Chat message with role and content"""
    role: str  # system, user, assistant or tool
    content: Union[str, List[ContentPart], None] = None
    tool_calls: Optional[List[ToolCall]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None


class ToolFunction(BaseModel):
    name: str
    description: Optional[str] = None
    parameters: Optional[Dict[str, Any]] = None


class Tool(BaseModel):
    """Caller-supplied tool definition"""
    type: str = "function"
    function: ToolFunction


class ChatCompletionRequest(BaseModel):
    """OpenAI-compatible chat completion request"""
    model: str = "claude-sonnet-4"
    messages: List[Message]
    stream: Optional[bool] = False
    temperature: Optional[float] = 1.0
    max_tokens: Optional[int] = None
    user: Optional[str] = None
    conversation_id: Optional[str] = None
    tools: Optional[List[Tool]] = None
    tool_choice: Optional[Union[str, Dict[str, Any]]] = None


class Model(BaseModel):
    """Model information"""
    id: str
    object: str = "model"
    created: int = Field(default_factory=lambda: int(time.time()))
    owned_by: str = "anthropic"


class ModelList(BaseModel):
    """List of available models"""
    object: str = "list"
    data: List[Model]


# ============================================================================
# Custom Exceptions
# ============================================================================

class GatewayError(Exception):
    """Base class for errors rendered to clients as an OpenAI error envelope."""
    status_code = 500
    error_type = "server_error"
    code: Optional[str] = None

    def to_envelope(self) -> Dict[str, Any]:
        return {"error": {"message": str(self), "type": self.error_type, "code": self.code}}


class InvalidRequestError(GatewayError):
    """Raised when the request body is shaped wrong."""
    status_code = 400
    error_type = "invalid_request_error"
    code = "invalid_messages"


class SpawnFailureError(GatewayError):
    """Raised when the CLI executable cannot be started."""
    status_code = 503
    code = "cli_not_found"


class IdleTimeoutError(GatewayError):
    """Raised when the CLI produced no output for the activity window."""
    status_code = 504
    error_type = "timeout_error"
    code = "activity_timeout"

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Request timed out: no output for {timeout:g}s (activity timeout)")


class AbnormalExitError(GatewayError):
    """Raised when the CLI exits without a result event."""
    code = "process_exit"

    def __init__(self, exit_code: Optional[int], stderr: str = ""):
        self.exit_code = exit_code
        self.stderr = stderr
        message = f"Claude CLI exited with code {exit_code} without response"
        if stderr:
            message += f": {stderr}"
        super().__init__(message)


class ResumeFailureError(GatewayError):
    """Raised when the CLI could not resume the mapped session."""
    code = "resume_failed"

    def __init__(self, session_id: Optional[str], detail: str = ""):
        self.session_id = session_id
        message = f"Could not resume session {session_id}; the next request will start a fresh session"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class MalformedToolCallError(ValueError):
    """Raised when a <tool_call> marker does not contain a JSON object."""
    pass
