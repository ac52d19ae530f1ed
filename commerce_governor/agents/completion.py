"""
Completion service client (Ollama)
Given role-tagged messages and a tool schema, returns text and/or structured tool calls.
Transport and model errors are raised as CompletionServiceError.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
import ollama

from ..core import config
from ..core.errors import CompletionServiceError
from ..util.logging import logger


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: Dict[str, Any]


@dataclass
class CompletionResponse:
    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)


class CompletionService:
    """Chat completion with function calling against a local Ollama model."""

    def __init__(self, model_name: str = None, host: str = None, timeout: float = None,
                 client: Optional[ollama.AsyncClient] = None):
        self.model_name = model_name or config.COMPLETION_MODEL
        self._client = client or ollama.AsyncClient(
            host=host or config.OLLAMA_HOST,
            timeout=timeout or config.COMPLETION_TIMEOUT_SEC,
        )

    async def complete(self, messages: List[Dict[str, Any]], tools: List[Dict[str, Any]] = None) -> CompletionResponse:
        """One round-trip to the model."""
        try:
            response = await self._client.chat(
                model=self.model_name,
                messages=messages,
                tools=tools or None,
                options={'temperature': 0.7, 'top_p': 0.9},
            )
        except (ollama.ResponseError, httpx.HTTPError, ConnectionError) as e:
            logger.error(f"Completion request to {self.model_name} failed: {e}")
            raise CompletionServiceError(f"Completion service error: {e}") from e

        message = response.message
        tool_calls = [
            ToolCall(
                id=getattr(call, "id", None) or f"call_{uuid.uuid4().hex[:12]}",
                name=call.function.name,
                arguments=dict(call.function.arguments or {}),
            )
            for call in (message.tool_calls or [])
        ]
        return CompletionResponse(content=message.content or "", tool_calls=tool_calls)


def assistant_tool_turn(response: CompletionResponse) -> Dict[str, Any]:
    """The assistant turn that requested tools, in the shape the model expects back."""
    return {
        "role": "assistant",
        "content": response.content,
        "tool_calls": [
            {"function": {"name": call.name, "arguments": call.arguments}}
            for call in response.tool_calls
        ],
    }


def tool_result_message(call: ToolCall, result_json: str) -> Dict[str, Any]:
    return {"role": "tool", "content": result_json, "tool_name": call.name}
