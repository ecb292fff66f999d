"""Model client interface and OpenAI-compatible implementation."""

import os
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import httpx

from assistant_plugin_tools.constants import DEBUG_ENV_VAR, DEFAULT_MODEL_TIMEOUT_S


CODEX_SYSTEM_PROMPT = """You are a senior software engineer.
Answer the request directly.

Rules:
- Prefer complete, runnable code over prose.
- Do NOT restate the request."""


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class Message:
    """A chat message."""
    role: str  # "system", "user", "assistant"
    content: str


@dataclass
class CompletionResult:
    """Result from a model completion call."""
    content: str
    model: str
    usage: Optional[Dict[str, Any]] = None
    raw_response: Optional[Dict[str, Any]] = None


class ModelClient(ABC):
    """Abstract interface for model clients."""

    @abstractmethod
    def complete(
        self,
        messages: List[Message],
        model: str,
        timeout: float = DEFAULT_MODEL_TIMEOUT_S,
        max_tokens: Optional[int] = None,
    ) -> CompletionResult:
        """
        Execute a chat completion.

        Args:
            messages: List of chat messages
            model: Model identifier
            timeout: Request timeout in seconds
            max_tokens: Maximum output tokens (if None, use model default)

        Returns:
            CompletionResult with content and metadata

        Raises:
            ModelClientError: On API or network errors
        """
        pass


class ModelClientError(Exception):
    """Error from model client operations."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class OpenAICompatClient(ModelClient):
    """Client for any OpenAI-compatible chat completions endpoint.

    HTTP errors keep the status code in the message ("API error (429): ...")
    so callers can classify rate limits from the text alone.
    """

    DEFAULT_BASE_URL = "https://api.openai.com/v1"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            api_key: API key. If not provided, reads from
                     PLUGIN_TOOLS_API_KEY, then OPENAI_API_KEY.
            base_url: API root. If not provided, reads from
                      PLUGIN_TOOLS_API_BASE_URL or uses the OpenAI endpoint.
            transport: Optional httpx transport (used by tests).
        """
        self.api_key = (
            api_key
            or os.environ.get("PLUGIN_TOOLS_API_KEY")
            or os.environ.get("OPENAI_API_KEY")
        )
        if not self.api_key:
            raise ModelClientError(
                "PLUGIN_TOOLS_API_KEY or OPENAI_API_KEY environment variable is required."
            )
        self.base_url = (
            base_url
            or os.environ.get("PLUGIN_TOOLS_API_BASE_URL")
            or self.DEFAULT_BASE_URL
        ).rstrip("/")
        self._transport = transport

    def _make_request(
        self,
        payload: dict,
        headers: dict,
        timeout: float,
    ) -> dict:
        """Make HTTP request to the chat completions endpoint."""
        with httpx.Client(timeout=timeout, transport=self._transport) as client:
            response = client.post(
                f"{self.base_url}/chat/completions",
                headers=headers,
                json=payload,
            )
            response.raise_for_status()
            return response.json()

    def complete(
        self,
        messages: List[Message],
        model: str,
        timeout: float = DEFAULT_MODEL_TIMEOUT_S,
        max_tokens: Optional[int] = None,
    ) -> CompletionResult:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        payload = {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
        }

        if max_tokens is not None:
            payload["max_tokens"] = max_tokens

        # Debug logging (env-gated)
        if os.environ.get(DEBUG_ENV_VAR):
            print(f"[DEBUG] model={model}, max_tokens={max_tokens}", file=sys.stderr)

        try:
            data = self._make_request(payload, headers, timeout)

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            # Extract error message from response if available
            try:
                error_data = e.response.json()
                error_msg = error_data.get("error", {}).get("message", str(e))
            except Exception:
                error_msg = e.response.text or str(e)
            raise ModelClientError(f"API error ({status}): {error_msg}", status_code=status)

        except httpx.TimeoutException:
            raise ModelClientError(
                f"Request timed out after {timeout}s. "
                "Try again or use a faster model."
            )
        except httpx.RequestError as e:
            raise ModelClientError(f"Network error: {e}")

        choices = data.get("choices", [])
        if not choices:
            raise ModelClientError("No choices in API response")

        content = choices[0].get("message", {}).get("content", "")
        if not content:
            raise ModelClientError("Empty content in API response")

        return CompletionResult(
            content=content,
            model=data.get("model", model),
            usage=data.get("usage"),
            raw_response=data,
        )


def get_model_client() -> OpenAICompatClient:
    """Get a model client instance configured from the environment (and .env)."""
    from assistant_plugin_tools.config import load_config

    config = load_config(require_all=True)
    return OpenAICompatClient(api_key=config.api_key, base_url=config.api_base_url)


def build_messages(prompt: str, cwd: Optional[str] = None) -> List[Message]:
    """Build the chat messages for a code generation prompt."""
    user_prompt = prompt
    if cwd:
        user_prompt = f"WORKING DIRECTORY:\n{cwd}\n\nREQUEST:\n{prompt}"

    return [
        Message(role="system", content=CODEX_SYSTEM_PROMPT),
        Message(role="user", content=user_prompt),
    ]


def make_executor(
    client: ModelClient,
    cwd: Optional[str] = None,
    timeout: float = DEFAULT_MODEL_TIMEOUT_S,
) -> Callable[[str, str], str]:
    """
    Wrap a model client as an executor(prompt, model) -> response.

    Errors from the client propagate unchanged so the fallback executor
    can classify them.
    """
    def executor(prompt: str, model: str) -> str:
        result = client.complete(
            messages=build_messages(prompt, cwd),
            model=model,
            timeout=timeout,
        )
        return result.content

    return executor
