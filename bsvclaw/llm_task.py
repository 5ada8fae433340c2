"""
Worker "brain": complete(system_prompt, user_prompt) -> text.

Two backends:
  ollama  POST {OLLAMA_URL}/api/generate (default; stream off)
  openai  POST {OPENAI_BASE_URL}/chat/completions (any OpenAI-compatible server)

Backends raise InferenceError. The job loop never sees that exception:
run_inference() races the call against a hard timeout and turns any failure
into an "Error: ..." result, which is then settled like any other answer.
"""

import re
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Optional, Protocol

import requests

from bsvclaw.errors import InferenceError
from bsvclaw.logging_config import get_logger

logger = get_logger(__name__)

THINK_RE = re.compile(r"<think>[\s\S]*?</think>")
NO_RESPONSE = "(no response)"


class InferenceBackend(Protocol):
    def complete(self, system_prompt: str, user_prompt: str) -> str:
        ...


def clean_answer(text: str) -> str:
    """Drop <think>...</think> blocks some models emit inline."""
    return THINK_RE.sub("", text or "").strip()


class OllamaBackend:
    """Local Ollama server (qwen3 etc)."""

    def __init__(self, base_url: str = "http://localhost:11434", model: str = "qwen3:8b", timeout: float = 120.0):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        payload = {"model": self.model, "prompt": user_prompt, "stream": False}
        if system_prompt:
            payload["system"] = system_prompt
        try:
            r = requests.post(f"{self.base_url}/api/generate", json=payload, timeout=self.timeout)
            r.raise_for_status()
            data = r.json()
        except requests.RequestException as e:
            raise InferenceError(f"Ollama call failed: {e}") from e
        except ValueError as e:
            raise InferenceError("Ollama returned invalid JSON") from e
        # qwen3 sometimes leaves `response` empty and answers in `thinking`
        answer = data.get("response") or ""
        if not answer and data.get("thinking"):
            answer = data["thinking"]
        return clean_answer(answer) or NO_RESPONSE


class OpenAIBackend:
    """OpenAI-compatible /chat/completions endpoint."""

    def __init__(
        self,
        base_url: str = "https://api.openai.com/v1",
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        timeout: float = 60.0,
        max_tokens: int = 1024,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        if not self.api_key:
            raise InferenceError("No OPENAI_API_KEY set.")
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})
        try:
            r = requests.post(
                f"{self.base_url}/chat/completions",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json={"model": self.model, "messages": messages, "max_tokens": self.max_tokens},
                timeout=self.timeout,
            )
            r.raise_for_status()
            data = r.json()
        except requests.RequestException as e:
            raise InferenceError(f"LLM call failed: {e}") from e
        except ValueError as e:
            raise InferenceError("LLM returned invalid JSON") from e
        content = (data.get("choices") or [{}])[0].get("message", {}).get("content", "")
        if isinstance(content, str):
            return clean_answer(content) or NO_RESPONSE
        return NO_RESPONSE


def build_backend(config) -> InferenceBackend:
    if config.llm_backend == "openai":
        return OpenAIBackend(
            base_url=config.openai_base_url,
            api_key=config.openai_api_key,
            model=config.model,
            timeout=config.inference_timeout,
        )
    return OllamaBackend(base_url=config.ollama_url, model=config.model, timeout=config.inference_timeout)


def run_inference(backend: InferenceBackend, system_prompt: str, user_prompt: str, timeout: float) -> str:
    """
    Call the backend with a hard upper bound on the wait.

    Returns the answer, or "Error: <reason>" on failure or timeout. Never
    raises and never retries. A timed-out call keeps running on its worker
    thread; its eventual answer is discarded.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="inference")
    future = executor.submit(backend.complete, system_prompt, user_prompt)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        logger.warning(f"Inference timed out after {timeout:.0f}s")
        return f"Error: inference timed out after {timeout:.0f}s"
    except InferenceError as e:
        logger.warning(f"Inference failed: {e.message}")
        return f"Error: {e.message}"
    except Exception as e:
        logger.warning(f"Inference failed: {type(e).__name__}: {e}")
        return f"Error: {e}"
    finally:
        executor.shutdown(wait=False)
