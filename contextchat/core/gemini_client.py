# contextchat/core/gemini_client.py
"""Async client for the Gemini REST API (countTokens / generateContent)."""
import hashlib
import time
from typing import Any, Dict, List, Optional, Sequence

import httpx
from loguru import logger

from ..config.schema import GEMINI_API_BASE_URL, GenerationConfig
from .errors import (ContentBlocked, InvalidCredential, MissingCredential, NetworkError,
                     RateLimited, RemoteApiError, TokenizerFailure)
from .models import ROLE_ASSISTANT, ROLE_USER, GenerationResult, Message, ProcessedFile

# Content filtering disabled for all adjustable categories
SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_NONE"},
]


def credential_fingerprint(credential: str) -> str:
    return hashlib.sha256(credential.encode("utf-8")).hexdigest()[:12]


def render_file_context(files: Sequence[ProcessedFile]) -> str:
    return "\n\n".join(f"--- File: {f.name} ---\n{f.content}" for f in files)


def build_prompt_text(prompt: str, file_context_text: str = "") -> str:
    if not file_context_text:
        return prompt
    return f"Use the following file contents as context:\n\n{file_context_text}\n\n--- User Query ---\n{prompt}"


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
        if isinstance(body, dict):
            err = body.get("error")
            if isinstance(err, dict) and err.get("message"):
                return str(err["message"])
            if body.get("message"):
                return str(body["message"])
    except ValueError:
        pass
    return response.text[:300] or response.reason_phrase


class GeminiClient:
    """One client per credential. Raises the RemoteApiError taxonomy."""

    def __init__(self, credential: str, base_url: str = GEMINI_API_BASE_URL,
                 timeout: float = 120.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        if not credential or not credential.strip():
            raise MissingCredential()
        self.fingerprint = credential_fingerprint(credential.strip())
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/",
            timeout=timeout,
            headers={"x-goog-api-key": credential.strip(), "Content-Type": "application/json"},
            transport=transport,
        )
        logger.debug(f"GeminiClient created for credential {self.fingerprint}")

    async def aclose(self):
        await self._client.aclose()

    async def _post(self, endpoint: str, payload: Dict[str, Any], counting: bool) -> Dict[str, Any]:
        try:
            response = await self._client.post(endpoint, json=payload)
        except httpx.TimeoutException as e:
            raise NetworkError(f"request timed out ({type(e).__name__})") from e
        except httpx.TransportError as e:
            raise NetworkError(str(e) or type(e).__name__) from e

        if response.status_code == 429:
            raise RateLimited(response.status_code)
        if not response.is_success:
            message = _error_message(response)
            if response.status_code in (401, 403) or (response.status_code == 400 and "api key" in message.lower()):
                raise InvalidCredential(status_code=response.status_code)
            if counting:
                raise TokenizerFailure(message, response.status_code)
            raise RemoteApiError(f"API Error: {message}", response.status_code)
        try:
            return response.json()
        except ValueError as e:
            if counting:
                raise TokenizerFailure("malformed response") from e
            raise RemoteApiError("API Error: malformed response") from e

    async def count_tokens(self, text: str, model_id: str) -> int:
        if not text:
            return 0
        payload = {"contents": [{"role": ROLE_USER, "parts": [{"text": text}]}]}
        data = await self._post(f"models/{model_id}:countTokens", payload, counting=True)
        return int(data.get("totalTokens", 0))

    async def generate_response(self,
                                history: Sequence[Message],
                                model_id: str,
                                generation: GenerationConfig,
                                system_instructions: str = "",
                                file_context_text: str = "") -> GenerationResult:
        """Sends the conversation; the last message must be the user's prompt."""
        turns = [m for m in history if not m.is_error]
        if not turns or turns[-1].role != ROLE_USER:
            raise ValueError("Attempted to generate a response without a final user prompt.")

        contents: List[Dict[str, Any]] = [
            {"role": "model" if m.role == ROLE_ASSISTANT else "user", "parts": [{"text": m.content}]}
            for m in turns[:-1]
        ]
        contents.append({"role": "user", "parts": [{"text": build_prompt_text(turns[-1].content, file_context_text)}]})

        generation = generation.for_model(model_id)
        payload: Dict[str, Any] = {
            "contents": contents,
            "safetySettings": SAFETY_SETTINGS,
            "generationConfig": {
                "temperature": generation.temperature,
                "maxOutputTokens": generation.output_length,
                "topP": generation.top_p,
            },
        }
        if system_instructions and system_instructions.strip():
            payload["systemInstruction"] = {"parts": [{"text": system_instructions}]}
        if file_context_text:
            logger.debug("Prepended file context to prompt.")

        start = time.perf_counter()
        data = await self._post(f"models/{model_id}:generateContent", payload, counting=False)
        response_time_ms = round((time.perf_counter() - start) * 1000)

        block_reason = (data.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            logger.warning(f"Prompt blocked: {block_reason}")
            raise ContentBlocked(block_reason)
        candidates = data.get("candidates") or []
        if not candidates:
            raise RemoteApiError("API returned no response candidates.")
        candidate = candidates[0]
        if candidate.get("finishReason") == "SAFETY":
            raise ContentBlocked("SAFETY")
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts)

        try:
            token_count = await self.count_tokens(text, model_id)
        except RemoteApiError as e:
            logger.error(f"Could not count response tokens: {e.user_message}")
            token_count = 0

        logger.info(f"Response from {model_id}: {len(text)} chars, {token_count} tokens, {response_time_ms} ms")
        return GenerationResult(text=text, token_count=token_count, response_time_ms=response_time_ms,
                                model_used=model_id, temperature=generation.temperature,
                                output_length=generation.output_length, top_p=generation.top_p)


class GeminiClientFactory:
    """Owns client lifetimes; one cached client per credential fingerprint."""

    def __init__(self, base_url: str = GEMINI_API_BASE_URL, timeout: float = 120.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url
        self.timeout = timeout
        self.transport = transport
        self._clients: Dict[str, GeminiClient] = {}

    def get(self, credential: str) -> GeminiClient:
        if not credential or not credential.strip():
            raise MissingCredential()
        key = credential_fingerprint(credential.strip())
        client = self._clients.get(key)
        if client is None:
            client = GeminiClient(credential, base_url=self.base_url, timeout=self.timeout, transport=self.transport)
            self._clients[key] = client
        return client

    async def aclose(self):
        clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            await client.aclose()
