import base64
import logging
from typing import Any, Dict, List, Optional

import openai
from openai import OpenAI

from amelie.chat_config import EffectiveConfig
from amelie.config import FORWARD_TOP_K, MODEL, TRANSCRIBE_MODEL

logger = logging.getLogger(__name__)

SAFETY_APOLOGY = (
    "Sorry, I can't generate a response to that request due to safety restrictions. "
    "Please try rephrasing your question in a different way."
)
EMPTY_APOLOGY = "Sorry, an error occurred while generating the response. Please try again."
TRANSPORT_APOLOGY = "Sorry, an error occurred. Please try again or rephrase your question."

# Responses API rejects smaller limits
_MIN_OUTPUT_TOKENS = 16
_SAFETY_CODES = ("content_filter", "content_policy_violation")


class GenerationError(Exception):
    apology = TRANSPORT_APOLOGY


class SafetyBlockedError(GenerationError):
    apology = SAFETY_APOLOGY


class EmptyResponseError(GenerationError):
    apology = EMPTY_APOLOGY


class TransportError(GenerationError):
    apology = TRANSPORT_APOLOGY


def apology_for(exc: BaseException) -> str:
    if isinstance(exc, GenerationError):
        return exc.apology
    return TRANSPORT_APOLOGY


def _item_to_dict(item: Any) -> Dict[str, Any]:
    if isinstance(item, dict):
        return item
    if hasattr(item, "model_dump"):
        return item.model_dump()
    return dict(item)


def _output_parts(output_items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    # items look like {"type":"message","content":[{"type":"output_text","text":"..."}]}
    parts: List[Dict[str, Any]] = []
    for it in output_items:
        if it.get("type") != "message":
            continue
        for c in it.get("content", []) or []:
            if isinstance(c, dict):
                parts.append(c)
    return parts


def _extract_text(response) -> str:
    output_items = [_item_to_dict(x) for x in (getattr(response, "output", None) or [])]
    parts = _output_parts(output_items)

    if any(p.get("type") == "refusal" for p in parts):
        raise SafetyBlockedError("model refused the request")

    details = getattr(response, "incomplete_details", None)
    reason = getattr(details, "reason", None) if details is not None else None
    if reason == "content_filter":
        raise SafetyBlockedError("response stopped by content filter")

    text = (getattr(response, "output_text", "") or "").strip()
    if not text:
        text = "\n".join(
            p["text"] for p in parts if isinstance(p.get("text"), str) and p["text"].strip()
        ).strip()
    if not text:
        raise EmptyResponseError(f"empty response (incomplete reason: {reason})")
    return text


def _wrap_api_error(exc: openai.APIError) -> GenerationError:
    code = getattr(exc, "code", None)
    if code in _SAFETY_CODES:
        return SafetyBlockedError(str(exc))
    return TransportError(f"{type(exc).__name__}: {exc}")


class GenerationClient:
    """
    Single entry point to the language model, parameterized per call by an
    EffectiveConfig. Every failure surfaces as a GenerationError subclass.
    """

    def __init__(
        self,
        client: Optional[OpenAI] = None,
        *,
        model: str = MODEL,
        transcribe_model: str = TRANSCRIBE_MODEL,
        forward_top_k: bool = FORWARD_TOP_K,
    ):
        self._client = client
        self.model = model
        self.transcribe_model = transcribe_model
        self.forward_top_k = forward_top_k

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI()
        return self._client

    def _request_kwargs(self, effective: EffectiveConfig) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "temperature": effective.temperature,
            "top_p": effective.top_p,
            "max_output_tokens": max(_MIN_OUTPUT_TOKENS, int(effective.max_output_tokens)),
        }
        if effective.system_instructions:
            kwargs["instructions"] = effective.system_instructions
        if self.forward_top_k:
            kwargs["extra_body"] = {"top_k": int(effective.top_k)}
        return kwargs

    def _create(self, effective: EffectiveConfig, input_items: List[Dict[str, Any]]) -> str:
        try:
            response = self.client.responses.create(input=input_items, **self._request_kwargs(effective))
        except openai.APIError as e:
            raise _wrap_api_error(e) from e
        return _extract_text(response)

    def generate_text(self, effective: EffectiveConfig, prompt: str) -> str:
        return self._create(effective, [{"role": "user", "content": prompt}])

    def describe_image(self, effective: EffectiveConfig, data: bytes, mime_type: str, request: str) -> str:
        encoded = base64.b64encode(data).decode("ascii")
        content = [
            {"type": "input_text", "text": request},
            {"type": "input_image", "image_url": f"data:{mime_type or 'image/jpeg'};base64,{encoded}"},
        ]
        return self._create(effective, [{"role": "user", "content": content}])

    def transcribe_audio(self, effective: EffectiveConfig, data: bytes, filename: str, mime_type: str) -> str:
        # bot name as a spelling hint for the transcript
        try:
            result = self.client.audio.transcriptions.create(
                model=self.transcribe_model,
                file=(filename or "audio.ogg", data, mime_type or "application/octet-stream"),
                prompt=effective.bot_name,
            )
        except openai.APIError as e:
            raise _wrap_api_error(e) from e
        text = (getattr(result, "text", "") or "").strip()
        if not text:
            raise EmptyResponseError("empty transcription")
        return text
