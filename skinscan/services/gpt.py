"""GPT-Vision integration using the OpenAI client."""

from __future__ import annotations

import atexit
import logging
import os
from dataclasses import dataclass

import httpx
from openai import APITimeoutError, OpenAI, OpenAIError

from skinscan.config import Settings

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 60
_MODEL = "gpt-4o-mini"

_settings: Settings | None = None

_client: OpenAI | None = None
_http_client: httpx.Client | None = None


def _load_timeout() -> int:
    raw = os.environ.get("OPENAI_TIMEOUT_SECONDS")
    try:
        value = int(raw) if raw is not None else _DEFAULT_TIMEOUT
    except ValueError:
        return _DEFAULT_TIMEOUT
    return value if value > 0 else _DEFAULT_TIMEOUT


def _load_temperature() -> float:
    default = _settings.openai_temperature if _settings is not None else 0.2
    try:
        return float(os.environ.get("OPENAI_TEMPERATURE", default))
    except ValueError:
        return default


def _model() -> str:
    default = _settings.openai_model if _settings is not None else _MODEL
    return os.environ.get("OPENAI_MODEL") or default


def _get_client() -> OpenAI:
    """Lazily build and cache the OpenAI client."""

    global _client, _http_client
    if _client is None:
        mounts: dict[str, httpx.HTTPTransport] = {}
        http_proxy = os.environ.get("HTTP_PROXY")
        https_proxy = os.environ.get("HTTPS_PROXY")
        if http_proxy:
            mounts["http://"] = httpx.HTTPTransport(proxy=http_proxy)
        if https_proxy:
            mounts["https://"] = httpx.HTTPTransport(proxy=https_proxy)

        api_key = os.environ.get("OPENAI_API_KEY") or (
            _settings.openai_api_key if _settings is not None else None
        )
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY environment variable is not set")
        _http_client = httpx.Client(mounts=mounts) if mounts else None
        _client = OpenAI(api_key=api_key, http_client=_http_client)
    return _client


def _close_client() -> None:
    global _client, _http_client
    if _http_client is not None:
        _http_client.close()
    _http_client = None
    _client = None


atexit.register(_close_client)


def init_gpt(cfg: Settings) -> None:
    """Store settings and drop any cached client."""
    global _settings
    _settings = cfg
    _close_client()


_SYSTEM_PROMPT = (
    "You are a dermatologist assistant. Analyze skin lesion images. "
    "Respond ONLY in compact JSON with keys: condition (string), "
    "confidence (0-1), advice (string), urgency (one of: 'emergency','soon',"
    "'routine','none'), medications (object with fields: otc [array of strings], "
    "prescription [array of strings], caution [string]). "
    "Always return the most likely condition with confidence. If multiple "
    "conditions are possible, return the most probable one with confidence and "
    "mention uncertainty in advice. OTC items should be non-prescription and "
    "region-agnostic. Prescription items must include a clinician disclaimer in "
    "'caution' and avoid exact dosing. This is informational, not a diagnosis. "
    "Do NOT include any text outside the JSON object."
)

_USER_PROMPT = (
    "Analyze the attached image and respond in JSON only. Do not include code "
    "fences or any extra text, return a single JSON object."
)


@dataclass(frozen=True)
class Completion:
    content: str
    model: str
    id: str


def build_messages(image_url: str, description: str | None = None) -> list[dict]:
    notes = (description or "").strip()
    extra = f"\nPatient notes: {notes}" if notes else "\nPatient notes: (none provided)"
    return [
        {"role": "system", "content": _SYSTEM_PROMPT},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": _USER_PROMPT + extra},
                {"type": "image_url", "image_url": {"url": image_url}},
            ],
        },
    ]


def call_gpt_vision(image_url: str, description: str | None = None) -> Completion:
    """Ask the model to assess the image at ``image_url``.

    Returns the raw completion text together with the model name and the
    completion id. The text is not parsed here.

    Raises
    ------
    TimeoutError
        The request timed out.
    RuntimeError
        The client is not configured or the API call failed.
    """

    client = _get_client()
    model = _model()
    try:
        response = client.chat.completions.create(
            model=model,
            temperature=_load_temperature(),
            messages=build_messages(image_url, description),
            timeout=_load_timeout(),
        )
    except APITimeoutError as exc:
        raise TimeoutError("OpenAI request timed out") from exc
    except OpenAIError as exc:
        raise RuntimeError(f"OpenAI request failed: {exc}") from exc

    choices = getattr(response, "choices", None) or []
    content = ""
    if choices:
        message = getattr(choices[0], "message", None)
        content = getattr(message, "content", None) or ""
    if not content:
        logger.warning("Empty completion from %s", model)
    return Completion(
        content=content,
        model=getattr(response, "model", None) or model,
        id=getattr(response, "id", None) or "",
    )


__all__ = ["Completion", "build_messages", "call_gpt_vision", "init_gpt"]
