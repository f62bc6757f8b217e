"""Gemini client used to generate structured revision notes."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Mapping, MutableMapping, Protocol, Sequence, TypeAlias, cast

import httpx

logger = logging.getLogger(__name__)

JSONPrimitive: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONPrimitive | list["JSONValue"] | dict[str, "JSONValue"]
JSONObject: TypeAlias = dict[str, JSONValue]


class GeminiClientError(RuntimeError):
    """Raised when a Gemini response cannot be parsed or indicates failure."""


@dataclass(frozen=True, slots=True)
class GeminiTextPart:
    text: str


@dataclass(frozen=True, slots=True)
class GeminiMessage:
    """Single Gemini message consisting of role-tagged text parts."""

    role: str
    parts: Sequence[GeminiTextPart]


class GenerationConfig:
    """Typed container for Gemini generation configuration parameters."""

    __slots__ = (
        "_temperature",
        "_top_p",
        "_max_output_tokens",
        "_response_mime_type",
    )

    def __init__(
        self,
        *,
        temperature: float | None = None,
        top_p: float | None = None,
        max_output_tokens: int | None = None,
        response_mime_type: str | None = "application/json",
    ) -> None:
        self._temperature = temperature
        self._top_p = top_p
        self._max_output_tokens = max_output_tokens
        self._response_mime_type = response_mime_type

    def as_payload(self) -> JSONObject:
        payload: JSONObject = {}
        if self._temperature is not None:
            payload["temperature"] = self._temperature
        if self._top_p is not None:
            payload["topP"] = self._top_p
        if self._max_output_tokens is not None:
            payload["maxOutputTokens"] = self._max_output_tokens
        if self._response_mime_type:
            payload["responseMimeType"] = self._response_mime_type
        return payload


class GenerativeClient(Protocol):
    """The subset of Gemini behaviour the note agent relies on."""

    @property
    def default_model(self) -> str: ...

    async def generate_json(
        self,
        *,
        system_instruction: str,
        messages: Sequence[GeminiMessage],
        response_schema: Mapping[str, JSONValue] | None = None,
        generation_config: GenerationConfig | None = None,
        model: str | None = None,
    ) -> Mapping[str, JSONValue]: ...

    async def aclose(self) -> None: ...


class GeminiGenerativeClient:
    """Thin async client for Google Gemini models."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        endpoint: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("A Gemini API key is required.")
        self._api_key = api_key
        self._model = model
        self._client = http_client or httpx.AsyncClient(
            base_url=endpoint,
            timeout=httpx.Timeout(timeout),
            headers={"Content-Type": "application/json"},
        )
        self._owns_client = http_client is None

    @property
    def default_model(self) -> str:
        return self._model

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def generate_json(
        self,
        *,
        system_instruction: str,
        messages: Sequence[GeminiMessage],
        response_schema: Mapping[str, JSONValue] | None = None,
        generation_config: GenerationConfig | None = None,
        model: str | None = None,
    ) -> Mapping[str, JSONValue]:
        """Send a structured JSON generation request and return the decoded payload."""
        target_model = model or self._model
        path_component = (
            target_model if target_model.startswith("models/") else f"models/{target_model}"
        )
        url = f"/{path_component}:generateContent"

        contents_payload: list[JSONValue] = [
            {
                "role": message.role,
                "parts": [{"text": part.text} for part in message.parts],
            }
            for message in messages
        ]
        config_payload: JSONObject = generation_config.as_payload() if generation_config else {}
        if "responseMimeType" not in config_payload:
            config_payload["responseMimeType"] = "application/json"
        if response_schema:
            config_payload["responseJsonSchema"] = _resolve_schema(
                ensure_json_object(response_schema)
            )

        payload: JSONObject = {
            "system_instruction": {"parts": [{"text": system_instruction}]},
            "contents": contents_payload,
            "generationConfig": config_payload,
        }

        try:
            response = await self._client.post(
                url,
                headers={"x-goog-api-key": self._api_key},
                json=payload,
            )
        except httpx.HTTPError as exc:
            logger.error(
                "Gemini request could not be sent",
                extra={"url": url, "model": target_model, "reason": str(exc)},
            )
            raise GeminiClientError(f"Gemini request failed: {exc}") from exc
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            error_summary = _summarize_response_error(exc.response)
            logger.error(
                "Gemini request failed",
                extra={
                    "status_code": exc.response.status_code,
                    "url": str(exc.request.url),
                    "model": target_model,
                    "error_summary": error_summary,
                    "request_id": exc.response.headers.get("x-request-id"),
                },
            )
            raise GeminiClientError(
                f"Gemini request failed ({exc.response.status_code}): {error_summary}"
            ) from exc

        data = response.json()
        feedback = data.get("promptFeedback")
        if feedback and feedback.get("blockReason"):
            raise GeminiClientError(f"Gemini blocked the request: {feedback['blockReason']}")

        candidates = data.get("candidates", [])
        if not candidates:
            raise GeminiClientError("Gemini response did not contain any candidates.")

        candidate = candidates[0]
        finish_reason = candidate.get("finishReason")
        if finish_reason and finish_reason not in {"STOP", "FINISH"}:
            raise GeminiClientError(
                f"Gemini did not finish successfully (finishReason={finish_reason})."
            )

        for part in candidate.get("content", {}).get("parts", []):
            if isinstance(part.get("json"), dict):
                return ensure_json_object(part["json"])
            if isinstance(part.get("text"), str):
                return self._parse_text_json(part["text"])

        raise GeminiClientError("Unable to locate JSON payload in Gemini response.")

    @staticmethod
    def _parse_text_json(payload: str) -> Mapping[str, JSONValue]:
        try:
            parsed = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise GeminiClientError("Gemini response was not valid JSON.") from exc
        if not isinstance(parsed, MutableMapping):
            raise GeminiClientError("Gemini response did not contain a JSON object.")
        return ensure_json_object(parsed)


def _ensure_json_value(value: JSONValue | object, *, path: str = "root") -> JSONValue:
    """Validate nested JSON content and raise descriptive errors when invalid."""
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple)):
        return [
            _ensure_json_value(item, path=f"{path}[{index}]") for index, item in enumerate(value)
        ]
    if isinstance(value, dict):
        return ensure_json_object(cast(Mapping[str, JSONValue | object], value), path=path)
    raise GeminiClientError(f"Unsupported JSON value at {path}: {type(value)!r}")


def ensure_json_object(
    payload: Mapping[str, JSONValue | object],
    *,
    path: str = "root",
) -> JSONObject:
    """Coerce mappings into JSON dictionaries while validating keys and values."""
    result: JSONObject = {}
    for key, value in payload.items():
        if not isinstance(key, str):
            raise GeminiClientError(f"JSON keys must be strings (found {type(key)!r} at {path})")
        result[key] = _ensure_json_value(value, path=f"{path}.{key}")
    return result


def _resolve_schema(schema: JSONObject) -> JSONObject:
    """Inline $ref references so Gemini receives a fully-expanded schema."""

    if "$defs" not in schema and "$ref" not in schema:
        return schema

    defs_obj: dict[str, JSONValue] | None = None
    raw_defs = schema.get("$defs")
    if raw_defs is not None:
        if not isinstance(raw_defs, dict):
            raise GeminiClientError("Invalid JSON schema: $defs must be an object.")
        defs_obj = ensure_json_object(raw_defs)

    def _resolve(obj: JSONValue, *, trail: tuple[str, ...] = ()) -> JSONValue:
        if isinstance(obj, dict):
            if "$ref" in obj:
                ref_value = obj["$ref"]
                if not isinstance(ref_value, str) or not ref_value.startswith("#/$defs/"):
                    raise GeminiClientError(f"Unsupported $ref target: {ref_value}")
                ref_key = ref_value.split("/")[-1]
                if defs_obj is None or ref_key not in defs_obj:
                    raise GeminiClientError(f"Missing $defs entry for {ref_value}")
                if ref_value in trail:
                    raise GeminiClientError(f"Circular $ref detected for {ref_value}")
                return _resolve(defs_obj[ref_key], trail=trail + (ref_value,))
            return {
                key: _resolve(value, trail=trail) for key, value in obj.items() if key != "$defs"
            }
        if isinstance(obj, list):
            return [_resolve(item, trail=trail) for item in obj]
        return obj

    return {key: _resolve(value) for key, value in schema.items() if key != "$defs"}


def _summarize_response_error(response: httpx.Response) -> str:
    """Provide a concise textual summary for logging Gemini HTTP errors."""
    try:
        payload = response.json()
    except ValueError:
        text = response.text.strip()
        return text or "No response body"

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            message = error.get("message")
            status = error.get("status") or error.get("code")
            summary_parts = []
            if isinstance(status, str) and status:
                summary_parts.append(status)
            if isinstance(message, str) and message:
                summary_parts.append(message)
            return ": ".join(summary_parts) or "Gemini returned an error"
        message = payload.get("message")
        if isinstance(message, str) and message:
            return message
    return json.dumps(payload)


__all__ = [
    "GeminiClientError",
    "GeminiGenerativeClient",
    "GeminiMessage",
    "GeminiTextPart",
    "GenerationConfig",
    "GenerativeClient",
    "JSONObject",
    "JSONValue",
    "ensure_json_object",
]
