from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from app.config import Settings
from app.errors import BadRequest, InternalError, PayloadTooLarge, RelayError, UpstreamError

MAX_IMAGE_BASE64_CHARS = 10_000_000
RESPONSE_MIME_TYPE = "image/png"
RESPONSE_MODALITIES = ["TEXT", "IMAGE"]

_DATA_URL_PREFIX = "data:"
_DATA_URL_SEPARATOR = ";base64,"
# Characters a regex "." refuses to match.
_LINE_TERMINATORS = ("\n", "\r", "\u2028", "\u2029")


class ImageInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    data_url: str | None = Field(default=None, alias="dataUrl")
    mime_type: str | None = Field(default=None, alias="mimeType")
    base64: str | None = None


class GenerationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: str | None = None
    style_prompt: str | None = Field(default=None, alias="stylePrompt")
    image: ImageInput | None = None


class RelayResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mime_type: str = Field(default=RESPONSE_MIME_TYPE, alias="mimeType")
    image_base64: str = Field(alias="imageBase64")
    text: str | None = None


@dataclass(frozen=True)
class DecodedDataUrl:
    mime_type: str
    base64: str


@dataclass(frozen=True)
class UnrecognizedDataUrl:
    pass


def parse_data_url(data_url: str) -> DecodedDataUrl | UnrecognizedDataUrl:
    """Split ``data:<mime>;base64,<payload>`` into its two halves.

    Mirrors ``^data:(.+);base64,(.+)$``: the mime type runs up to the last
    separator that still leaves a non-empty payload, and neither half may
    contain a line terminator.
    """
    if not data_url.startswith(_DATA_URL_PREFIX) or any(t in data_url for t in _LINE_TERMINATORS):
        return UnrecognizedDataUrl()

    body = data_url[len(_DATA_URL_PREFIX):]
    index = body.rfind(_DATA_URL_SEPARATOR, 0, len(body) - 1)
    if index < 1:
        return UnrecognizedDataUrl()

    return DecodedDataUrl(
        mime_type=body[:index],
        base64=body[index + len(_DATA_URL_SEPARATOR):],
    )


def compose_prompt(prompt: str | None, style_prompt: str | None) -> str:
    return ", ".join(part for part in (prompt, style_prompt) if part)


def _resolve_image(image: ImageInput) -> tuple[str | None, str | None]:
    if image.data_url:
        decoded = parse_data_url(image.data_url)
        if isinstance(decoded, DecodedDataUrl):
            return decoded.mime_type, decoded.base64
        logger.warning("Ignoring image with unrecognized dataUrl")
        return None, None
    return image.mime_type, image.base64


def build_parts(request: GenerationRequest) -> list[dict[str, Any]]:
    parts: list[dict[str, Any]] = []

    full_prompt = compose_prompt(request.prompt, request.style_prompt)
    if full_prompt:
        parts.append({"text": full_prompt})

    if request.image is not None:
        mime_type, image_b64 = _resolve_image(request.image)

        if image_b64 and len(image_b64) > MAX_IMAGE_BASE64_CHARS:
            raise PayloadTooLarge("Image too large.")

        if mime_type and image_b64:
            parts.append({"inlineData": {"mimeType": mime_type, "data": image_b64}})

    return parts


def build_payload(parts: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "contents": [{"parts": parts}],
        "generationConfig": {"responseModalities": list(RESPONSE_MODALITIES)},
    }


def _first_candidate_parts(payload: Any) -> list[dict[str, Any]]:
    if not isinstance(payload, dict):
        return []
    candidates = payload.get("candidates")
    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
        return []
    content = candidates[0].get("content")
    if not isinstance(content, dict):
        return []
    parts = content.get("parts")
    if not isinstance(parts, list):
        return []
    return [part for part in parts if isinstance(part, dict)]


def _inline_data(part: dict[str, Any]) -> Any:
    inline_data = part.get("inlineData")
    if inline_data is None:
        inline_data = part.get("inline_data")
    return inline_data


def extract_image(payload: Any) -> str | None:
    """Return the ``data`` of the first part carrying inline data.

    Only that part is considered; an empty or non-object ``inlineData`` there
    means no image.
    """
    for part in _first_candidate_parts(payload):
        inline_data = _inline_data(part)
        if isinstance(inline_data, dict) or inline_data:
            data = inline_data.get("data") if isinstance(inline_data, dict) else None
            return data if isinstance(data, str) and data else None
    return None


def extract_text(payload: Any) -> str | None:
    for part in _first_candidate_parts(payload):
        text = part.get("text")
        if isinstance(text, str) and text:
            return text
    return None


class ImageGenerationRelay:
    """Forwards one generation request to Gemini and reshapes the answer.

    Holds nothing but the settings and an optional transport, so a single
    instance is shared by all concurrent requests.
    """

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.settings = settings
        self._transport = transport

    async def handle(self, request: GenerationRequest) -> RelayResponse:
        try:
            return await self._handle(request)
        except RelayError:
            raise
        except Exception as exc:
            logger.exception("Server error: {}", exc)
            raise InternalError() from exc

    async def _handle(self, request: GenerationRequest) -> RelayResponse:
        if not request.prompt and request.image is None:
            raise BadRequest("Provide at least a prompt or an image.")

        parts = build_parts(request)
        logger.debug(
            "Sending {} part(s) to {}: {}",
            len(parts),
            self.settings.gemini_model,
            [next(iter(part)) for part in parts],
        )

        response = await self._post(build_payload(parts))
        data = response.json()

        if not response.is_success:
            logger.warning("Gemini API error ({}): {}", response.status_code, data)
            raise UpstreamError("Gemini API error", status_code=response.status_code, extra={"details": data})

        image_b64 = extract_image(data)
        if not image_b64:
            logger.warning("No image found in model response: {}", data)
            raise UpstreamError("No image found in model response.", extra={"modelResponse": data})

        return RelayResponse(mime_type=RESPONSE_MIME_TYPE, image_base64=image_b64, text=extract_text(data))

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        async with httpx.AsyncClient(
            timeout=self.settings.upstream_timeout,
            transport=self._transport,
            follow_redirects=True,
        ) as client:
            return await client.post(
                self.settings.model_url,
                params={"key": self.settings.gemini_api_key},
                headers={"Content-Type": "application/json"},
                json=payload,
            )
