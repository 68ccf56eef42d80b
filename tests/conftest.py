from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from app.config import Settings
from app.main import create_app

STATIC_DIR = Path(__file__).resolve().parent.parent / "static"


def gemini_reply(*parts: dict) -> dict:
    return {"candidates": [{"content": {"role": "model", "parts": list(parts)}}]}


class StubUpstream:
    """Records outbound requests and answers with a canned response."""

    def __init__(self, status_code: int = 200, json_body=None, content: bytes | None = None, error: Exception | None = None):
        self.status_code = status_code
        self.json_body = json_body if json_body is not None else gemini_reply(
            {"inlineData": {"mimeType": "image/png", "data": "XYZ"}},
            {"text": "done"},
        )
        self.content = content
        self.error = error
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.content is not None:
            return httpx.Response(self.status_code, content=self.content)
        return httpx.Response(self.status_code, json=self.json_body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def settings():
    return Settings(gemini_api_key="test-key", static_dir=str(STATIC_DIR), _env_file=None)


@pytest.fixture
def upstream():
    return StubUpstream()


@pytest.fixture
def client(settings, upstream):
    app = create_app(settings, transport=upstream.transport)
    with TestClient(app) as c:
        yield c
