import base64
import json
from typing import Any
from urllib.parse import parse_qs, urlparse

import pytest

from entrapulse.auth.models.config import AuthConfig, AuthMode
from entrapulse.auth.surfaces.base import WebSurfaceListener


def make_jwt(payload: dict[str, Any]) -> str:
    """Build an unsigned JWT-shaped token carrying the given claims."""

    def encode(part: dict[str, Any]) -> str:
        raw = json.dumps(part).encode("utf-8")
        return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")

    return f"{encode({'alg': 'none', 'typ': 'JWT'})}.{encode(payload)}.signature"


class FakeSurface:
    """In-memory web surface that lets tests fire events by hand."""

    def __init__(self):
        self.opened_url: str | None = None
        self.listener: WebSurfaceListener | None = None
        self.close_calls = 0
        self.closed = False

    async def open(self, url: str, listener: WebSurfaceListener) -> None:
        self.opened_url = url
        self.listener = listener

    def close(self) -> None:
        self.close_calls += 1
        if not self.closed:
            self.closed = True
            # Real windows report their own closing too
            self.listener.on_closed()

    @property
    def query(self) -> dict[str, list[str]]:
        return parse_qs(urlparse(self.opened_url).query)

    @property
    def state(self) -> str:
        return self.query["state"][0]

    def navigate(self, url: str) -> None:
        self.listener.on_navigation(url)

    def fail_load(self, url: str, description: str = "ERR_CONNECTION_REFUSED") -> None:
        self.listener.on_load_failure(url, description)

    def user_close(self) -> None:
        self.closed = True
        self.listener.on_closed()


class SurfaceFactory:
    """Hands out FakeSurfaces and remembers them."""

    def __init__(self):
        self.surfaces: list[FakeSurface] = []

    def __call__(self) -> FakeSurface:
        surface = FakeSurface()
        self.surfaces.append(surface)
        return surface

    @property
    def last(self) -> FakeSurface:
        return self.surfaces[-1]


@pytest.fixture
def delegated_config() -> AuthConfig:
    return AuthConfig(
        client_id="client-123",
        tenant_id="tenant-456",
        scopes=["User.Read", "Directory.Read.All"],
        mode=AuthMode.DELEGATED,
    )


@pytest.fixture
def application_config() -> AuthConfig:
    return AuthConfig(
        client_id="client-123",
        tenant_id="tenant-456",
        client_secret="s3cret",
        scopes=["https://graph.microsoft.com/.default"],
        mode=AuthMode.APPLICATION,
    )


@pytest.fixture
def surface_factory() -> SurfaceFactory:
    return SurfaceFactory()
