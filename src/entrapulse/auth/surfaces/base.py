"""Embedded web surface boundary.

The host application owns the actual window (an embedded browser view in the
desktop app, the system browser in the CLI). The interactive flow only needs
to open it at a URL, close it, and hear about navigations, load failures and
the user closing it.
"""

from __future__ import annotations

from typing import Protocol


class WebSurfaceListener(Protocol):
    """Receives web surface events.

    All callbacks run on the event loop thread and must not block.
    """

    def on_navigation(self, url: str) -> None:
        """Called for every navigation or redirect the surface is about to follow."""
        ...

    def on_load_failure(self, url: str, description: str) -> None:
        """Called when a page fails to load."""
        ...

    def on_closed(self) -> None:
        """Called when the surface is closed, by the user or by close()."""
        ...


class WebSurface(Protocol):
    """A single-use window capable of showing the sign-in page."""

    async def open(self, url: str, listener: WebSurfaceListener) -> None:
        """Show the surface navigated to url and start delivering events."""
        ...

    def close(self) -> None:
        """Close the surface programmatically."""
        ...


class WebSurfaceFactory(Protocol):
    """Creates a fresh surface for each login attempt."""

    def __call__(self) -> WebSurface: ...
