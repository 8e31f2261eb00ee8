"""System browser surface backed by a loopback HTTP listener.

Used when no embedded browser view is available (CLI, scripts). The sign-in
page opens in the user's default browser and the redirect lands on a small
Starlette app served by uvicorn on the redirect URI's port. The redirect is
reported to the flow as a navigation event, exactly like an embedded view
would report it.
"""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from collections.abc import Callable
from urllib.parse import urlparse

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse
from starlette.routing import Route

from entrapulse.auth.surfaces.base import WebSurfaceListener

logger = logging.getLogger(__name__)

_STARTUP_POLL_INTERVAL = 0.05

_COMPLETE_PAGE = (
    "<html><head><title>Sign-in complete</title></head>"
    "<body><p>Sign-in complete. You can close this window.</p></body></html>"
)


class LoopbackBrowserSurface:
    """Opens the system browser and listens on the loopback redirect URI.

    The user closing the browser tab cannot be observed, so on_closed only
    fires through close(). Callers that need a bound on the wait should wrap
    sign-in in asyncio.wait_for().
    """

    def __init__(
        self,
        redirect_uri: str,
        open_browser: Callable[[str], bool] = webbrowser.open,
        host: str = "localhost",
    ):
        parsed = urlparse(redirect_uri)
        self.host = host
        self.port = parsed.port or 80
        self._open_browser = open_browser
        self._listener: WebSurfaceListener | None = None
        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task[None] | None = None
        self._closed = False

        self._app = Starlette(
            routes=[
                Route("/", self._handle_redirect, methods=["GET"]),
                Route("/{path:path}", self._handle_redirect, methods=["GET"]),
            ]
        )

    async def open(self, url: str, listener: WebSurfaceListener) -> None:
        """Start the loopback listener and send the user to the sign-in page.

        Returns once the listener accepts connections, so the browser is
        never sent to a port nobody is serving.

        Raises:
            OSError: If the listener could not bind the redirect port
        """
        self._listener = listener

        config = uvicorn.Config(
            app=self._app, host=self.host, port=self.port, log_level="warning"
        )
        self._server = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(self._serve(self._server))
        self._serve_task.add_done_callback(self._on_serve_done)

        while not self._server.started:
            if self._serve_task.done():
                # Surfaces the OSError raised by _serve(), if any
                self._serve_task.result()
                raise OSError(
                    f"Loopback listener on {self.host}:{self.port} stopped before starting"
                )
            await asyncio.sleep(_STARTUP_POLL_INTERVAL)

        logger.info(f"Listening for sign-in redirect on {self.host}:{self.port}")

        if not self._open_browser(url):
            logger.warning(f"Could not open a browser. Visit this URL to sign in: {url}")

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        if self._server is not None:
            self._server.should_exit = True
        if self._serve_task is not None and not self._serve_task.done():
            if self._server is None or not self._server.started:
                self._serve_task.cancel()

        if self._listener is not None:
            self._listener.on_closed()

    async def _serve(self, server: uvicorn.Server) -> None:
        # uvicorn exits the process when it cannot bind; keep that inside the task
        try:
            await server.serve()
        except SystemExit as e:
            raise OSError(
                f"Loopback listener could not start on {self.host}:{self.port} "
                f"(exit code {e.code})"
            ) from e

    def _on_serve_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.debug(f"Loopback listener stopped: {error}")

    async def _handle_redirect(self, request: Request) -> HTMLResponse:
        url = str(request.url)
        logger.debug(f"Loopback listener received {request.url.path}")

        if self._listener is not None and not self._closed:
            self._listener.on_navigation(url)

        return HTMLResponse(_COMPLETE_PAGE)
