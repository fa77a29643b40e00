"""Transient registry server the VM reads its bootstrap settings from.

The server exists only for the duration of a deploy run. Settings are kept
in memory, keyed by instance id, and every endpoint requires HTTP basic auth.
"""

from __future__ import annotations

import secrets
import threading
import time
from types import TracebackType
from typing import Annotated

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from microdeploy.config.defaults import REGISTRY_STARTUP_TIMEOUT
from microdeploy.lib.errors import RegistryError
from microdeploy.lib.logging_config import get_logger

logger = get_logger(__name__)

security = HTTPBasic()


class SettingsStore:
    """Thread-safe map of instance id to raw settings JSON."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._settings: dict[str, str] = {}

    def get(self, instance_id: str) -> str | None:
        with self._lock:
            return self._settings.get(instance_id)

    def save(self, instance_id: str, settings: str) -> None:
        with self._lock:
            self._settings[instance_id] = settings

    def delete(self, instance_id: str) -> bool:
        with self._lock:
            return self._settings.pop(instance_id, None) is not None


class RegistryServer:
    """HTTP registry served by uvicorn on a background thread.

    Attributes:
        username: Basic auth username
        password: Basic auth password
        store: Settings keyed by instance id
    """

    def __init__(
        self,
        username: str,
        password: str,
        startup_timeout: float = REGISTRY_STARTUP_TIMEOUT,
    ) -> None:
        self.username = username
        self.password = password
        self.startup_timeout = startup_timeout
        self.store = SettingsStore()
        self._server: uvicorn.Server | None = None
        self._thread: threading.Thread | None = None

    def create_app(self) -> FastAPI:
        """Create the FastAPI application exposing the settings endpoints."""
        app = FastAPI(title="microdeploy registry", docs_url=None, redoc_url=None)

        def authenticate(
            credentials: Annotated[HTTPBasicCredentials, Depends(security)],
        ) -> None:
            user_ok = secrets.compare_digest(credentials.username, self.username)
            password_ok = secrets.compare_digest(credentials.password, self.password)
            if not (user_ok and password_ok):
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Invalid credentials",
                    headers={"WWW-Authenticate": "Basic"},
                )

        @app.get("/instances/{instance_id}/settings", dependencies=[Depends(authenticate)])
        async def get_settings(instance_id: str) -> dict[str, str]:
            settings = self.store.get(instance_id)
            if settings is None:
                raise HTTPException(status_code=404, detail="not_found")
            return {"settings": settings, "status": "ok"}

        @app.put("/instances/{instance_id}/settings", dependencies=[Depends(authenticate)])
        async def put_settings(instance_id: str, request: Request) -> dict[str, str]:
            body = await request.body()
            self.store.save(instance_id, body.decode("utf-8"))
            logger.debug(f"Registry saved settings for instance {instance_id}")
            return {"status": "ok"}

        @app.delete(
            "/instances/{instance_id}/settings", dependencies=[Depends(authenticate)]
        )
        async def delete_settings(instance_id: str) -> dict[str, str]:
            self.store.delete(instance_id)
            return {"status": "ok"}

        return app

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, host: str, port: int) -> None:
        """Start serving and block until the socket is listening.

        Raises:
            RegistryError: If already running or not listening within the startup timeout
        """
        if self.is_running:
            raise RegistryError("Registry server is already running")

        config = uvicorn.Config(
            app=self.create_app(),
            host=host,
            port=port,
            log_level="warning",
            lifespan="off",
        )
        server = uvicorn.Server(config)
        thread = threading.Thread(target=server.run, name="registry-server", daemon=True)
        thread.start()

        deadline = time.monotonic() + self.startup_timeout
        while not server.started:
            if not thread.is_alive():
                raise RegistryError(f"Registry server failed to start on {host}:{port}")
            if time.monotonic() >= deadline:
                server.should_exit = True
                raise RegistryError(
                    f"Registry server did not start on {host}:{port} "
                    f"within {self.startup_timeout:g}s"
                )
            time.sleep(0.05)

        self._server = server
        self._thread = thread
        logger.info(f"Registry server listening on http://{host}:{port}")

    def stop(self) -> None:
        if self._server is None:
            return
        self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout=self.startup_timeout)
        self._server = None
        self._thread = None
        logger.info("Registry server stopped")

    def __enter__(self) -> RegistryServer:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.stop()
