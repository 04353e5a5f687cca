"""
HTTP API - Ingest upstream configuration and report render status.

A small FastAPI application in front of the resource store. Upstream
configuration kinds can be written and removed; the ``ConfigStatus`` output
is read-only. Specs of sensitive kinds are redacted unless explicitly
requested.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field, field_validator

from resources import Resource, ResourceRegistry, SpecValidationError
from status import StatusPublisher
from store import ResourceStore

logger = logging.getLogger(__name__)

MAX_SPEC_SIZE = 1024 * 1024  # 1MB
REDACTED = "<redacted>"


class ResourceWrite(BaseModel):
    """Request body for writing an upstream resource."""

    spec: Dict[str, Any] = Field(..., description="Resource spec")

    @field_validator("spec")
    @classmethod
    def validate_spec_size(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        if len(json.dumps(v)) > MAX_SPEC_SIZE:
            raise ValueError(f"spec exceeds maximum size of {MAX_SPEC_SIZE // 1024}KB")
        return v


class ResourceResponse(BaseModel):
    """A stored resource."""

    kind: str
    namespace: str
    resource_id: str
    version: str
    spec: Any
    redacted: bool = False


class ResourceSummary(BaseModel):
    """Presence and version of a registered kind."""

    kind: str
    namespace: str
    resource_id: str
    required: bool
    sensitive: bool
    output: bool
    present: bool
    version: Optional[str] = None


class StatusResponse(BaseModel):
    """Published render status."""

    ready: bool
    version: str


class StatusAPI:
    """REST API served by uvicorn alongside the controller."""

    def __init__(
        self,
        store: ResourceStore,
        registry: ResourceRegistry,
        runtime=None,
        host: str = "127.0.0.1",
        port: int = 8000,
        log_level: str = "info",
    ):
        self.store = store
        self.registry = registry
        self.runtime = runtime
        self.host = host
        self.port = port
        self.log_level = log_level
        self.server: Optional[uvicorn.Server] = None
        self.status_publisher = StatusPublisher(store)

        self.app = FastAPI(
            title="Static Pod Config Renderer API",
            description="Upstream configuration ingest and render status",
            version="1.0.0",
        )
        self._setup_routes()

    def _definition(self, kind: str):
        if not self.registry.has(kind):
            raise HTTPException(status_code=404, detail=f"Unknown kind: {kind}")
        return self.registry.get(kind)

    def _writable_definition(self, kind: str):
        definition = self._definition(kind)
        if definition.output:
            raise HTTPException(
                status_code=403, detail=f"{kind} is written by the renderer only"
            )
        return definition

    def _response(self, resource: Resource, reveal: bool) -> ResourceResponse:
        sensitive = self.registry.get(resource.kind).sensitive
        redact = sensitive and not reveal
        return ResourceResponse(
            kind=resource.kind,
            namespace=resource.namespace,
            resource_id=resource.resource_id,
            version=resource.version,
            spec=REDACTED if redact else resource.spec,
            redacted=redact,
        )

    def _setup_routes(self) -> None:
        """
        Set up all FastAPI routes.

        - Health: GET /healthz
        - Status: GET /api/v1/status
        - Resources: /api/v1/resources[/{kind}]
        """

        @self.app.get("/healthz")
        async def health_check():
            """Liveness plus the outcome of the last render cycle."""
            healthy = bool(self.runtime and self.runtime.healthy)
            body: Dict[str, Any] = {"status": "ok", "healthy": healthy}
            if self.runtime is not None and self.runtime.last_error:
                body["last_error"] = self.runtime.last_error
            return body

        @self.app.get("/api/v1/status", response_model=StatusResponse)
        async def get_status():
            """Get the published ConfigStatus."""
            status = await self.status_publisher.current()
            if status is None:
                raise HTTPException(
                    status_code=404, detail="Configuration has not been rendered yet"
                )
            return StatusResponse(ready=status.ready, version=status.version)

        @self.app.get("/api/v1/resources", response_model=List[ResourceSummary])
        async def list_resources():
            """List every registered kind with its presence and version."""
            summaries = []
            for kind in self.registry.list_kinds():
                definition = self.registry.get(kind)
                resource = await self.store.get_optional(
                    kind, definition.default_id, definition.namespace
                )
                summaries.append(
                    ResourceSummary(
                        kind=kind,
                        namespace=definition.namespace,
                        resource_id=definition.default_id,
                        required=definition.required,
                        sensitive=definition.sensitive,
                        output=definition.output,
                        present=resource is not None,
                        version=resource.version if resource else None,
                    )
                )
            return summaries

        @self.app.get("/api/v1/resources/{kind}", response_model=ResourceResponse)
        async def get_resource(kind: str, reveal: bool = False):
            """Get a resource; sensitive specs are redacted unless revealed."""
            definition = self._definition(kind)
            resource = await self.store.get_optional(
                kind, definition.default_id, definition.namespace
            )
            if resource is None:
                raise HTTPException(status_code=404, detail=f"{kind} not found")
            return self._response(resource, reveal)

        @self.app.put("/api/v1/resources/{kind}", response_model=ResourceResponse)
        async def put_resource(kind: str, body: ResourceWrite):
            """Create or replace an upstream resource."""
            definition = self._writable_definition(kind)
            try:
                resource = await self.store.put(
                    kind, definition.default_id, body.spec, definition.namespace
                )
            except SpecValidationError as e:
                raise HTTPException(status_code=400, detail=str(e))

            logger.info(f"Stored {kind} at version {resource.version}")
            return self._response(resource, reveal=False)

        @self.app.delete("/api/v1/resources/{kind}")
        async def delete_resource(kind: str):
            """Delete an upstream resource."""
            definition = self._writable_definition(kind)
            deleted = await self.store.delete(
                kind, definition.default_id, definition.namespace
            )
            if not deleted:
                raise HTTPException(status_code=404, detail=f"{kind} not found")

            logger.info(f"Deleted {kind}")
            return {"message": f"{kind} deleted", "kind": kind}

    async def start(self) -> None:
        """Serve the API until stopped."""
        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level=self.log_level.lower(),
        )
        self.server = uvicorn.Server(config)

        logger.info(f"Starting HTTP API on {self.host}:{self.port}")
        await self.server.serve()

    async def stop(self) -> None:
        """Stop the HTTP server gracefully."""
        logger.info("Stopping HTTP API")
        if self.server:
            self.server.should_exit = True
