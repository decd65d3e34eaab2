"""FastAPI application for material search and catalog sync."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from itsdangerous import BadSignature
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.engine import Engine

from supplystack.db.session import create_engine_from_env
from supplystack.jobs.sync import SyncService, SyncSupervisor
from supplystack.logic.errors import NotFoundError, StorageError, ValidationError
from supplystack.logic.materials import (
    DEFAULT_LIMIT,
    MaterialFilters,
    browse_materials,
    get_material,
    list_categories,
    list_vendors,
    search_materials,
)
from supplystack.logic.preferences import get_preferences, save_preferences
from supplystack.logic.searches import list_saved_searches, save_search
from supplystack.logic.status import SyncStatus
from supplystack.utils.tokens import load_user_id

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    supervisor = getattr(app.state, "supervisor", None)
    if supervisor is not None:
        await supervisor.shutdown()
    engine = getattr(app.state, "engine", None)
    if engine is not None:
        engine.dispose()


app = FastAPI(title="SupplyStack API", lifespan=lifespan)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SyncTriggerResponse(CamelModel):
    sync_id: str


class SyncStatusResponse(CamelModel):
    sync_id: str
    status: str
    source: str
    category: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    materials_count: int | None = None
    error_message: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    progress: int

    @classmethod
    def from_status(cls, status: SyncStatus) -> "SyncStatusResponse":
        return cls(
            sync_id=status.sync_id,
            status=status.status,
            source=status.source,
            category=status.category,
            started_at=status.started_at,
            completed_at=status.completed_at,
            materials_count=status.materials_count,
            error_message=status.error_message,
            metadata=status.metadata,
            progress=status.progress,
        )


class CancelResponse(CamelModel):
    success: bool
    message: str


class MaterialResponse(CamelModel):
    identifier: str
    name: str
    description: str = ""
    price: float | None = None
    category: str
    url: str
    image_url: str | None = None
    vendor_name: str
    quantity: int | None = None
    unit: str
    specifications: dict[str, Any] = Field(default_factory=dict)
    availability: str
    source: str
    last_synced: datetime | None = None


class Pagination(CamelModel):
    total_results: int
    current_page: int
    total_pages: int
    limit: int


class SearchMetadata(CamelModel):
    timestamp: datetime


class SearchResponse(CamelModel):
    results: list[MaterialResponse]
    pagination: Pagination
    metadata: SearchMetadata


class SavedSearchRequest(CamelModel):
    search_query: str
    filters: dict[str, Any] = Field(default_factory=dict)


class SavedSearchResponse(CamelModel):
    user_id: str
    search_query: str
    filters: dict[str, Any]
    created_at: datetime | None = None


class PreferencesRequest(CamelModel):
    preferences: dict[str, Any]


class PreferencesResponse(CamelModel):
    user_id: str
    preferences: dict[str, Any]
    updated_at: datetime | None = None


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse({"detail": str(exc)}, status_code=400)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse({"detail": str(exc)}, status_code=404)


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error("Storage failure on %s: %s", request.url.path, exc)
    return JSONResponse({"detail": "Storage unavailable"}, status_code=503)


def get_engine(request: Request) -> Engine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        engine = request.app.state.engine = create_engine_from_env()
    return engine


def get_supervisor(request: Request, engine: Engine = Depends(get_engine)) -> SyncSupervisor:
    supervisor = getattr(request.app.state, "supervisor", None)
    if supervisor is None:
        supervisor = request.app.state.supervisor = SyncSupervisor(engine)
    return supervisor


def get_sync_service(
    engine: Engine = Depends(get_engine), supervisor: SyncSupervisor = Depends(get_supervisor)
) -> SyncService:
    return SyncService(engine, supervisor)


def get_current_user(authorization: str | None = Header(default=None)) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        return load_user_id(authorization[len("bearer "):].strip())
    except BadSignature as exc:
        raise HTTPException(status_code=401, detail="Invalid session token") from exc


@app.post("/sync", response_model=SyncTriggerResponse, status_code=202)
async def trigger_sync(
    category: str | None = None,
    user_id: str = Depends(get_current_user),
    service: SyncService = Depends(get_sync_service),
) -> SyncTriggerResponse:
    result = await service.trigger_sync(category, user_id=user_id)
    logger.info("User %s triggered sync %s", user_id, result["sync_id"])
    return SyncTriggerResponse(sync_id=result["sync_id"])


@app.get("/sync/latest", response_model=SyncStatusResponse | None)
async def latest_sync(service: SyncService = Depends(get_sync_service)) -> SyncStatusResponse | None:
    status = service.get_latest_sync_status()
    return SyncStatusResponse.from_status(status) if status else None


@app.get("/sync/{sync_id}", response_model=SyncStatusResponse)
async def sync_status(sync_id: str, service: SyncService = Depends(get_sync_service)) -> SyncStatusResponse:
    return SyncStatusResponse.from_status(service.check_sync_status(sync_id))


@app.post("/sync/{sync_id}/cancel", response_model=CancelResponse)
async def cancel_sync(
    sync_id: str,
    user_id: str = Depends(get_current_user),
    service: SyncService = Depends(get_sync_service),
) -> CancelResponse:
    result = service.cancel_sync(sync_id)
    logger.info("User %s cancel request for %s: %s", user_id, sync_id, result["message"])
    return CancelResponse(**result)


@app.get("/materials/search", response_model=SearchResponse)
async def material_search(
    q: str = Query(...),
    page: int = 1,
    limit: int = DEFAULT_LIMIT,
    engine: Engine = Depends(get_engine),
) -> SearchResponse:
    return SearchResponse.model_validate(search_materials(engine, q, page, limit))


@app.get("/materials", response_model=SearchResponse)
async def material_browse(
    q: str | None = None,
    category: str | None = None,
    vendor: str | None = None,
    min_price: float | None = Query(None, alias="minPrice"),
    max_price: float | None = Query(None, alias="maxPrice"),
    availability: str | None = None,
    page: int = 1,
    limit: int = DEFAULT_LIMIT,
    engine: Engine = Depends(get_engine),
) -> SearchResponse:
    filters = MaterialFilters(
        query=q,
        category=category,
        vendor=vendor,
        min_price=min_price,
        max_price=max_price,
        availability=availability,
    )
    return SearchResponse.model_validate(browse_materials(engine, filters, page, limit))


@app.get("/materials/categories")
async def material_categories(engine: Engine = Depends(get_engine)) -> dict[str, list[str]]:
    return {"categories": list_categories(engine)}


@app.get("/materials/vendors")
async def material_vendors(engine: Engine = Depends(get_engine)) -> dict[str, list[str]]:
    return {"vendors": list_vendors(engine)}


@app.get("/materials/{identifier}", response_model=MaterialResponse)
async def material_detail(identifier: str, engine: Engine = Depends(get_engine)) -> MaterialResponse:
    return MaterialResponse.model_validate(get_material(engine, identifier))


@app.post("/searches", response_model=SavedSearchResponse, status_code=201)
async def create_saved_search(
    payload: SavedSearchRequest,
    user_id: str = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
) -> SavedSearchResponse:
    return SavedSearchResponse.model_validate(save_search(engine, user_id, payload.search_query, payload.filters))


@app.get("/searches", response_model=list[SavedSearchResponse])
async def saved_searches(
    user_id: str = Depends(get_current_user), engine: Engine = Depends(get_engine)
) -> list[SavedSearchResponse]:
    return [SavedSearchResponse.model_validate(row) for row in list_saved_searches(engine, user_id)]


@app.get("/preferences", response_model=PreferencesResponse)
async def user_preferences(
    user_id: str = Depends(get_current_user), engine: Engine = Depends(get_engine)
) -> PreferencesResponse:
    return PreferencesResponse.model_validate(get_preferences(engine, user_id))


@app.put("/preferences", response_model=PreferencesResponse)
async def update_preferences(
    payload: PreferencesRequest,
    user_id: str = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
) -> PreferencesResponse:
    return PreferencesResponse.model_validate(save_preferences(engine, user_id, payload.preferences))


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    uvicorn.run(
        "supplystack.api.main:app",
        host=os.environ.get("API_HOST", "0.0.0.0"),
        port=int(os.environ.get("API_PORT", 8000)),
    )


if __name__ == "__main__":
    main()
