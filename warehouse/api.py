"""FastAPI application exposing the warehouse backend."""
from __future__ import annotations

import asyncio
import logging
import threading
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Annotated, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .config import load_config
from .database import SQLiteRepository
from .models import AggregationScope, KindScope, MutationOutcome, Transaction, TransactionKind
from .mutations import UNAUTHENTICATED
from .remote_client import FetchCancelled, RemoteClient
from .services import WarehouseService

logger = logging.getLogger(__name__)


async def _refresh_periodically(service: WarehouseService, interval: float, stop: threading.Event) -> None:
    """Background refresh; also enforces the idle timeout between user actions.

    ``stop`` is handed to the fetch as its cancellation token, so shutdown
    also aborts a fetch that is already waiting on the network.
    """

    while not stop.is_set():
        await asyncio.sleep(interval)
        await asyncio.to_thread(service.idle_status)
        if stop.is_set() or not service.is_authenticated:
            continue
        try:
            await asyncio.to_thread(service.refresh, stop)
        except FetchCancelled:
            logger.info("Background refresh cancelled")
            return
        except Exception:
            logger.exception("Background refresh failed")


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Initialise shared services once and reuse them across requests."""

    config = load_config()
    repository = SQLiteRepository(config.database_file)
    repository.initialise_schema()
    service = WarehouseService(config, repository, RemoteClient(config))
    service.start()

    app.state.config = config
    app.state.repository = repository
    app.state.warehouse = service

    stop = threading.Event()
    refresher = asyncio.create_task(_refresh_periodically(service, config.refresh_interval, stop))
    yield

    stop.set()
    refresher.cancel()
    try:
        await refresher
    except asyncio.CancelledError:
        pass
    repository.close()


app = FastAPI(lifespan=lifespan, title="warehouse backend", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request bodies -------------------------------------------------------------


class LoginRequest(BaseModel):
    username: str
    password: str


class TransactionPayload(BaseModel):
    id: str = ""
    date: str = ""
    kind: Literal["INBOUND", "USAGE", "CONSTRUCTION", "REPAIR"] = "USAGE"
    material_name: str = ""
    material_number: str = ""
    machine_category: str = ""
    machine_number: str = ""
    quantity: int = Field(default=0, ge=0)
    unit_price: float = Field(default=0.0, ge=0)
    total: float = Field(default=0.0, ge=0)
    note: str = ""
    account_category: str = ""
    is_received: bool = False
    sn: str = ""
    fault_reason: str = ""
    is_scrapped: bool = False
    sent_date: str = ""
    repair_date: str = ""
    install_date: str = ""

    def to_transaction(self) -> Transaction:
        data = self.model_dump()
        data["kind"] = TransactionKind[data["kind"]]
        return Transaction(**data)


class FilterUpdate(BaseModel):
    active_view: Optional[Literal["dashboard", "records", "repairs", "batch"]] = None
    status_filter: Optional[Literal["all", "pending_inbound", "scrapped", "repairing"]] = None
    category_filter: Optional[Literal["all", "INBOUND", "USAGE", "CONSTRUCTION"]] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    keyword: Optional[str] = None
    view_scope: Optional[Literal["monthly", "all"]] = None
    current_page: Optional[int] = Field(default=None, ge=1)


# Dependency injection ------------------------------------------------------

def get_service() -> WarehouseService:
    service: WarehouseService = app.state.warehouse
    return service


def get_active_service(service: Annotated[WarehouseService, Depends(get_service)]) -> WarehouseService:
    """Like :func:`get_service`, but rejects requests without a live session."""

    service.idle_status()
    if not service.is_authenticated:
        raise HTTPException(status_code=401, detail="Not signed in.")
    service.touch()
    return service


def _serialise_transaction(tx: Transaction) -> dict[str, object]:
    return tx.to_dict()


def _outcome_or_error(outcome: MutationOutcome) -> dict[str, object]:
    if outcome.success:
        return asdict(outcome)
    if outcome.reason == UNAUTHENTICATED:
        raise HTTPException(status_code=401, detail="Not signed in.")
    raise HTTPException(status_code=502, detail=asdict(outcome))


# Routes --------------------------------------------------------------------


@app.get("/health")
def health_check(service: Annotated[WarehouseService, Depends(get_service)]) -> dict[str, object]:
    """Return a basic heartbeat payload for monitoring purposes."""

    return {
        "status": "ok",
        "remote_configured": service.config.is_remote_configured,
        "last_sync_at": service.last_sync_at,
    }


@app.post("/session/login")
def login(
    body: LoginRequest,
    service: Annotated[WarehouseService, Depends(get_service)],
) -> dict[str, object]:
    if not service.config.is_remote_configured:
        raise HTTPException(status_code=503, detail="Remote store URL is not configured.")
    result = service.login(body.username, body.password)
    if result.network_error:
        raise HTTPException(status_code=503, detail=result.message)
    if not result.authorized:
        raise HTTPException(status_code=401, detail=result.message)
    return {"authorized": True, "user": service.current_user, "records": len(service.store)}


@app.post("/session/logout")
def logout(service: Annotated[WarehouseService, Depends(get_service)]) -> dict[str, object]:
    service.logout()
    return {"authorized": False}


@app.post("/session/activity")
def record_activity(service: Annotated[WarehouseService, Depends(get_active_service)]) -> dict[str, object]:
    return asdict(service.touch())


@app.get("/session/idle")
def idle_status(service: Annotated[WarehouseService, Depends(get_service)]) -> dict[str, object]:
    status = service.idle_status()
    return {**asdict(status), "authenticated": service.is_authenticated}


@app.get("/filters")
def get_filters(service: Annotated[WarehouseService, Depends(get_active_service)]) -> dict[str, object]:
    return service.filters.to_dict()


@app.put("/filters")
def put_filters(
    body: FilterUpdate,
    service: Annotated[WarehouseService, Depends(get_active_service)],
) -> dict[str, object]:
    changes = body.model_dump(exclude_unset=True)
    try:
        filters = service.update_filters(changes)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return filters.to_dict()


@app.get("/records")
def list_records(service: Annotated[WarehouseService, Depends(get_active_service)]) -> dict[str, object]:
    view = service.records_view()
    view["records"] = [_serialise_transaction(tx) for tx in view["records"]]
    return view


@app.post("/records")
def save_record(
    body: TransactionPayload,
    service: Annotated[WarehouseService, Depends(get_active_service)],
) -> dict[str, object]:
    return _outcome_or_error(service.save(body.to_transaction()))


@app.post("/records/batch")
def save_batch(
    body: list[TransactionPayload],
    service: Annotated[WarehouseService, Depends(get_active_service)],
) -> dict[str, object]:
    outcome = service.save_batch(payload.to_transaction() for payload in body)
    return {
        "success": outcome.success,
        "saved": outcome.saved,
        "skipped": outcome.skipped,
        "outcomes": [asdict(item) for item in outcome.outcomes],
    }


@app.delete("/records/{record_id}")
def delete_record(
    record_id: str,
    service: Annotated[WarehouseService, Depends(get_active_service)],
) -> dict[str, object]:
    return _outcome_or_error(service.delete(record_id))


@app.post("/sync/refresh")
def refresh(service: Annotated[WarehouseService, Depends(get_active_service)]) -> dict[str, object]:
    count = service.refresh()
    return {"records": count, "last_sync_at": service.last_sync_at}


@app.get("/dashboard")
def dashboard(
    service: Annotated[WarehouseService, Depends(get_active_service)],
    year: Annotated[Optional[str], Query(pattern=r"^\d{4}$")] = None,
    kind: KindScope = KindScope.INBOUND,
) -> dict[str, object]:
    data = service.dashboard(year, kind)
    return {
        "summary": asdict(data["summary"]),
        "trend": [asdict(bucket) for bucket in data["trend"]],
        "categories": [asdict(share) for share in data["categories"]],
        "available_years": data["available_years"],
    }


@app.get("/repairs/ranking")
def repair_ranking(
    service: Annotated[WarehouseService, Depends(get_active_service)],
    mode: Literal["standard", "custom"] = "standard",
    year: str = "all",
    month: str = "all",
    start_date: str = "",
    end_date: str = "",
    limit: Annotated[int, Query(ge=-1)] = 5,
) -> dict[str, object]:
    scope = AggregationScope(
        year=year,
        month=month,
        mode=mode,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        kinds=KindScope.REPAIR,
    )
    return {"ranking": [asdict(rank) for rank in service.repair_ranking(scope)]}


@app.get("/suggestions/materials")
def material_suggestions(
    service: Annotated[WarehouseService, Depends(get_active_service)],
    q: str = "",
) -> dict[str, object]:
    return {"suggestions": service.material_suggestions(q)}


@app.get("/suggestions/materials/details")
def material_details(
    name: str,
    service: Annotated[WarehouseService, Depends(get_active_service)],
) -> dict[str, object]:
    details = service.material_details(name)
    if details is None:
        raise HTTPException(status_code=404, detail=f"No history for material {name!r}.")
    return {"material_name": name, **details}


@app.post("/reports/export")
def export_report(
    service: Annotated[WarehouseService, Depends(get_active_service)],
    filename: Annotated[str, Query(min_length=1, pattern=r"^[\w\-. ]+$")] = "warehouse_report",
) -> dict[str, object]:
    path = service.export(filename)
    if path is None:
        raise HTTPException(status_code=404, detail="No records match the current filters.")
    return {"path": str(path)}
