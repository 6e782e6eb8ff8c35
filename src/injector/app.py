import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, HTTPException
from pydantic import BaseModel, PositiveFloat, PositiveInt, ValidationError

import injector.constants as C
from injector.accounts import AccountStore
from injector.config import LoadParams, load_settings
from injector.errors import AccountStoreError, GatewayError, InjectorError
from injector.gateway import GatewayClient
from injector.logging_config import setup_logging
from injector.workflow import LoadInjector, load_nominees

setup_logging()
log = logging.getLogger("injector.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = load_settings()
    log.info("Gateway %s (%s), network %s", settings.gateway_url, settings.gateway_type, settings.network_id)
    async with GatewayClient.from_settings(settings) as gateway:
        app.state.settings = settings
        app.state.injector = LoadInjector(settings, gateway, store=AccountStore(settings.accounts_file))
        app.state.run_task = None
        try:
            yield
        finally:
            log.info("Shutting down...")
            task: asyncio.Task | None = app.state.run_task
            if task is not None and not task.done():
                app.state.injector.stop()
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
    log.info("Shutdown complete")


app = FastAPI(
    title="Transaction Load Injector",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Load", "description": "Start, stop and watch load runs"},
        {"name": "Accounts", "description": "Persisted identity pool"},
        {"name": "Network", "description": "Staking and network config"},
    ],
)

r_load = APIRouter(prefix="/load", tags=["Load"])
r_accounts = APIRouter(prefix="/accounts", tags=["Accounts"])
r_network = APIRouter(tags=["Network"])


class LoadReq(BaseModel):
    tx_type: C.TxKind = C.TxKind.TRANSFER
    tps: PositiveFloat | None = None
    duration: PositiveFloat | None = None
    eoa: int | None = None
    eoa_tps: PositiveFloat | None = None
    transfer_amount: PositiveInt | None = None
    verbosity: bool | None = None
    reuse_accounts: bool | None = None


class StakeReq(BaseModel):
    nominees: list[str] = []
    nominee_file: str | None = None
    amount: PositiveInt | None = None
    eoa_tps: PositiveFloat = C.DEFAULT_EOA_TPS


class ChangeConfigReq(BaseModel):
    change: dict
    cycle: int = -1


def _running(app: FastAPI) -> bool:
    task = app.state.run_task
    return task is not None and not task.done()


def _log_run_result(task: asyncio.Task) -> None:
    if task.cancelled():
        log.info("Load run cancelled")
    elif (exc := task.exception()) is not None:
        log.error("Load run failed: %s", exc, exc_info=exc)
    else:
        log.info("Load run finished: %s", task.result().as_dict())


@app.get("/health")
def health():
    return {"status": "ok"}


@r_load.post("/start")
async def start_load(req: LoadReq):
    """Start a load run in the background."""
    if _running(app):
        raise HTTPException(status_code=409, detail="A load run is already active")
    try:
        params = LoadParams(**req.model_dump(exclude_none=True))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.errors(include_url=False)) from e

    injector: LoadInjector = app.state.injector
    log.info("Starting %s run: %s", params.tx_type, params.model_dump())
    app.state.run_task = asyncio.create_task(injector.run(params), name=f"load-{params.tx_type}")
    app.state.run_task.add_done_callback(_log_run_result)
    return {"status": "started", "params": params.model_dump(mode="json")}


@r_load.post("/stop")
async def stop_load():
    """Stop spawning new injections and wait for the run to drain."""
    if not _running(app):
        raise HTTPException(status_code=400, detail="No load run is active")
    injector: LoadInjector = app.state.injector
    injector.stop()
    try:
        outcome = await app.state.run_task
    except InjectorError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    return {"status": "stopped", "outcome": outcome.as_dict()}


@r_load.get("/status")
async def load_status():
    return {"running": _running(app), **app.state.injector.status()}


@r_accounts.get("")
async def list_accounts():
    store: AccountStore = app.state.injector.store
    try:
        data = store.read()
    except AccountStoreError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    return {
        "path": str(store.path),
        "count": len(data.accounts),
        "last_updated": data.last_updated,
        "accounts": [{"address": a.address, "alias": a.alias, "registered_at": a.registered_at} for a in data.accounts],
    }


@r_network.post("/stake")
async def stake(req: StakeReq):
    if _running(app):
        raise HTTPException(status_code=409, detail="A load run is active")
    nominees = list(req.nominees)
    try:
        if req.nominee_file:
            nominees.extend(load_nominees(req.nominee_file))
    except InjectorError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    if not nominees:
        raise HTTPException(status_code=400, detail="No nominees given")

    results = await app.state.injector.stake(nominees, req.amount, eoa_tps=req.eoa_tps)
    return {
        "staked": sum(r.result.success for r in results),
        "results": [{"nominee": r.nominee, "nominator": r.nominator, "result": r.result.to_json()} for r in results],
    }


@r_network.get("/network/config")
async def network_config():
    try:
        return await app.state.injector.network_config()
    except GatewayError as e:
        raise HTTPException(status_code=502, detail=str(e)) from e


@r_network.post("/network/config")
async def change_config(req: ChangeConfigReq):
    try:
        result = await app.state.injector.change_config(req.change, req.cycle)
    except GatewayError as e:
        raise HTTPException(status_code=502, detail=str(e)) from e
    return result.to_json()


app.include_router(r_load)
app.include_router(r_accounts)
app.include_router(r_network)
