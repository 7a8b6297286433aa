import asyncio
import contextlib
import logging
from typing import Dict, Optional

from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from aggregate_executor.databases.config_manager import AggregateDimension, AppConfig
from aggregate_executor.databases.database_factory import SharedClientHandle
from aggregate_executor.errors import ConfigurationError, ExecutionError, QueryCancelledError
from aggregate_executor.query_executor import AggregateQueryExecutor

logger = logging.getLogger(__name__)

DISCONNECT_POLL_SECONDS = 0.5
CLIENT_CLOSED_REQUEST = 499


class AggregateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_rus: float = Field(alias="totalRUs")
    count: int


async def _watch_disconnect(request: Request, cancel_event: asyncio.Event) -> None:
    while not cancel_event.is_set():
        if await request.is_disconnected():
            logger.info(f"Client disconnected from {request.url.path}, cancelling aggregate query")
            cancel_event.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


def _add_dimension_route(router: APIRouter, executor: AggregateQueryExecutor) -> None:
    dimension = executor.dimension

    async def count_by_dimension(
        request: Request,
        filter_value: Optional[str] = Query(default=None, alias=dimension.query_parameter),
    ) -> AggregateResponse:
        cancel_event = asyncio.Event()
        watcher = asyncio.create_task(_watch_disconnect(request, cancel_event))
        try:
            result = await executor.count_aggregate(filter_value, cancel_event=cancel_event)
        finally:
            watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher

        return AggregateResponse(total_rus=result.total_cost_units, count=result.count)

    router.add_api_route(
        f"/{dimension.route}",
        count_by_dimension,
        methods=["GET"],
        response_model=AggregateResponse,
        name=dimension.route,
    )


def _register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError):
        logger.error(f"Configuration error on {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"error": "configuration", "detail": str(exc)})

    @app.exception_handler(ExecutionError)
    async def execution_error_handler(request: Request, exc: ExecutionError):
        logger.error(f"Execution error on {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"error": "execution", "detail": str(exc)})

    @app.exception_handler(QueryCancelledError)
    async def cancelled_handler(request: Request, exc: QueryCancelledError):
        logger.info(f"Request to {request.url.path} cancelled: {exc}")
        return JSONResponse(status_code=CLIENT_CLOSED_REQUEST, content={"error": "cancelled", "detail": str(exc)})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"error": "internal", "detail": repr(exc)})


def create_app(config: AppConfig, client_handle: Optional[SharedClientHandle] = None) -> FastAPI:
    """
    Build the HTTP app: one count endpoint per configured dimension.

    All endpoints share one client handle; it is built on the first request,
    not here, so a missing connection string only fails the requests.
    """
    client_handle = client_handle or SharedClientHandle.from_config(config)

    @contextlib.asynccontextmanager
    async def _lifespan(app: FastAPI):
        yield
        await client_handle.close()

    app = FastAPI(title="Cross-partition aggregates", version="0.1.0", lifespan=_lifespan)
    router = APIRouter(prefix="/api", tags=["aggregates"])

    executors: Dict[str, AggregateQueryExecutor] = {}
    for dimension in config.dimensions:
        executor = AggregateQueryExecutor(
            client_handle=client_handle,
            collection=config.collection,
            dimension=dimension,
            page_size=config.page_size,
        )
        executors[dimension.name] = executor
        _add_dimension_route(router, executor)
        logger.info(f"Registered GET /api/{dimension.route} (filter parameter '{dimension.query_parameter}')")

    app.include_router(router)
    _register_error_handlers(app)

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    app.state.client_handle = client_handle
    app.state.executors = executors
    return app
