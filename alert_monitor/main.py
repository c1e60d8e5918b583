from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from alert_monitor.errors import AlertApiError, AuthError, RateLimitError, TransportError
from alert_monitor.logger import logger
from alert_monitor.models import ServiceOptions
from alert_monitor.service import AlertService

_service: AlertService | None = None


def get_service() -> AlertService:
    global _service
    if _service is None:
        _service = AlertService(ServiceOptions.from_config())
    return _service


@asynccontextmanager
async def lifespan(app: FastAPI):
    service = get_service()
    logger.info(f"Alerts API: {service.options.base_url}/{service.options.route_prefix}")
    service.start_polling()
    yield
    await service.aclose()


app = FastAPI(title="Alert Monitor", lifespan=lifespan)


class SearchRequest(BaseModel):
    entities: list[str]
    best_effort: bool = True


@app.exception_handler(AlertApiError)
async def handle_api_error(request: Request, exc: AlertApiError):
    if isinstance(exc, RateLimitError):
        status_code, kind = 503, "rate_limited"
    elif isinstance(exc, AuthError):
        status_code, kind = 502, "auth_failed"
    elif isinstance(exc, TransportError):
        status_code, kind = 504, "upstream_unreachable"
    else:
        status_code, kind = 502, "upstream_error"

    logger.error(f"Request to {request.url.path} failed: {exc}")
    content = {"error": kind, "status": exc.status, "message": exc.message}
    if isinstance(exc, RateLimitError) and exc.retry_after is not None:
        content["retry_after"] = exc.retry_after
    return JSONResponse(status_code=status_code, content=content)


@app.get("/health")
async def health(service: AlertService = Depends(get_service)):
    watermark = service.poller.watermark
    return {
        "status": "ok",
        "polling_state": service.poller.state.value,
        "cache_size": service.cache.size,
        "last_poll_time": watermark.last_poll_time,
        "total_alerts_processed": watermark.total_alerts_processed,
        "quota": service.limiter.state.model_dump(),
    }


@app.get("/alerts")
async def get_alerts(
    since: datetime | None = None,
    count: int | None = Query(default=None, ge=1),
    lists: str | None = None,
    service: AlertService = Depends(get_service),
):
    list_ids = [part for part in lists.split(",") if part] if lists else None
    result = await service.get_alerts_since(since=since, count=count, list_ids=list_ids)
    return result.model_dump(mode="json")


@app.get("/alerts/{alert_id}")
async def get_alert(alert_id: str, service: AlertService = Depends(get_service)):
    alert = await service.get_alert_by_id(alert_id)
    if alert is None:
        logger.warning(f"Alert {alert_id} not found")
        return {"alert": None, "message": "Alert not found"}
    return {"alert": alert.model_dump(mode="json")}


@app.post("/search")
async def search(body: SearchRequest, service: AlertService = Depends(get_service)):
    alerts = await service.search(body.entities, best_effort=body.best_effort)
    return {"alerts": [a.model_dump(mode="json") for a in alerts], "count": len(alerts)}


@app.post("/polling/start")
async def start_polling(service: AlertService = Depends(get_service)):
    started = service.start_polling()
    return {"started": started, "polling_state": service.poller.state.value}


@app.post("/polling/stop")
async def stop_polling(service: AlertService = Depends(get_service)):
    await service.stop_polling()
    return {"polling_state": service.poller.state.value}
