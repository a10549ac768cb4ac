from fastapi import FastAPI

from webtags.api.metrics import router as metrics_router
from webtags.config import get_settings
from webtags.observability.logging import configure_logging
from webtags.observability.middleware import RequestMetricsMiddleware


app = FastAPI(title="webtags", version="0.1.0")
app.add_middleware(RequestMetricsMiddleware)
app.include_router(metrics_router)


@app.on_event("startup")
def _startup() -> None:
    configure_logging(get_settings().log_level)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
