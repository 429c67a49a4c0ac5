# cardstudio/main.py
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from cardstudio.config.database import init_db
from cardstudio.config.settings import settings
from cardstudio.delivery.api.templates import router
from cardstudio.domain.template_service import TemplateService

logger = logging.getLogger("uvicorn.error")

# --- Lazy service bootstrap state ---
_service_lock = threading.Lock()
_service_ready = False


def _ensure_service(app: FastAPI) -> None:
    global _service_ready
    with _service_lock:
        if _service_ready:
            return
        logger.info("Initialising TemplateService (lazy-init)...")
        app.state.template_service = TemplateService(
            cpu_executor=app.state.cpu_executor,
            io_executor=app.state.io_executor,
        )
        _service_ready = True
        logger.info("Service initialisation done.")


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _service_ready
    app.state.cpu_executor = ThreadPoolExecutor(max_workers=settings.CPU_WORKERS, thread_name_prefix="render")
    app.state.io_executor = ThreadPoolExecutor(max_workers=settings.IO_WORKERS, thread_name_prefix="io")
    logger.info(f"Service '{settings.PROJECT_NAME}' started (mode: {settings.ENVIRONMENT}).")
    logger.info(f"Thread pools: {settings.CPU_WORKERS} render workers, {settings.IO_WORKERS} io workers.")
    if settings.DB_CREATE_TABLES:
        await init_db()
    yield
    logger.info("Shutting down thread pools...")
    app.state.cpu_executor.shutdown(wait=True)
    app.state.io_executor.shutdown(wait=True)
    with _service_lock:
        _service_ready = False
    logger.info("Service stopped.")


app = FastAPI(
    title="CardStudio Rendering Service",
    description="Card template field extraction, compilation, rendering and print sheet generation",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_HOSTS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Lazy-load only for API routes
@app.middleware("http")
async def lazy_boot(request: Request, call_next):
    if request.url.path.startswith(settings.API_V1_STR):
        _ensure_service(request.app)
    return await call_next(request)


app.include_router(router, prefix=settings.API_V1_STR)


@app.get("/")
async def root():
    return {"message": "CardStudio Rendering Service", "version": "1.0.0", "status": "ok"}


@app.get("/health")
async def health_check():
    return {"status": "ok", "service": settings.PROJECT_NAME, "service_ready": _service_ready}
