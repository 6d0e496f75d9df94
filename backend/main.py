import importlib
import logging
import pkgutil
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.libs.database import ensure_schema
from app.libs.dashboard import reset_admin_dashboard
from app.libs.document_store import get_document_store
from app.libs.settings import get_settings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)

logger = logging.getLogger("stylo")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if get_settings().database_url:
        await ensure_schema()
    store = get_document_store()
    logger.info("Document store: %s", type(store).__name__)
    yield
    reset_admin_dashboard()
    await store.close()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Stylo Studio API",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Generated sites post form submissions from their own origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Auto-import routers from app/apis/
    apis_path = Path(__file__).parent / "app" / "apis"
    for module_info in pkgutil.iter_modules([str(apis_path)]):
        module = importlib.import_module(f"app.apis.{module_info.name}")
        if hasattr(module, "router"):
            app.include_router(module.router)
            logger.info("Loaded API: %s", module_info.name)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
