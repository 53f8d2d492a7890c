import uvicorn
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware
from starlette.staticfiles import StaticFiles

from video_api.cores.config import settings
from video_api.cores.errors import register_exception_handlers
from video_api.cores.logger import configure_logging
from video_api.cores.mongo import close_db, init_db
from video_api.cores.redis import close_redis_pool
from video_api.cores.injectable import get_storage
from video_api.router.router import api_router
from video_api.services.storage import FILE_TYPES


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    logger.info("Starting Video API...")

    await init_db()
    logger.info("Database Connected")

    get_storage().paths.ensure()
    logger.info(f"Upload directories ready under {settings.UPLOAD_ROOT}")

    yield

    logger.info("Stopping Video API...")
    await close_redis_pool()
    await close_db()


app = FastAPI(
    title=settings.PROJECT_NAME,
    lifespan=lifespan,
    swagger_ui_parameters={"syntaxHighlight": {"theme": "nord"}}
)

# CORS
origins = ["http://localhost:5173", "*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Router
app.include_router(api_router, prefix="/api/v1")

# Published files; the staging directory is never served
for file_type in FILE_TYPES:
    app.mount(
        f"{settings.PUBLIC_URL_PREFIX}/{file_type}",
        StaticFiles(directory=settings.UPLOAD_ROOT / file_type, check_dir=False),
        name=file_type,
    )

@app.get("/health")
def health():
    return {"status": "ok", "service": "video-api"}


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
