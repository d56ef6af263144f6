import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pymongo.database import Database
from pymongo.errors import PyMongoError

import admin
import posts
import users
from config import Settings, get_settings
from database import connect, ensure_indexes, get_optional_db
from errors import register_error_handlers

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    owns_db = getattr(app.state, "db", None) is None
    if owns_db:
        # An unreachable database is fatal: let the exception stop startup.
        app.state.db = connect(settings)
    ensure_indexes(app.state.db)
    yield
    if owns_db:
        app.state.db.client.close()
        logger.info("Database connection closed")


def create_app(settings: Optional[Settings] = None, db: Optional[Database] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)
    app.state.settings = settings
    app.state.db = db

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    app.include_router(users.auth_router)
    app.include_router(posts.router)
    app.include_router(users.router)
    app.include_router(admin.router)

    # -------------------------------------------------------------------
    # Root + health
    # -------------------------------------------------------------------
    @app.get("/")
    def root():
        return {"app": settings.app_name, "status": "ok"}

    @app.head("/")
    def root_head():
        # Explicit HEAD route for health checks
        return {}

    @app.get("/test")
    def test_database(db: Optional[Database] = Depends(get_optional_db)):
        response = {
            "backend": "running",
            "database": "not available",
            "database_name": settings.database_name,
            "collections": [],
        }
        if db is None:
            return response
        try:
            response["collections"] = sorted(db.list_collection_names())[:10]
            response["database"] = "connected"
        except PyMongoError as e:
            logger.error("Database health check failed: %s", e)
            response["database"] = f"error: {str(e)[:50]}"
        return response

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=get_settings().port)
