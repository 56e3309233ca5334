from fastapi import FastAPI
from contextlib import asynccontextmanager
from app.core.config import settings
from app.core.logging import setup_logging
from app.apis.identity.main import router as identity_router
from app.apis.quiz.main import router as quiz_router
from app.apis.quiz.ws import ws_router as quiz_ws_router

import uvicorn
from fastapi.middleware.cors import CORSMiddleware
from app.modules.quiz.runtime import room_store


@asynccontextmanager
async def lifespan(app: FastAPI):
    await room_store.start()
    try:
        yield
    finally:
        await room_store.stop()


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(
        title=settings.app.name, version=settings.app.version, lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(identity_router)
    app.include_router(quiz_router)
    app.include_router(quiz_ws_router)

    @app.get("/")
    async def root():
        return {
            "status": "ok",
            "app": settings.app.name,
            "version": settings.app.version,
        }

    return app


app = create_app()


if __name__ == "__main__":
    try:
        uvicorn.run(
            "main:app",
            host="0.0.0.0",
            port=settings.app.port,
            reload=not settings.app.is_production,
        )
    except Exception as e:
        print(f"An error occurred when starting the server: {e}.")
