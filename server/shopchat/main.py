import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shopchat.api.routes import chat, products
from shopchat.core.config import get_settings
from shopchat.core.exceptions import register_exception_handlers
from shopchat.core.logging import configure_logging
from shopchat.core.middleware import RequestContextMiddleware
from shopchat.utils.format import mask

logger = logging.getLogger("shopchat.app")


def create_app() -> FastAPI:
    """
    Application factory for the fashion catalog chat backend.
    Routes are attached in their respective modules and imported here.
    """

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)

    app = FastAPI(
        title=settings.api_title,
        description="Retrieval-augmented product search and sales chat for a fashion catalog.",
        version=settings.api_version,
    )

    cors_origins = settings.resolved_cors_origins
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    register_exception_handlers(app)
    app.add_middleware(RequestContextMiddleware)

    app.include_router(products.router)
    app.include_router(chat.router)

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        return {"status": "ok"}

    logger.info(
        "app.configured",
        extra={
            "embeddingsProvider": settings.embeddings_provider,
            "vectorIndexBackend": settings.vector_index_backend,
            "chatModelProvider": settings.chat_model_provider,
            "qdrantUrl": settings.qdrant_url,
            "qdrantApiKey": mask(settings.qdrant_api_key),
            "openaiApiKey": mask(settings.openai_api_key),
        },
    )
    return app


app = create_app()
