"""
ForestQB Web API

FastAPI-based REST API around the query compiler.
Provides endpoints for:
- Compiling a declarative query description into SPARQL
- Health checks
"""

import json
import logging
import os
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from forestqb import (
    CompilationError,
    CompilerConfig,
    InputDecodeError,
    QueryCompiler,
    __version__,
    load_config,
)

logger = logging.getLogger(__name__)


# Pydantic models for API
class QueryResponse(BaseModel):
    """Compiled query."""
    query: str = Field(..., description="SPARQL SELECT query")


class ErrorResponse(BaseModel):
    error: str


def decode_body(body: bytes) -> dict:
    """Decode a raw request body as UTF-8 JSON."""
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError:
        raise InputDecodeError("Invalid encoding, expected UTF-8.")
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        raise InputDecodeError("Invalid JSON format")


def create_app(config: Optional[CompilerConfig] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        config: Optional CompilerConfig (loaded from FORESTQB_CONFIG if not provided)

    Returns:
        Configured FastAPI application
    """
    # Get allowed origins from env (comma-separated), default allow all
    allowed_origins_env = os.getenv("FORESTQB_CORS_ORIGINS", "")
    if allowed_origins_env:
        allowed_origins = [o.strip() for o in allowed_origins_env.split(",")]
    else:
        allowed_origins = ["*"]

    app = FastAPI(
        title="ForestQB API",
        description="Compiles declarative query descriptions into SPARQL",
        version=__version__,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=["*"],
    )

    # State
    app.state.compiler = QueryCompiler(config or load_config())

    @app.exception_handler(InputDecodeError)
    async def input_decode_error(request: Request, exc: InputDecodeError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(CompilationError)
    async def compilation_error(request: Request, exc: CompilationError):
        logger.info(f"Rejected query request: {exc}")
        return JSONResponse(status_code=422, content={"error": str(exc)})

    @app.get("/health", tags=["Info"])
    async def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    @app.post(
        "/getSparql",
        response_model=QueryResponse,
        responses={400: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
        tags=["Query"],
    )
    async def get_sparql(request: Request):
        """Compile the JSON query description in the request body."""
        payload = decode_body(await request.body())
        query = app.state.compiler.compile(payload)
        return QueryResponse(query=query)

    return app


# Default app instance for running directly
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.web:app", host="0.0.0.0", port=8000, reload=True)
