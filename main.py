#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
Main application entry point - metered multi-vendor chat completion gateway
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from vapor_gateway.billing import drain_settlements
from vapor_gateway.config import settings
from vapor_gateway.errors import BadRequestError, GatewayError
from vapor_gateway.gateway_api import router as gateway_router
from vapor_gateway.helpers import error_log, info_log
from vapor_gateway.services import network_manager


@asynccontextmanager
async def lifespan(app: FastAPI):
    info_log("[APP] 网关启动", port=settings.LISTEN_PORT, workers=settings.UVICORN_WORKERS)
    yield
    # 等待后台结算完成后再关闭上游连接
    await drain_settlements()
    await network_manager.cleanup_clients()
    info_log("[APP] 网关已关闭")


# Create FastAPI app
app = FastAPI(
    title="Vapor Gateway",
    description="Metered gateway exposing one chat completion API over OpenAI / Anthropic / Gemini",
    version="1.0.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

# Include API router
app.include_router(gateway_router)


@app.exception_handler(GatewayError)
async def handle_gateway_error(request: Request, exc: GatewayError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError):
    error = BadRequestError(f"请求参数无效: {exc.errors()[:1]}")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    error_log("未处理的异常", error=str(exc), path=request.url.path)
    error = GatewayError("Internal server error")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.options("/")
async def handle_options():
    """Handle OPTIONS requests"""
    return Response(status_code=200)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Vapor Gateway",
        "version": "1.0.0",
        "description": "多供应商计费网关：OpenAI / Anthropic / Gemini",
    }


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    # 内存存储按进程隔离，默认单 worker
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.LISTEN_PORT,
        workers=settings.UVICORN_WORKERS,
        http="httptools",
        reload=False,
        log_level="info",
    )
