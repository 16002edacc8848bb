from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes import models, questions, research
from app.config import settings
from app.services import logger as log_service
from app.services.env_safety import log_env_status


@asynccontextmanager
async def lifespan(app: FastAPI):
    log_env_status()
    yield


app = FastAPI(
    title="Deep Research",
    description="Deep research agent: web search plus language-model synthesis, streamed over SSE",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    log_service.log_event(
        event_type="invalid_request",
        message="Rejected request body",
        path=request.url.path,
    )
    return JSONResponse(
        status_code=400,
        content={"error": "无效的请求格式", "details": jsonable_encoder(exc.errors())},
    )


app.include_router(questions.router)
app.include_router(research.router)
app.include_router(models.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "deep-research"}
