import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings, get_settings
from .db import Database
from .models import BOOK_ERROR_TYPES, Book, CreateBook, UpdateBook
from .otel import configure_otel
from .ratelimit import SlidingWindowLimiter, rate_limit_middleware
from .repository import BookRepository, BookStoreError

logger = logging.getLogger("books_api.books")
request_logger = logging.getLogger("books_api.requests")

BOOK_NOT_FOUND = "Book not found"
INVALID_BOOK_ID = "Invalid book ID"
INVALID_BODY = "Invalid request body"
INTERNAL_ERROR = "Internal server error"


async def get_session(request: Request) -> AsyncIterator[Session]:
    # Handlers are async and never await while holding the session, so all store
    # access runs on the event loop thread one request at a time.
    database: Database = request.app.state.database
    with database.session() as session:
        yield session


async def get_book_repository(session: Session = Depends(get_session)) -> BookRepository:
    return BookRepository(session)


def _empty_create_payload() -> CreateBook:
    # a request without a body is validated as an empty object, so the title rule reports first
    try:
        return CreateBook.model_validate({})
    except ValidationError as exc:
        raise RequestValidationError(exc.errors()) from exc


system_router = APIRouter(tags=["health"])
books_router = APIRouter(prefix="/api/books", tags=["books"])


@system_router.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@system_router.get("/")
async def index(request: Request) -> dict:
    return {
        "message": "Books API",
        "version": request.app.version,
        "endpoints": {"health": "/health", "books": "/api/books"},
    }


@books_router.get("", response_model=List[Book])
async def list_books(repository: BookRepository = Depends(get_book_repository)) -> List[Book]:
    return repository.find_all()


@books_router.get("/{book_id}", response_model=Book)
async def get_book(book_id: int, repository: BookRepository = Depends(get_book_repository)) -> Book:
    book = repository.find_by_id(book_id)
    if book is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=BOOK_NOT_FOUND)
    return book


@books_router.post("", response_model=Book, status_code=status.HTTP_201_CREATED)
async def create_book(
    payload: Optional[CreateBook] = None,
    repository: BookRepository = Depends(get_book_repository),
) -> Book:
    if payload is None:
        payload = _empty_create_payload()
    try:
        return repository.create(payload)
    except (BookStoreError, SQLAlchemyError) as exc:
        logger.exception("book.create_failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to create book"
        ) from exc


@books_router.put("/{book_id}", response_model=Book)
async def update_book(
    book_id: int,
    payload: Optional[UpdateBook] = None,
    repository: BookRepository = Depends(get_book_repository),
) -> Book:
    try:
        book = repository.update(book_id, payload or UpdateBook())
    except (BookStoreError, SQLAlchemyError) as exc:
        logger.exception("book.update_failed", extra={"book_id": book_id})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to update book"
        ) from exc
    if book is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=BOOK_NOT_FOUND)
    return book


@books_router.delete("/{book_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_book(book_id: int, repository: BookRepository = Depends(get_book_repository)) -> None:
    if not repository.delete(book_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=BOOK_NOT_FOUND)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if any(tuple(err.get("loc", ()))[:1] == ("path",) for err in errors):
        message = INVALID_BOOK_ID
    else:
        # field order in the models decides which rule is reported first
        message = next((err["msg"] for err in errors if err.get("type") in BOOK_ERROR_TYPES), INVALID_BODY)
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("request.failed", exc_info=exc, extra={"path": request.url.path, "method": request.method})
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": INTERNAL_ERROR},
    )


def security_headers_middleware(settings: Settings):
    async def middleware(request: Request, call_next):
        if settings.require_https:
            forwarded_proto = request.headers.get("x-forwarded-proto", "")
            scheme = forwarded_proto.lower() if forwarded_proto else request.url.scheme
            if scheme != "https":
                return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "HTTPS required"})

        response = await call_next(request)
        response.headers.setdefault("Strict-Transport-Security", "max-age=63072000; includeSubDomains; preload")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
        response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'; base-uri 'none'")
        response.headers.setdefault("Cross-Origin-Resource-Policy", "same-origin")
        return response

    return middleware


async def request_logging_middleware(request: Request, call_next):
    request_logger.info("request.start", extra={"path": request.url.path, "method": request.method})
    response = await call_next(request)
    request_logger.info(
        "request.end",
        extra={"path": request.url.path, "method": request.method, "status": response.status_code},
    )
    return response


async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application around a freshly opened store.

    The store is opened and its schema ensured here, so a bad database URL
    fails application startup rather than the first request.
    """
    settings = settings or get_settings()
    logging.getLogger("books_api").setLevel(settings.log_level.upper())

    database = Database(settings.resolved_database_url())
    database.init_db()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("app.startup", extra={"environment": settings.environment})
        yield
        database.dispose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        description="A minimal Books CRUD API backed by SQLite.",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.database = database

    if settings.otel_enabled:
        configure_otel(app, settings.version)

    origins = settings.allowed_origins()
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            allow_headers=["Content-Type", "X-Request-ID"],
        )

    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(system_router)
    app.include_router(books_router)

    app.middleware("http")(security_headers_middleware(settings))
    limiter = SlidingWindowLimiter(settings.rate_limit_requests, settings.rate_limit_window_seconds)
    app.middleware("http")(rate_limit_middleware(limiter))
    app.middleware("http")(request_logging_middleware)
    app.middleware("http")(request_id_middleware)
    return app
