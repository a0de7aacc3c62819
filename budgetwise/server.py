"""FastAPI application exposing the BudgetWise endpoints."""
from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import crud, feed, models, reporting, schemas, templates
from .auth import create_access_token, current_user_id
from .config import Settings, load_settings
from .database import Database, get_db
from .errors import AuthError, BudgetWiseError, PayloadTooLargeError
from .logging import log_request, setup_logger

LOG = logging.getLogger(__name__)

router = APIRouter()


def authenticated_user(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
) -> int:
    """Resolve the bearer token to a user id that still exists."""
    if db.get(models.User, user_id) is None:
        raise AuthError("Invalid or expired token.")
    request.state.user_id = user_id
    return user_id


async def read_template_body(request: Request) -> bytes:
    settings: Settings = request.app.state.settings
    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > settings.max_import_bytes:
        raise PayloadTooLargeError("Template exceeds 1MB limit.")
    return await request.body()


@router.get("/health", tags=["system"])
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/users/register", response_model=schemas.TokenRead, status_code=status.HTTP_201_CREATED)
def register(credentials: schemas.Credentials, request: Request, db: Session = Depends(get_db)) -> schemas.TokenRead:
    user = crud.register_user(db, credentials)
    LOG.info("Registered user %s", user.id)
    return schemas.TokenRead(token=create_access_token(user.id, request.app.state.settings))


@router.post("/users/login", response_model=schemas.TokenRead)
def login(credentials: schemas.Credentials, request: Request, db: Session = Depends(get_db)) -> schemas.TokenRead:
    user = crud.authenticate_user(db, credentials)
    return schemas.TokenRead(token=create_access_token(user.id, request.app.state.settings))


@router.get("/categories", response_model=List[schemas.CategoryRead])
def list_categories(
    db: Session = Depends(get_db),
    user_id: int = Depends(authenticated_user),
) -> List[schemas.CategoryRead]:
    return crud.list_categories(db, user_id)


@router.post("/categories", response_model=schemas.CategoryRead, status_code=status.HTTP_201_CREATED)
def create_category(
    category_in: schemas.CategoryCreate,
    db: Session = Depends(get_db),
    user_id: int = Depends(authenticated_user),
) -> schemas.CategoryRead:
    return crud.create_category(db, user_id, category_in)


@router.delete("/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_category(
    category_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(authenticated_user),
) -> None:
    crud.delete_category(db, user_id, category_id)


@router.post("/income", response_model=schemas.IncomeRead, status_code=status.HTTP_201_CREATED)
def create_income(
    income_in: schemas.IncomeCreate,
    db: Session = Depends(get_db),
    user_id: int = Depends(authenticated_user),
) -> schemas.IncomeRead:
    return crud.create_income(db, user_id, income_in)


@router.delete("/income/{income_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_income(
    income_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(authenticated_user),
) -> None:
    crud.delete_income(db, user_id, income_id)


@router.post("/expense", response_model=schemas.ExpenseRead, status_code=status.HTTP_201_CREATED)
def create_expense(
    expense_in: schemas.ExpenseCreate,
    db: Session = Depends(get_db),
    user_id: int = Depends(authenticated_user),
) -> schemas.ExpenseRead:
    return crud.create_expense(db, user_id, expense_in)


@router.delete("/expense/{expense_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(authenticated_user),
) -> None:
    crud.delete_expense(db, user_id, expense_id)


@router.get("/recurring", response_model=List[schemas.RecurringRead])
def list_recurring(
    db: Session = Depends(get_db),
    user_id: int = Depends(authenticated_user),
) -> List[schemas.RecurringRead]:
    return crud.list_recurring(db, user_id)


@router.post("/recurring", response_model=schemas.RecurringRead, status_code=status.HTTP_201_CREATED)
def create_recurring(
    recurring_in: schemas.RecurringCreate,
    db: Session = Depends(get_db),
    user_id: int = Depends(authenticated_user),
) -> schemas.RecurringRead:
    return crud.create_recurring(db, user_id, recurring_in)


@router.delete("/recurring/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_recurring(
    template_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(authenticated_user),
) -> None:
    crud.delete_recurring(db, user_id, template_id)


@router.get("/transactions", response_model=schemas.FeedPageRead)
def list_transactions(
    limit: Optional[str] = Query(None),
    sort: Optional[str] = Query(None),
    cursor: Optional[str] = Query(None),
    type_: Optional[str] = Query(None, alias="type"),
    category_id: Optional[str] = Query(None),
    from_: Optional[str] = Query(None, alias="from"),
    to: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user_id: int = Depends(authenticated_user),
) -> schemas.FeedPageRead:
    query = feed.parse_feed_query(
        limit=limit,
        sort=sort,
        cursor=cursor,
        type_=type_,
        category_id=category_id,
        start=from_,
        end=to,
    )
    page = feed.fetch_page(db, user_id, query)
    return schemas.FeedPageRead(
        items=[schemas.feed_item(view) for view in page.items],
        next_cursor=page.next_cursor,
    )


@router.get("/budget/dashboard", response_model=schemas.DashboardRead)
def dashboard(db: Session = Depends(get_db), user_id: int = Depends(authenticated_user)) -> schemas.DashboardRead:
    return reporting.monthly_dashboard(db, user_id)


@router.get("/reports/spending-by-category", response_model=List[schemas.CategorySpendRead])
def spending_by_category(
    db: Session = Depends(get_db),
    user_id: int = Depends(authenticated_user),
) -> List[schemas.CategorySpendRead]:
    return reporting.spending_by_category(db, user_id)


@router.get("/templates/export")
def export_template(db: Session = Depends(get_db), user_id: int = Depends(authenticated_user)) -> Response:
    document = templates.export_template(db, user_id)
    return Response(
        content=templates.render_template(document),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{templates.export_filename()}"'},
    )


@router.post("/templates/import", response_model=schemas.ImportResultRead)
def import_template(
    request: Request,
    raw: bytes = Depends(read_template_body),
    db: Session = Depends(get_db),
    user_id: int = Depends(authenticated_user),
) -> schemas.ImportResultRead:
    payload = templates.load_template_payload(raw, request.app.state.settings.max_import_bytes)
    return templates.import_template(db, user_id, payload)


def _error_response(message: str, status_code: int) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse({"message": message}, status_code=status_code, headers=headers)


async def handle_domain_error(_: Request, exc: BudgetWiseError) -> JSONResponse:
    if exc.status_code >= 500:
        LOG.error("Internal failure: %s", exc.message)
        return _error_response("Internal server error.", exc.status_code)
    return _error_response(exc.message, exc.status_code)


async def handle_http_error(_: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(str(exc.detail), exc.status_code)


async def handle_request_validation(_: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if not errors:
        return _error_response("Invalid request.", status.HTTP_400_BAD_REQUEST)
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
    message = first.get("msg", "Invalid request.")
    return _error_response(f"{location}: {message}" if location else message, status.HTTP_400_BAD_REQUEST)


def create_app(settings: Settings | None = None, database: Database | None = None) -> FastAPI:
    """Build the application around an explicitly constructed store handle."""

    settings = settings or load_settings()
    setup_logger("budgetwise", json_format=settings.json_logs, level=settings.log_level)
    owns_database = database is None
    database = database or Database(settings.database_url)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        database.init_db()
        yield
        # Handles injected by the caller are disposed by the caller.
        if owns_database:
            database.dispose()

    app = FastAPI(title="BudgetWise API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            LOG.exception("Unhandled error on %s %s", request.method, request.url.path)
            response = _error_response("Internal server error.", status.HTTP_500_INTERNAL_SERVER_ERROR)
        elapsed = (time.perf_counter() - started) * 1000
        log_request(
            LOG,
            request.method,
            request.url.path,
            response.status_code,
            elapsed,
            user_id=getattr(request.state, "user_id", None),
        )
        return response

    app.add_exception_handler(BudgetWiseError, handle_domain_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation)

    app.include_router(router)
    app.include_router(router, prefix="/api")
    return app


__all__ = ["create_app", "router"]
