from contextlib import asynccontextmanager
from typing import Annotated, Optional

from fastapi import FastAPI, Depends, Path, Query, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

import models
import schemas
from config import CORS_ORIGINS, LOG_LEVEL
from crud import ExpenseStore
from database import engine, get_db
from exceptions import ExpenseTrackerError, NotFoundError, PersistenceError
from logger import get_logger, setup_logging
from service import SORT_DATE_DESC, ExpenseService

logger = get_logger("api")

# Ids are stored as signed 64-bit integers
ExpenseId = Annotated[int, Path(le=2**63 - 1)]


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(LOG_LEVEL)
    # Create all tables on startup if they don't exist
    models.Base.metadata.create_all(bind=engine)
    logger.info("Expense Tracker API started")
    yield


app = FastAPI(
    title="Expense Tracker API",
    description="A personal finance expense tracker API with idempotent expense creation.",
    version="1.0.0",
    lifespan=lifespan,
)

# Browsers may only call the API from the configured origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(ExpenseTrackerError)
async def expense_tracker_exception_handler(request: Request, exc: ExpenseTrackerError):
    if isinstance(exc, PersistenceError):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message, exc_info=exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def get_expense_service(db: Session = Depends(get_db)) -> ExpenseService:
    return ExpenseService(ExpenseStore(db))


@app.get("/", tags=["Health"])
def root():
    return {"status": "ok", "message": "Expense Tracker API is running."}


@app.get("/health", tags=["Health"])
def health():
    return {"status": "healthy"}


@app.post(
    "/expenses",
    response_model=schemas.ExpenseResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Expenses"],
    summary="Create a new expense (idempotent)",
)
def create_expense(
    expense_in: schemas.ExpenseCreate,
    response: Response,
    service: ExpenseService = Depends(get_expense_service),
):
    """
    Create a new expense entry.

    - **Idempotent**: If you send the same `idempotency_key` more than once
      (e.g., due to a retry on a slow network), the API will return the original
      record with status 200 instead of creating a duplicate.
    - Without an `idempotency_key` every request creates a new expense.
    """
    expense, was_created = service.create_expense(expense_in)

    if not was_created:
        # Return 200 (not 201) to signal idempotent replay
        response.status_code = status.HTTP_200_OK

    return expense


@app.get(
    "/expenses",
    response_model=list[schemas.ExpenseResponse],
    tags=["Expenses"],
    summary="List expenses with optional filter and sort",
)
def list_expenses(
    category: Optional[str] = Query(default=None, description="Filter by category (exact match)"),
    sort: str = Query(default=SORT_DATE_DESC, description="date_desc or empty (newest first); any other value sorts oldest first"),
    service: ExpenseService = Depends(get_expense_service),
):
    """
    Retrieve all expenses.

    - Filter by `category` (case-sensitive exact match).
    - Sort by date: `sort=date_desc` (default, also when empty) = newest first, anything else = oldest first.
    """
    return service.list_expenses(category=category, sort=sort)


@app.get(
    "/expenses/categories",
    response_model=list[str],
    tags=["Expenses"],
    summary="Get all distinct categories",
)
def list_categories(service: ExpenseService = Depends(get_expense_service)):
    """Returns all unique categories currently in the database, for use in filter dropdowns."""
    return service.list_categories()


@app.get(
    "/expenses/{expense_id}",
    response_model=schemas.ExpenseResponse,
    tags=["Expenses"],
    summary="Get a single expense",
)
def get_expense(expense_id: ExpenseId, service: ExpenseService = Depends(get_expense_service)):
    expense = service.get_expense(expense_id)
    if expense is None:
        raise NotFoundError()
    return expense


@app.put(
    "/expenses/{expense_id}",
    response_model=schemas.ExpenseResponse,
    tags=["Expenses"],
    summary="Update an expense",
)
def update_expense(
    expense_id: ExpenseId,
    patch: schemas.ExpenseUpdate,
    service: ExpenseService = Depends(get_expense_service),
):
    """
    Replace amount, category, description and date of an expense.
    The id, creation time and idempotency key never change.
    """
    expense = service.update_expense(expense_id, patch)
    if expense is None:
        raise NotFoundError()
    return expense


@app.delete(
    "/expenses/{expense_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Expenses"],
    summary="Delete an expense",
)
def delete_expense(expense_id: ExpenseId, service: ExpenseService = Depends(get_expense_service)):
    if not service.delete_expense(expense_id):
        raise NotFoundError()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
