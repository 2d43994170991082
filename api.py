import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Annotated, List, Literal, Optional, Union

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from config import settings
from database import get_db_connection
from google_books_service import ExternalServiceError
from http_client import cleanup_http_client, get_http_client
from marketplace import (
    AuthenticationError,
    BookNotFoundError,
    DuplicateUsernameError,
    Marketplace,
    SearchResult,
    StoreError,
    ValidationError,
)
from rental import MAX_RENTAL_DURATION

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

marketplace = Marketplace()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Open the shared outbound client on startup
    await get_http_client()
    try:
        yield
    finally:
        await cleanup_http_client()

app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error handlers ---
@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error(f"{request.method} {request.url.path} failed in the store: {exc}")
    return JSONResponse(status_code=500, content={"detail": str(exc)})


@app.exception_handler(ExternalServiceError)
async def external_service_error_handler(request: Request, exc: ExternalServiceError):
    logger.error(f"{request.method} {request.url.path} failed upstream: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Error searching books"})


# --- Models ---
class CamelModel(BaseModel):
    """Snake_case attributes, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CategoryModel(CamelModel):
    id: int
    name: str


class BookModel(CamelModel):
    id: int
    google_books_id: str | None = None
    title: str
    authors: str | None = None
    description: str | None = None
    image_url: str | None = None
    renter_id: int | None = None
    rental_price: float
    rental_duration: int
    category_id: int | None = None
    category_name: str | None = None


class BookCreateModel(CamelModel):
    title: str = Field(min_length=1)
    renter_id: int
    rental_price: float = Field(ge=0, allow_inf_nan=False)
    rental_duration: int = Field(gt=0, le=MAX_RENTAL_DURATION, description="Rental period in days")
    category_id: int
    google_books_id: str | None = None
    authors: str | None = None
    description: str | None = None
    image_url: str | None = None


class LocalSearchResultModel(BookModel):
    source: Literal["local"] = SearchResult.LOCAL


class ExternalSearchResultModel(CamelModel):
    """A provider result; not rentable until a renter lists it."""
    source: Literal["external"] = SearchResult.EXTERNAL
    id: str
    title: str
    authors: str
    description: str | None = None
    image_url: str | None = None
    is_google_book: bool = True


SearchResultModel = Annotated[
    Union[LocalSearchResultModel, ExternalSearchResultModel],
    Field(discriminator="source"),
]


class UserRegisterModel(CamelModel):
    username: str = Field(min_length=1)
    password: str
    user_type: Literal["user", "renter"]


class UserLoginModel(BaseModel):
    username: str
    password: str


class UserModel(CamelModel):
    id: int
    username: str
    user_type: str


class RentalCreateModel(CamelModel):
    book_id: int
    user_id: int
    # Accepted for compatibility; the server computes both dates itself
    rental_date: str | None = None
    return_date: str | None = None


class RentalModel(CamelModel):
    id: int
    book_id: int
    user_id: int
    rental_date: str
    return_date: str
    title: str | None = None
    authors: str | None = None
    image_url: str | None = None
    rental_price: float | None = None
    rental_duration: int | None = None
    category_name: str | None = None


# --- Helpers ---
def _to_search_model(result: SearchResult) -> Union[LocalSearchResultModel, ExternalSearchResultModel]:
    if result.is_local:
        return LocalSearchResultModel(**result.book.to_dict())
    return ExternalSearchResultModel(**result.book.to_dict())


def _parse_category_filter(category: Optional[str]) -> Optional[int]:
    """The client sends an empty string when no category is selected."""
    if category is None or not category.strip():
        return None
    try:
        return int(category)
    except ValueError:
        raise HTTPException(status_code=400, detail="category must be a category id.")


# --- Health ---
@app.get("/health")
def health():
    """Lightweight health endpoint with a quick database probe."""
    db_ok = True
    try:
        conn = get_db_connection(marketplace.db_file)
        try:
            conn.execute("SELECT 1")
        finally:
            conn.close()
    except Exception as e:
        logger.warning(f"Health probe failed: {e}")
        db_ok = False
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "db": db_ok,
        "services": {"google_books": marketplace.google_books is not None},
    }


# --- Search ---
@app.get("/api/search", response_model=List[SearchResultModel])
async def search_books(query: str = Query(..., description="Free-text search over title and authors")):
    """Search local listings and the external provider with the same query."""
    results = await marketplace.search(query)
    return [_to_search_model(r) for r in results]


# --- Books ---
@app.get("/api/books", response_model=List[BookModel])
def get_books(
    query: Optional[str] = Query(None, description="Substring of title or authors"),
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    category: Optional[str] = Query(None, description="Category id"),
):
    """Browse listed books with optional price and category filters."""
    books = marketplace.list_books(
        query=query,
        min_price=min_price,
        max_price=max_price,
        category_id=_parse_category_filter(category),
    )
    return [BookModel(**b.to_dict()) for b in books]


@app.post("/api/books", response_model=BookModel, status_code=201)
def add_book(payload: BookCreateModel):
    """List a book for rent."""
    book = marketplace.list_book(**payload.model_dump())
    return BookModel(**book.to_dict())


@app.get("/api/categories", response_model=List[CategoryModel])
def get_categories():
    return [CategoryModel(**c.to_dict()) for c in marketplace.list_categories()]


# --- Users ---
@app.post("/api/users/register", response_model=UserModel, status_code=201)
def register_user(payload: UserRegisterModel):
    try:
        user = marketplace.register(payload.username, payload.password, payload.user_type)
    except DuplicateUsernameError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return UserModel(**user.to_dict())


@app.post("/api/users/login", response_model=UserModel)
def login_user(payload: UserLoginModel):
    """Check credentials. No token is issued; clients pass the returned id along."""
    try:
        user = marketplace.login(payload.username, payload.password)
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=str(e))
    return UserModel(**user.to_dict())


# --- Rentals ---
@app.post("/api/rentals", response_model=RentalModel, response_model_exclude_none=True, status_code=201)
def create_rental(payload: RentalCreateModel):
    try:
        rental = marketplace.rent_book(payload.book_id, payload.user_id)
    except BookNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return RentalModel(**rental.to_dict())


@app.get("/api/rentals/{user_id}", response_model=List[RentalModel])
def get_rentals(user_id: int):
    """Rental history of a user, with book and category details."""
    return [RentalModel(**r.to_dict()) for r in marketplace.rental_history(user_id)]


@app.get("/api/recommendations/{user_id}", response_model=List[BookModel])
def get_recommendations(user_id: int):
    """Up to five random books the user has not rented yet."""
    return [BookModel(**b.to_dict()) for b in marketplace.recommendations(user_id)]
