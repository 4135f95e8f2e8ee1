import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Literal, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from config import settings
from booksmart.errors import (
    BusinessRuleError,
    ConflictError,
    LibraryError,
    NotFoundError,
    Unavailable,
    ValidationError,
)
from booksmart.library import Library

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

_library: Optional[Library] = None


def get_library() -> Library:
    """Process-wide Library instance; tests swap it through ``dependency_overrides``."""
    global _library
    if _library is None:
        _library = Library()
    return _library


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create the schema before serving requests
    get_library()
    logger.info(f"{settings.app_name} {settings.app_version} started")
    yield


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error mapping ---
def _status_for(exc: LibraryError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, BusinessRuleError):
        return 409
    if isinstance(exc, (Unavailable, ConflictError)):
        return 503
    return 500


@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    status = _status_for(exc)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    return JSONResponse(status_code=status, content={"detail": exc.message, "code": exc.code})


# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key")


def get_api_key(api_key: str = Security(api_key_header)):
    """Dependency guarding catalog administration endpoints."""
    if api_key == settings.api_key:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


def require_reader(
    reader_id: str,
    x_reader_id: Optional[str] = Header(default=None),
    x_reader_role: Optional[str] = Header(default=None),
) -> str:
    """The gateway authenticates callers and forwards their identity in headers.

    Readers may only act on their own resources; admins may act on anyone's.
    """
    if not x_reader_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    if x_reader_id != reader_id and (x_reader_role or "").lower() != "admin":
        raise HTTPException(status_code=403, detail="Access denied")
    return reader_id


# --- Models ---
class ReaderCreateModel(BaseModel):
    fio: str
    phone_number: str
    age: int = Field(ge=0)


class ReaderModel(BaseModel):
    id: str
    fio: str
    phone_number: str
    age: int
    created_at: Optional[str] = None


class BookCreateModel(BaseModel):
    title: str
    author: str
    copies_total: int = Field(ge=0)
    rarity: Literal["common", "rare", "unique"] = "common"
    age_limit: int = Field(default=0, ge=0)
    publisher: Optional[str] = None
    genre: Optional[str] = None
    publishing_year: Optional[int] = None
    language: Optional[str] = None


class BookModel(BaseModel):
    id: str
    title: str
    author: str
    copies_total: int
    copies_available: int
    rarity: str
    age_limit: int
    publisher: Optional[str] = None
    genre: Optional[str] = None
    publishing_year: Optional[int] = None
    language: Optional[str] = None
    created_at: Optional[str] = None


class LibCardModel(BaseModel):
    id: str
    reader_id: str
    lib_card_num: str
    issue_date: str
    validity_days: int
    active: bool
    expired: bool


class ReservationCreateModel(BaseModel):
    book_id: str


class ReservationExtendModel(BaseModel):
    extension_days: int = Field(description="Days added to the return date")


class ReservationModel(BaseModel):
    id: str
    reader_id: str
    book_id: str
    issue_date: str
    return_date: str
    state: str
    extended: bool


class FavoriteCreateModel(BaseModel):
    book_id: str


class RatingCreateModel(BaseModel):
    reader_id: str
    score: int
    review: str = ""


class RatingModel(BaseModel):
    id: str
    reader_id: str
    book_id: str
    score: int
    review: str
    created_at: Optional[str] = None


class AverageRatingModel(BaseModel):
    book_id: str
    average_score: float
    rating_count: int


class StatsModel(BaseModel):
    total_books: int
    total_readers: int
    open_reservations: int
    overdue_reservations: int


# --- Health ---
@app.get("/health")
def health(library: Library = Depends(get_library)):
    db_ok = True
    try:
        library.get_statistics()
    except LibraryError:
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "db": db_ok,
        "version": settings.app_version,
    }


@app.get("/stats", response_model=StatsModel)
def get_stats(library: Library = Depends(get_library)):
    return StatsModel(**library.get_statistics())


# --- Readers ---
@app.post("/readers", response_model=ReaderModel, status_code=201)
def register_reader(payload: ReaderCreateModel, library: Library = Depends(get_library)):
    reader = library.register_reader(payload.fio, payload.phone_number, payload.age)
    return ReaderModel(**reader.to_dict())


@app.get("/readers/{reader_id}", response_model=ReaderModel)
def get_reader(reader_id: str = Depends(require_reader), library: Library = Depends(get_library)):
    return ReaderModel(**library.get_reader(reader_id).to_dict())


# --- Library cards ---
@app.post("/readers/{reader_id}/lib_cards", response_model=LibCardModel, status_code=201)
def create_lib_card(reader_id: str = Depends(require_reader), library: Library = Depends(get_library)):
    card = library.create_lib_card(reader_id)
    return LibCardModel(**card.to_dict(library.now()))


@app.put("/readers/{reader_id}/lib_cards", response_model=LibCardModel)
def renew_lib_card(reader_id: str = Depends(require_reader), library: Library = Depends(get_library)):
    card = library.renew_lib_card(reader_id)
    return LibCardModel(**card.to_dict(library.now()))


@app.get("/readers/{reader_id}/lib_cards", response_model=LibCardModel)
def get_lib_card(reader_id: str = Depends(require_reader), library: Library = Depends(get_library)):
    card = library.get_lib_card(reader_id)
    return LibCardModel(**card.to_dict(library.now()))


# --- Reservations ---
def _owned_reservation(library: Library, reader_id: str, reservation_id: str):
    reservation = library.get_reservation(reservation_id)
    if reservation.reader_id != reader_id:
        # Do not reveal other readers' reservations
        raise HTTPException(status_code=404, detail="Reservation does not exist.")
    return reservation


@app.post("/readers/{reader_id}/reservations", response_model=ReservationModel, status_code=201)
def reserve_book(payload: ReservationCreateModel, reader_id: str = Depends(require_reader),
                 library: Library = Depends(get_library)):
    reservation = library.reserve_book(reader_id, payload.book_id)
    return ReservationModel(**reservation.to_dict(library.now()))


@app.get("/readers/{reader_id}/reservations", response_model=List[ReservationModel])
def list_reservations(reader_id: str = Depends(require_reader), library: Library = Depends(get_library)):
    now = library.now()
    return [ReservationModel(**r.to_dict(now)) for r in library.list_reader_reservations(reader_id)]


@app.get("/readers/{reader_id}/reservations/{reservation_id}", response_model=ReservationModel)
def get_reservation(reservation_id: str, reader_id: str = Depends(require_reader),
                    library: Library = Depends(get_library)):
    reservation = _owned_reservation(library, reader_id, reservation_id)
    return ReservationModel(**reservation.to_dict(library.now()))


@app.patch("/readers/{reader_id}/reservations/{reservation_id}", response_model=ReservationModel)
def extend_reservation(reservation_id: str, payload: ReservationExtendModel,
                       reader_id: str = Depends(require_reader), library: Library = Depends(get_library)):
    _owned_reservation(library, reader_id, reservation_id)
    reservation = library.extend_reservation(reservation_id, payload.extension_days)
    return ReservationModel(**reservation.to_dict(library.now()))


@app.post("/readers/{reader_id}/reservations/{reservation_id}/close", response_model=ReservationModel)
def close_reservation(reservation_id: str, reader_id: str = Depends(require_reader),
                      library: Library = Depends(get_library)):
    _owned_reservation(library, reader_id, reservation_id)
    reservation = library.close_reservation(reservation_id)
    return ReservationModel(**reservation.to_dict(library.now()))


# --- Favorites ---
@app.post("/readers/{reader_id}/favorite_books", status_code=201)
def add_favorite(payload: FavoriteCreateModel, reader_id: str = Depends(require_reader),
                 library: Library = Depends(get_library)):
    library.add_favorite(reader_id, payload.book_id)
    return {"reader_id": reader_id, "book_id": payload.book_id}


@app.get("/readers/{reader_id}/favorite_books", response_model=List[BookModel])
def list_favorites(reader_id: str = Depends(require_reader), library: Library = Depends(get_library)):
    return [BookModel(**b.to_dict()) for b in library.list_favorites(reader_id)]


# --- Books ---
@app.post("/books", response_model=BookModel, status_code=201, dependencies=[Depends(get_api_key)])
def add_book(payload: BookCreateModel, library: Library = Depends(get_library)):
    book = library.add_book(**payload.model_dump())
    return BookModel(**book.to_dict())


@app.get("/books", response_model=List[BookModel])
def list_books(
    title: Optional[str] = Query(None),
    author: Optional[str] = Query(None),
    publisher: Optional[str] = Query(None),
    genre: Optional[str] = Query(None),
    language: Optional[str] = Query(None),
    rarity: Optional[Literal["common", "rare", "unique"]] = Query(None),
    max_age_limit: Optional[int] = Query(None, ge=0),
    library: Library = Depends(get_library),
):
    books = library.search_books(
        title=title, author=author, publisher=publisher, genre=genre,
        language=language, rarity=rarity, max_age_limit=max_age_limit,
    )
    return [BookModel(**b.to_dict()) for b in books]


@app.get("/books/{book_id}", response_model=BookModel)
def get_book(book_id: str, library: Library = Depends(get_library)):
    return BookModel(**library.get_book(book_id).to_dict())


@app.delete("/books/{book_id}", dependencies=[Depends(get_api_key)])
def delete_book(book_id: str, library: Library = Depends(get_library)):
    library.delete_book(book_id)
    return {"message": f"Book {book_id} removed."}


@app.get("/books/{book_id}/reservations", response_model=List[ReservationModel],
         dependencies=[Depends(get_api_key)])
def list_book_reservations(book_id: str, library: Library = Depends(get_library)):
    now = library.now()
    return [ReservationModel(**r.to_dict(now)) for r in library.list_book_reservations(book_id)]


# --- Ratings ---
@app.post("/books/{book_id}/ratings", response_model=RatingModel, status_code=201)
def add_rating(book_id: str, payload: RatingCreateModel,
               x_reader_id: Optional[str] = Header(default=None),
               library: Library = Depends(get_library)):
    if not x_reader_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    if x_reader_id != payload.reader_id:
        raise HTTPException(status_code=403, detail="Access denied")
    rating = library.add_rating(payload.reader_id, book_id, payload.score, payload.review)
    return RatingModel(**rating.to_dict())


@app.get("/books/{book_id}/ratings", response_model=List[RatingModel])
def list_ratings(book_id: str, library: Library = Depends(get_library)):
    return [RatingModel(**r.to_dict()) for r in library.list_ratings(book_id)]


@app.get("/books/{book_id}/ratings/avg", response_model=AverageRatingModel)
def average_rating(book_id: str, library: Library = Depends(get_library)):
    average = library.average_score(book_id)
    return AverageRatingModel(
        book_id=book_id,
        average_score=round(average, 2),
        rating_count=len(library.list_ratings(book_id)),
    )
