import logging
import traceback
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo import MongoClient
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import comments as comment_service
import heatmap as heatmap_service
import pins as pin_service
import users as user_service
import votes as vote_service
from auth import FirebaseVerifier, Identity, bearer_token
from config import Settings
from database import Store, serialize
from errors import ApiError, BadRequestError, UnauthorizedError
from geocoding import GoogleGeocoder
from logging_config import setup_logging
from moderation import ProfanityModerator
from queries import parse_day
from schemas import CommentCreate, PinCreate, RegisterRequest, VoteCast
from translation import MyMemoryTranslator

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------- Dependencies ----------

def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> Store:
    return request.app.state.store


def get_geocoder(request: Request) -> GoogleGeocoder:
    return request.app.state.geocoder


def get_translator(request: Request) -> MyMemoryTranslator:
    return request.app.state.translator


def get_moderator(request: Request) -> ProfanityModerator:
    return request.app.state.moderator


def get_identity(request: Request, authorization: Optional[str] = Header(None)) -> Identity:
    return request.app.state.verifier.verify(bearer_token(authorization))


def get_current_user(identity: Identity = Depends(get_identity), store: Store = Depends(get_store)) -> dict:
    user = user_service.find_by_subject(store, identity.subject_id)
    if user is None:
        raise UnauthorizedError("User not registered")
    return user


# ---------- Basic ----------

@router.get("/")
def root():
    return {"name": "Pinboard API", "status": "ok"}


@router.get("/health")
def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/test")
def test_database(store: Store = Depends(get_store)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_name": store.db.name,
        "collections": []
    }
    try:
        response["collections"] = store.db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
    except Exception as e:
        response["database"] = f"⚠️ {str(e)[:80]}"
    return response


# ---------- Auth ----------

@router.post("/auth/register", status_code=201)
def register(payload: RegisterRequest, identity: Identity = Depends(get_identity), store: Store = Depends(get_store)):
    user = user_service.register(store, identity.subject_id, payload.username)
    return {"user": user}


# ---------- Comments ----------

@router.get("/comments")
def list_comments(
    country: Optional[str] = None,
    city: Optional[str] = None,
    pin_id: Optional[str] = None,
    sort: str = "top",
    date: Optional[str] = None,
    page: Optional[int] = 1,
    limit: Optional[int] = 20,
    lang: Optional[str] = None,
    store: Store = Depends(get_store),
    translator: MyMemoryTranslator = Depends(get_translator),
    settings: Settings = Depends(get_settings),
):
    return comment_service.list_comments(
        store,
        pin_id=pin_id,
        city=city,
        country=country,
        day=parse_day(date),
        sort=sort,
        page=page,
        limit=limit,
        lang=lang,
        translator=translator,
        tz_name=settings.reference_timezone,
    )


@router.get("/comments/{comment_id}")
def get_comment(
    comment_id: str,
    lang: Optional[str] = None,
    store: Store = Depends(get_store),
    translator: MyMemoryTranslator = Depends(get_translator),
):
    return {"comment": comment_service.get_comment(store, comment_id, lang, translator)}


@router.post("/comments", status_code=201)
def create_comment(
    payload: CommentCreate,
    user: dict = Depends(get_current_user),
    store: Store = Depends(get_store),
    geocoder: GoogleGeocoder = Depends(get_geocoder),
    moderator: ProfanityModerator = Depends(get_moderator),
    settings: Settings = Depends(get_settings),
):
    new_pin = None
    if payload.new_pin is not None:
        new_pin = comment_service.NewPin(
            name=payload.new_pin.name,
            lat=payload.new_pin.lat,
            lng=payload.new_pin.lng,
            google_place_id=payload.new_pin.google_place_id,
        )
    comment = comment_service.create_comment(
        store,
        geocoder,
        moderator,
        user,
        payload.content,
        country=payload.country,
        city=payload.city,
        pin_id=payload.pin_id,
        new_pin=new_pin,
        tz_name=settings.reference_timezone,
    )
    return {"comment": comment}


# ---------- Pins ----------

@router.get("/pins")
def search_pins(
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    radius: Optional[float] = None,
    store: Store = Depends(get_store),
):
    items = pin_service.search(store, lat, lng, radius)
    return {"pins": [serialize(p) for p in items]}


@router.get("/pins/suggest")
def suggest_pins(
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    geocoder: GoogleGeocoder = Depends(get_geocoder),
):
    lat, lng = pin_service.validate_coordinates(lat, lng)
    return {"suggestions": [s.to_dict() for s in geocoder.suggest_places(lat, lng)]}


@router.post("/pins", status_code=201)
def create_pin(
    payload: PinCreate,
    user: dict = Depends(get_current_user),
    store: Store = Depends(get_store),
    geocoder: GoogleGeocoder = Depends(get_geocoder),
):
    pin = pin_service.create_pin(
        store, geocoder, user["_id"], payload.name, payload.lat, payload.lng, payload.google_place_id
    )
    return {"pin": serialize(pin)}


# ---------- Voting ----------

@router.post("/votes")
def cast_vote(
    payload: VoteCast,
    response: Response,
    user: dict = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    if not payload.comment_id:
        raise BadRequestError("commentId is required")
    result = vote_service.cast_vote(store, user["_id"], payload.comment_id, payload.vote_type)
    response.status_code = 201 if result.action == vote_service.CREATED else 200
    return {"message": result.message, "voteType": result.vote_type}


@router.delete("/votes/{comment_id}")
def remove_vote(comment_id: str, user: dict = Depends(get_current_user), store: Store = Depends(get_store)):
    vote_service.remove_vote(store, user["_id"], comment_id)
    return {"message": "Vote removed"}


# ---------- Heatmap ----------

@router.get("/heatmap")
def get_heatmap(
    min_lat: Optional[float] = Query(None, alias="minLat"),
    max_lat: Optional[float] = Query(None, alias="maxLat"),
    min_lng: Optional[float] = Query(None, alias="minLng"),
    max_lng: Optional[float] = Query(None, alias="maxLng"),
    date: Optional[str] = None,
    store: Store = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    bounds = heatmap_service.Bounds.from_params(min_lat, max_lat, min_lng, max_lng)
    return heatmap_service.build_heatmap(store, parse_day(date), bounds, tz_name=settings.reference_timezone)


# ---------- Users ----------

@router.get("/users/{username}")
def get_user(username: str, store: Store = Depends(get_store)):
    return {"user": user_service.get_profile(store, username)}


@router.get("/users/{username}/comments")
def get_user_comments(
    username: str,
    sort: str = "newest",
    page: Optional[int] = 1,
    limit: Optional[int] = 20,
    store: Store = Depends(get_store),
):
    return user_service.get_comment_history(store, username, sort, page, limit)


# ---------- Errors ----------

def error_response(request: Request, status_code: int, message: str, exc: Exception) -> JSONResponse:
    body = {"message": message, "status": status_code}
    settings: Settings = request.app.state.settings
    if settings.is_development:
        body["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return JSONResponse(status_code=status_code, content={"error": body})


def handle_api_error(request: Request, exc: ApiError):
    return error_response(request, exc.status_code, exc.message, exc)


def handle_validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
        message = f"{field}: {first.get('msg')}" if field else first.get("msg")
    else:
        message = "Invalid request"
    return error_response(request, 400, message, exc)


def handle_http_error(request: Request, exc: StarletteHTTPException):
    message = "Not found" if exc.status_code == 404 else str(exc.detail)
    return error_response(request, exc.status_code, message, exc)


def handle_unexpected_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(request, 500, "Internal Server Error", exc)


# ---------- App ----------

def create_app(
    settings: Optional[Settings] = None,
    store: Optional[Store] = None,
    verifier: Optional[FirebaseVerifier] = None,
    geocoder: Optional[GoogleGeocoder] = None,
    translator: Optional[MyMemoryTranslator] = None,
    moderator: Optional[ProfanityModerator] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            app.state.store.ensure_indexes()
        except PyMongoError:
            logger.exception("Could not create indexes; continuing without them")
        yield

    app = FastAPI(title="Pinboard API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.store = store or Store(
        MongoClient(settings.mongo_url, serverSelectionTimeoutMS=int(settings.http_timeout * 1000)),
        settings.database_name,
        transactional=settings.mongo_transactions,
    )
    app.state.verifier = verifier or FirebaseVerifier(settings)
    app.state.geocoder = geocoder or GoogleGeocoder(settings.google_api_key, timeout=settings.http_timeout)
    app.state.translator = translator or MyMemoryTranslator(settings.mymemory_email, timeout=settings.http_timeout)
    app.state.moderator = moderator or ProfanityModerator()

    app.add_exception_handler(ApiError, handle_api_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    app.include_router(router)
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
