import os
import logging
from dotenv import load_dotenv
from fastapi import FastAPI, Depends, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from contextlib import asynccontextmanager

# Load environment variables before the routers read their settings
load_dotenv()

from utils.firebase import init_firebase, get_db
from utils.room_lifecycle import RoomError

from routes.auth_routes import router as auth_router
from routes.story_routes import router as story_router
from routes.ai_routes import router as ai_router
from routes.multiplayer_routes import router as multiplayer_router
from routes.dashboard_routes import router as dashboard_router

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(_app: FastAPI):
    # runs once before the first request
    init_firebase()
    yield

app = FastAPI(
  title="Story Rooms API",
  lifespan=lifespan,
  dependencies=[Depends(get_db)]
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "http://127.0.0.1:3000").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Every error leaves the API as {"error": ...}
@app.exception_handler(RoomError)
async def room_error_handler(_request: Request, exc: RoomError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.error, **exc.extra})

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(_request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )

@app.exception_handler(RequestValidationError)
async def validation_error_handler(_request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": f"{field}: {message}" if field else message},
    )

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


# Router registration
app.include_router(auth_router, prefix="/auth", tags=["auth"])
app.include_router(story_router, prefix="/stories", tags=["stories"])
app.include_router(ai_router, prefix="/ai", tags=["ai"])
app.include_router(multiplayer_router, prefix="/rooms", tags=["multiplayer"])
app.include_router(dashboard_router, tags=["dashboard"])

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=True,
    )
