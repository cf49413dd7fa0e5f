import logging

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.db.mongodb import init_mongodb, close_mongodb
from app.middleware.error_handler import ErrorHandlerMiddleware, register_exception_handlers
from app.routes import chat, generate, profile, projects

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_mongodb()
    logging.getLogger(__name__).info("Project store connection established")
    yield
    await close_mongodb()
    logging.getLogger(__name__).info("Project store connection closed")


app = FastAPI(title="AI Data Engineer", version="0.1.0", lifespan=lifespan)
register_exception_handlers(app)

# Middleware (order matters: outermost first)
app.add_middleware(ErrorHandlerMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes
app.include_router(profile.router, prefix="/api")
app.include_router(generate.router, prefix="/api")
app.include_router(projects.router, prefix="/api")
app.include_router(chat.router, prefix="/api")


@app.get("/api/health")
async def health():
    return {"status": "ok"}
