from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from database import Base, engine, SessionLocal, get_settings
from api import raffle, oracle
from core.raffle_manager import RaffleConfig, RaffleManager

logger = logging.getLogger(__name__)


def setup_logging(level_name: str) -> None:
    level = getattr(logging, level_name.strip().upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: create tables and construct the raffle once
    settings = get_settings()
    setup_logging(settings.log_level)
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        RaffleManager.create_raffle(db, RaffleConfig.from_settings(settings))
    finally:
        db.close()
    yield


app = FastAPI(
    title="Raffle API",
    description="Recurring lottery settled by an external randomness oracle",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure this properly in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(raffle.router)
app.include_router(oracle.router)


@app.get("/")
def root():
    return {"message": "Raffle API", "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
