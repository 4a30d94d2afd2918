from pathlib import Path
from typing import Dict, Any

from fastapi import Depends, Request
from pydantic_settings import BaseSettings
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, Session, create_engine

from .store import ShipmentStore


class Settings(BaseSettings):
    # Env or .env
    DATABASE_URL: str = "sqlite:///./shiptrack.db"
    UPLOAD_DIR: str = "./uploads"
    BASE_URL: str = ""  # used for label_url
    SESSION_SECRET: str = "change-me"
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False
    BULK_TRACK_LIMIT: int = 100
    AWB_INSERT_ATTEMPTS: int = 3
    DEFAULT_WEIGHT: float = 0.5

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()


def make_engine(url: str) -> Engine:
    # SQLite needs this outside the creating thread
    connect_args: Dict[str, Any] = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    return create_engine(url, echo=False, connect_args=connect_args)


engine = make_engine(settings.DATABASE_URL)


def init_db(bind: Engine):
    SQLModel.metadata.create_all(bind)
    Path(settings.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)


def get_session(request: Request):
    with Session(request.app.state.engine) as session:
        yield session


def get_store(session: Session = Depends(get_session)) -> ShipmentStore:
    return ShipmentStore(session)


def label_url(awb: str) -> str:
    return f"{settings.BASE_URL}/print/{awb}"
