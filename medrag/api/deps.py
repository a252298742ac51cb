"""Request-scoped accessors for services held on ``app.state``."""

from fastapi import Request

from ..config.settings import Settings
from ..ingest import IngestionPipeline
from ..retrieval import RetrievalEngine
from ..store.base import DocumentStore
from ..tracker import EventBus, ProcessingTracker


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> DocumentStore:
    return request.app.state.store


def get_pipeline(request: Request) -> IngestionPipeline:
    return request.app.state.pipeline


def get_engine(request: Request) -> RetrievalEngine:
    return request.app.state.engine


def get_tracker(request: Request) -> ProcessingTracker:
    return request.app.state.tracker


def get_events(request: Request) -> EventBus:
    return request.app.state.events
