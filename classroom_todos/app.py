"""
FastAPI application entry point.

Run with ``uvicorn --factory classroom_todos.app:create_app``.

The app holds a single process-wide auth session (see ``routes``), so it is
meant for one local user; do not put it behind a shared address.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI

from classroom_todos.auth import AuthSession
from classroom_todos.config import Settings, get_settings
from classroom_todos.db import BackendKind, DatabaseService
from classroom_todos.dependencies import (
    create_database_service,
    create_local_store,
    create_oauth_client,
    select_backend,
)
from classroom_todos.local_store import LocalStore
from classroom_todos.routes import router


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[LocalStore] = None,
    db: Optional[DatabaseService] = None,
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    store = store or create_local_store(settings)
    oauth = None
    if select_backend(settings) == BackendKind.GOOGLE_OAUTH:
        oauth = create_oauth_client(settings, store)
    db = db or create_database_service(settings, store, oauth)

    auth = AuthSession(db, store)
    auth.restore()

    app = FastAPI(title="Classroom Todos", version="0.1.0")
    app.state.settings = settings
    app.state.store = store
    app.state.db = db
    app.state.oauth = oauth
    app.state.auth = auth
    app.include_router(router, prefix=settings.api_prefix)
    return app
