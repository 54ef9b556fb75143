"""
Backend selection and dependency wiring for the FastAPI app.

The storage backend is chosen once, from configuration, when the app is
built; the instances live on ``app.state`` and are handed to routes through
the ``get_*`` dependencies below.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from fastapi import HTTPException, Request

from classroom_todos.auth import AuthSession
from classroom_todos.config import Settings
from classroom_todos.credentials import CredentialStore
from classroom_todos.db import BackendKind, DatabaseService, MockDatabaseService
from classroom_todos.local_store import (
    FileLocalStore,
    InMemoryLocalStore,
    LocalStore,
    RedisLocalStore,
)
from classroom_todos.oauth import GoogleOAuthClient
from classroom_todos.sheets import (
    GoogleSheetsClient,
    GoogleSheetsOAuthService,
    GoogleSheetsReadOnlyService,
)
from classroom_todos.supabase_db import SupabaseDatabaseService
from classroom_todos.types import User

logger = logging.getLogger(__name__)


@dataclass
class ServiceInfo:
    type: BackendKind
    configured: dict = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {"type": self.type.value, "configured": dict(self.configured)}


def select_backend(settings: Settings) -> BackendKind:
    """OAuth Sheets > API-key Sheets > Supabase > local mock."""
    if settings.google_oauth_configured:
        return BackendKind.GOOGLE_OAUTH
    if settings.google_sheets_configured:
        return BackendKind.GOOGLE_SHEETS
    if settings.supabase_configured:
        return BackendKind.SUPABASE
    return BackendKind.MOCK


def get_database_service_info(settings: Settings) -> ServiceInfo:
    return ServiceInfo(
        type=select_backend(settings),
        configured={
            "google_oauth": settings.google_oauth_configured,
            "google_sheets": settings.google_sheets_configured,
            "supabase": settings.supabase_configured,
            "mock": True,
        },
    )


def create_local_store(settings: Settings) -> LocalStore:
    if settings.redis_url:
        return RedisLocalStore(url=settings.redis_url, key_prefix=settings.redis_key_prefix)
    if settings.use_in_memory_store:
        return InMemoryLocalStore()
    return FileLocalStore(settings.local_store_path)


def create_oauth_client(settings: Settings, store: LocalStore) -> GoogleOAuthClient:
    return GoogleOAuthClient(
        client_id=settings.google_oauth_client_id,
        client_secret=settings.google_oauth_client_secret,
        redirect_uri=settings.google_oauth_redirect_uri,
        store=store,
    )


def create_database_service(
    settings: Settings,
    store: LocalStore,
    oauth_client: Optional[GoogleOAuthClient] = None,
) -> DatabaseService:
    """Build the one backend this process will use."""
    kind = select_backend(settings)
    credentials = CredentialStore(permissive=not settings.strict_passwords)
    common = {"credentials": credentials, "export_timezone": settings.export_timezone}

    if kind == BackendKind.GOOGLE_OAUTH:
        oauth_client = oauth_client or create_oauth_client(settings, store)
        client = GoogleSheetsClient(
            settings.google_spreadsheet_id,
            token_provider=oauth_client.get_valid_access_token,
        )
        service: DatabaseService = GoogleSheetsOAuthService(client, **common)
    elif kind == BackendKind.GOOGLE_SHEETS:
        client = GoogleSheetsClient(
            settings.google_spreadsheet_id, api_key=settings.google_sheets_api_key
        )
        service = GoogleSheetsReadOnlyService(client, **common)
    elif kind == BackendKind.SUPABASE:
        service = SupabaseDatabaseService.from_credentials(
            settings.supabase_url, settings.supabase_anon_key, **common
        )
    else:
        service = MockDatabaseService(store, **common)

    logger.info("Using %s database service", kind.value)
    return service


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_db_service(request: Request) -> DatabaseService:
    return request.app.state.db


def get_auth_session(request: Request) -> AuthSession:
    return request.app.state.auth


def get_oauth_client(request: Request) -> GoogleOAuthClient:
    client = request.app.state.oauth
    if client is None:
        raise HTTPException(status_code=404, detail="OAuth is not enabled")
    return client


def require_user(request: Request) -> User:
    user = get_auth_session(request).current_user
    if user is None:
        raise HTTPException(status_code=401, detail="Not signed in")
    return user


def require_teacher(request: Request) -> User:
    user = require_user(request)
    if not user.is_teacher:
        raise HTTPException(status_code=403, detail="Teacher access required")
    return user
