"""
HTTP routes. The app is a single-user shell around one auth session, the way
a browser tab is: whoever signs in here is "the current user".

That session is process-wide and no per-client token is issued, so every
caller acts as the last user who signed in. Serve it to one person only
(for example bound to localhost); never expose it to several users.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from classroom_todos.auth import AuthSession
from classroom_todos.config import Settings
from classroom_todos.db import DatabaseService
from classroom_todos.dependencies import (
    get_auth_session,
    get_database_service_info,
    get_db_service,
    get_oauth_client,
    get_settings_dep,
    require_teacher,
    require_user,
)
from classroom_todos.export import export_filename, local_today
from classroom_todos.oauth import GoogleOAuthClient
from classroom_todos.schemas import (
    AuthUrlResponse,
    CreateStudentRequest,
    CreateTodoRequest,
    LoginRequest,
    OAuthCallbackResponse,
    SessionResponse,
    StatusResponse,
    TodoResponse,
    UpdateTodoRequest,
    UserResponse,
    WriteResponse,
)
from classroom_todos.types import TodoUpdate, User, WriteResult

logger = logging.getLogger(__name__)

router = APIRouter()

GENERIC_FAILURE = "The operation could not be completed"


def _write_response(result: WriteResult, not_found: bool = False) -> WriteResponse:
    if not result:
        raise HTTPException(
            status_code=404 if not_found else 400, detail=GENERIC_FAILURE
        )
    return WriteResponse(status="ok", persisted_remotely=result.persisted_remotely)


async def _require_own_todo(db: DatabaseService, user: User, todo_id: str) -> None:
    todos = await db.get_todos(user.id)
    if not any(t.id == todo_id for t in todos):
        raise HTTPException(status_code=404, detail="Todo not found")


def _session_response(auth: AuthSession) -> SessionResponse:
    session = auth.session
    return SessionResponse(
        state=auth.state.value,
        user=UserResponse.from_user(session.user) if session else None,
        established_at=session.established_at if session else None,
    )


@router.get("/status", response_model=StatusResponse)
def status(
    settings: Settings = Depends(get_settings_dep),
    auth: AuthSession = Depends(get_auth_session),
):
    info = get_database_service_info(settings)
    return StatusResponse(**info.as_dict(), session_state=auth.state.value)


@router.post("/auth/login", response_model=SessionResponse)
async def login(payload: LoginRequest, auth: AuthSession = Depends(get_auth_session)):
    if not await auth.login(payload.username, payload.password):
        raise HTTPException(status_code=401, detail=auth.error)
    return _session_response(auth)


@router.post("/auth/logout", response_model=SessionResponse)
def logout(auth: AuthSession = Depends(get_auth_session)):
    auth.logout()
    return _session_response(auth)


@router.get("/auth/session", response_model=SessionResponse)
def current_session(auth: AuthSession = Depends(get_auth_session)):
    return _session_response(auth)


@router.get("/todos", response_model=list[TodoResponse])
async def list_todos(
    user: User = Depends(require_user),
    db: DatabaseService = Depends(get_db_service),
):
    return [TodoResponse.from_todo(t) for t in await db.get_todos(user.id)]


@router.post("/todos", response_model=TodoResponse, status_code=201)
async def create_todo(
    payload: CreateTodoRequest,
    user: User = Depends(require_user),
    db: DatabaseService = Depends(get_db_service),
):
    todo = await db.create_todo(user.id, payload.text)
    if todo is None:
        raise HTTPException(status_code=400, detail=GENERIC_FAILURE)
    return TodoResponse.from_todo(todo)


@router.patch("/todos/{todo_id}", response_model=WriteResponse)
async def update_todo(
    todo_id: str,
    payload: UpdateTodoRequest,
    user: User = Depends(require_user),
    db: DatabaseService = Depends(get_db_service),
):
    await _require_own_todo(db, user, todo_id)
    update = TodoUpdate(text=payload.text, completed=payload.completed)
    return _write_response(await db.update_todo(todo_id, update), not_found=True)


@router.delete("/todos/{todo_id}", response_model=WriteResponse)
async def delete_todo(
    todo_id: str,
    user: User = Depends(require_user),
    db: DatabaseService = Depends(get_db_service),
):
    await _require_own_todo(db, user, todo_id)
    return _write_response(await db.delete_todo(todo_id), not_found=True)


@router.post("/todos/clear-completed", response_model=WriteResponse)
async def clear_completed(
    user: User = Depends(require_user),
    db: DatabaseService = Depends(get_db_service),
):
    return _write_response(await db.clear_completed_todos(user.id))


@router.get("/students", response_model=list[UserResponse])
async def list_students(
    teacher: User = Depends(require_teacher),
    db: DatabaseService = Depends(get_db_service),
):
    return [UserResponse.from_user(s) for s in await db.get_students(teacher.id)]


@router.post("/students", response_model=WriteResponse, status_code=201)
async def create_student(
    payload: CreateStudentRequest,
    teacher: User = Depends(require_teacher),
    db: DatabaseService = Depends(get_db_service),
):
    result = await db.create_student(payload.username, payload.password, teacher.id)
    return _write_response(result)


@router.post("/students/{student_id}/toggle", response_model=WriteResponse)
async def toggle_student(
    student_id: str,
    teacher: User = Depends(require_teacher),
    db: DatabaseService = Depends(get_db_service),
):
    students = await db.get_students(teacher.id)
    if not any(s.id == student_id for s in students):
        raise HTTPException(status_code=404, detail="Student not found")
    return _write_response(await db.toggle_student_status(student_id), not_found=True)


@router.get("/teacher/todos", response_model=list[TodoResponse])
async def teacher_todos(
    teacher: User = Depends(require_teacher),
    db: DatabaseService = Depends(get_db_service),
):
    todos = await db.get_all_todos_for_teacher(teacher.id)
    return [TodoResponse.from_todo(t) for t in todos]


@router.get("/export.csv")
async def export_csv(
    teacher: User = Depends(require_teacher),
    db: DatabaseService = Depends(get_db_service),
    settings: Settings = Depends(get_settings_dep),
):
    content = await db.export_to_csv(teacher.id)
    filename = export_filename(local_today(settings.export_timezone))
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/oauth/authorize", response_model=AuthUrlResponse)
def oauth_authorize(oauth: GoogleOAuthClient = Depends(get_oauth_client)):
    return AuthUrlResponse(url=oauth.get_auth_url())


@router.get("/oauth/callback", response_model=OAuthCallbackResponse)
async def oauth_callback(
    code: str = Query(""),
    state: str = Query(""),
    oauth: GoogleOAuthClient = Depends(get_oauth_client),
    db: DatabaseService = Depends(get_db_service),
):
    authorized = await oauth.handle_auth_callback(code, state)
    if authorized and hasattr(db, "reload"):
        logger.info("Google authorization completed; reloading sheet data")
        await db.reload()
    return OAuthCallbackResponse(authorized=authorized, token_state=oauth.state.value)
