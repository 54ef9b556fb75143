"""
Pydantic schemas for the HTTP API.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field

from classroom_todos.types import TodoRecord, User


class UserResponse(BaseModel):
    id: str
    username: str
    role: str
    created_by: Optional[str] = None
    active: bool
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(**user.as_dict())


class TodoResponse(BaseModel):
    id: str
    user_id: str
    text: str
    completed: bool
    created_at: str
    updated_at: str
    user: Optional[UserResponse] = None

    @classmethod
    def from_todo(cls, todo: TodoRecord) -> "TodoResponse":
        return cls(**todo.as_dict())


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=128)
    password: str = Field(..., max_length=256)


class SessionResponse(BaseModel):
    state: str
    user: Optional[UserResponse] = None
    established_at: Optional[str] = None


class CreateStudentRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=128)
    password: str = Field(..., min_length=1, max_length=256)


class CreateTodoRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=1024)


class UpdateTodoRequest(BaseModel):
    text: Optional[str] = Field(default=None, min_length=1, max_length=1024)
    completed: Optional[bool] = None


class WriteResponse(BaseModel):
    status: Literal["ok"]
    persisted_remotely: bool


class StatusResponse(BaseModel):
    type: str
    configured: dict
    session_state: str


class AuthUrlResponse(BaseModel):
    url: str


class OAuthCallbackResponse(BaseModel):
    authorized: bool
    token_state: str
