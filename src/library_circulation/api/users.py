"""Staff accounts and desk login."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..database.user_repository import UserRepository
from ..models.user import UserCreate, UserUpdate
from .dependencies import envelope, get_session, respond
from .schemas import LoginRequest, PasswordChange

router = APIRouter(tags=["Users"])


@router.post("/auth/login")
def login(body: LoginRequest, session: Session = Depends(get_session)):
    user = UserRepository(session).authenticate(body.username, body.password)
    return envelope({"user": user}, f"Welcome, {user.name or user.username}")


@router.get("/users")
def list_users(session: Session = Depends(get_session)):
    users = UserRepository(session).get_all(order_by="username")
    return envelope({"users": users, "count": len(users)})


@router.post("/users")
def create_user(body: UserCreate, session: Session = Depends(get_session)):
    user = UserRepository(session).create(body)
    return respond({"user": user}, f"User {user.username} created", status.HTTP_201_CREATED)


@router.patch("/users/{user_id}")
def update_user(user_id: int, body: UserUpdate, session: Session = Depends(get_session)):
    return envelope({"user": UserRepository(session).update(user_id, body)}, "User updated")


@router.delete("/users/{user_id}")
def delete_user(user_id: int, session: Session = Depends(get_session)):
    UserRepository(session).delete(user_id)
    return envelope(None, f"User {user_id} deleted")


@router.post("/users/{user_id}/password")
def change_password(user_id: int, body: PasswordChange, session: Session = Depends(get_session)):
    UserRepository(session).change_password(user_id, body.current_password, body.new_password)
    return envelope(None, "Password changed")
