from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from ..modules.identity.roles import GROUPS, ROLES
from ..repositories import users_repo

router = APIRouter(tags=["users"])


class UserCreateRequest(BaseModel):
    email: str
    role: str
    displayName: str | None = None
    assignedGroup: str | None = None
    status: str = "pending"
    approvedBy: str | None = None


class UserUpdateRequest(BaseModel):
    role: str | None = None
    displayName: str | None = None
    assignedGroup: str | None = None
    status: str | None = None
    approvedBy: str | None = None


@router.get("/users")
def list_users(
    role: str | None = Query(default=None),
    status: str | None = Query(default=None),
):
    users = users_repo.list_users()
    if role:
        users = [u for u in users if str(u.get("role") or "").lower() == role.strip().lower()]
    if status:
        users = [u for u in users if u.get("status") == status.strip().lower()]
    return {"users": users, "roles": list(ROLES), "groups": list(GROUPS)}


@router.post("/users", status_code=201)
def create_user(body: UserCreateRequest):
    try:
        if users_repo.get_user(body.email):
            raise HTTPException(status_code=409, detail="User already exists")
        return users_repo.upsert_user(
            email=body.email,
            role=body.role,
            display_name=body.displayName,
            assigned_group=body.assignedGroup,
            status=body.status,
            approved_by=body.approvedBy,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.get("/users/{email}")
def get_user(email: str):
    user = users_repo.get_user(email)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.put("/users/{email}")
def update_user(email: str, body: UserUpdateRequest):
    updates = body.model_dump(exclude={"approvedBy"}, exclude_none=True)
    try:
        return users_repo.update_user(email, updates, approved_by=body.approvedBy)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.delete("/users/{email}")
def delete_user(email: str):
    users_repo.delete_user(email)
    return {"success": True, "email": users_repo.normalize_email(email)}
