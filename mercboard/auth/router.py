from fastapi import APIRouter, Depends, HTTPException

from ..db import get_store
from ..logging import structlog
from ..schemas.auth import LoginRequest, MeResponse, TokenResponse
from ..storage.provider import CollectionStore
from .security import create_role_token, get_current_role, role_for_password


router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, store: CollectionStore = Depends(get_store)):
    role = role_for_password(req.password.strip(), store.read_settings())
    if role is None:
        structlog.get_logger().info("login_rejected")
        raise HTTPException(status_code=401, detail="Invalid password")
    structlog.get_logger().info("login_succeeded", role=role)
    return TokenResponse(role=role, token=create_role_token(role))


@router.get("/me", response_model=MeResponse)
def me(role: str = Depends(get_current_role)):
    return MeResponse(role=role)
