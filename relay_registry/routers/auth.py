from __future__ import annotations

"""
Auth & Admin Router

Endpoints:
  - POST   /auth/register     : create an admin account
  - POST   /auth/login        : exchange username/password for a bearer token
  - GET    /auth/me           : current admin profile
  - PUT    /auth/me           : update username / email
  - PUT    /auth/password     : change password (current password required)
  - GET    /admins            : list admin accounts
  - DELETE /admins/{id}       : delete another admin (never yourself, never the last one)

Registration is open while no admin exists (bootstrap) or when
``security.allow_admin_registration`` is set; otherwise only an
authenticated admin may create further accounts.
"""

from typing import List

from fastapi import APIRouter, Depends, Request, status

from ..deps import get_services
from ..errors import Forbidden, NotFound, Unauthorized
from ..logging import get_logger
from ..models.admins import (
    AdminLogin,
    AdminProfileUpdate,
    AdminRegister,
    AdminView,
    PasswordChange,
    TokenResponse,
)
from ..models.common import Message
from ..security.auth import require_admin
from ..security.tokens import AdminIdentity
from . import check_id

log = get_logger(__name__)

router = APIRouter(tags=["auth"])


def _token_response(request: Request, admin) -> TokenResponse:
    tokens = get_services(request).tokens
    return TokenResponse(
        access_token=tokens.issue(admin.id, admin.username),
        expires_in=tokens.expires_in,
        admin=AdminView.model_validate(admin),
    )


@router.post(
    "/auth/register",
    summary="Register an admin",
    response_model=TokenResponse,
    status_code=status.HTTP_201_CREATED,
)
def register(body: AdminRegister, request: Request) -> TokenResponse:
    svc = get_services(request)
    open_registration = svc.settings.security.allow_admin_registration or svc.admins.count() == 0
    if not open_registration:
        if not request.headers.get("authorization"):
            raise Forbidden("Admin registration is closed")
        require_admin(request)
    admin = svc.admins.register(body.username, body.password, email=body.email, qq_number=body.qq_number)
    return _token_response(request, admin)


@router.post("/auth/login", summary="Admin login", response_model=TokenResponse)
def login(body: AdminLogin, request: Request) -> TokenResponse:
    admin = get_services(request).admins.authenticate(body.username, body.password)
    if admin is None:
        raise Unauthorized("Invalid username or password", realm="admin")
    log.info("admin_login", admin_id=admin.id)
    return _token_response(request, admin)


@router.get("/auth/me", summary="Current admin", response_model=AdminView)
def me(request: Request, ident: AdminIdentity = Depends(require_admin)) -> AdminView:
    admin = get_services(request).admins.get(ident.admin_id)
    if admin is None:
        raise NotFound("Admin")
    return AdminView.model_validate(admin)


@router.put("/auth/me", summary="Update profile", response_model=AdminView)
def update_me(
    body: AdminProfileUpdate,
    request: Request,
    ident: AdminIdentity = Depends(require_admin),
) -> AdminView:
    admin = get_services(request).admins.update_profile(ident.admin_id, username=body.username, email=body.email)
    return AdminView.model_validate(admin)


@router.put("/auth/password", summary="Change password", response_model=Message)
def change_password(
    body: PasswordChange,
    request: Request,
    ident: AdminIdentity = Depends(require_admin),
) -> Message:
    get_services(request).admins.change_password(ident.admin_id, body.current_password, body.new_password)
    return Message(message="Password updated")


@router.get("/admins", summary="List admins", response_model=List[AdminView])
def list_admins(request: Request, _ident: AdminIdentity = Depends(require_admin)) -> List[AdminView]:
    return [AdminView.model_validate(a) for a in get_services(request).admins.list()]


@router.delete("/admins/{admin_id}", summary="Delete an admin", response_model=Message)
def delete_admin(admin_id: int, request: Request, ident: AdminIdentity = Depends(require_admin)) -> Message:
    get_services(request).admins.delete(check_id(admin_id), acting_id=ident.admin_id)
    return Message(message="Admin deleted")
