"""
session.py
----------
Who is logged in, as an explicit value instead of app-wide flags.

``SessionState`` is immutable; ``login`` and ``logout`` are the only
transitions.  ``sign_in`` / ``sign_up`` wrap the naive name+password
endpoints and return the next state (or raise a user-facing error).
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from pydantic import BaseModel, ConfigDict

from .api_client import ApiClient, error_message, json_body
from .config import LOGIN_ENDPOINT_TEMPLATE, REGISTER_ENDPOINT_TEMPLATE
from .errors import AuthError, NetworkError, ServerError, ValidationError
from .schemas import Role

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

REGISTRATION_SUCCESS = "Registration successful! Please login."


class SessionState(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Optional[Role] = None
    identity: Optional[str] = None

    @property
    def logged_in(self) -> bool:
        return self.role is not None and bool(self.identity)


def login(role: Role, identity: str) -> SessionState:
    return SessionState(role=Role(role), identity=identity)


def logout() -> SessionState:
    return SessionState()


# ---------------------------------------------------------------------------
# Network transitions
# ---------------------------------------------------------------------------


async def sign_in(client: ApiClient, role: Role, name: str, password: str) -> SessionState:
    """
    POST ``/api/{role}/login`` and return the logged-in state.

    The identity is the ``name`` echoed by the server when present, so the
    patient's stored spelling is what later history lookups use.
    """
    role = Role(role)
    if not name.strip() or not password:
        raise ValidationError(["name", "password"], "Please enter both name and password.")

    try:
        response = await client.post(
            LOGIN_ENDPOINT_TEMPLATE.format(role=role.value),
            json={"name": name.strip(), "password": password},
        )
    except NetworkError as exc:
        raise AuthError(exc.user_message) from exc

    if not response.is_success:
        raise AuthError(error_message(response, "Login failed. Please check your credentials."))

    identity = name.strip()
    try:
        body = json_body(response)
    except ServerError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("name"), str) and body["name"].strip():
        identity = body["name"].strip()

    logger.info("%s %r logged in.", role.value.capitalize(), identity)
    return login(role, identity)


async def sign_up(
    client: ApiClient,
    role: Role,
    name: str,
    email: str,
    password: str,
    confirm_password: str,
) -> str:
    """POST ``/api/{role}/register``; returns the success message to show."""
    role = Role(role)
    if not name.strip() or not email.strip() or not password or not confirm_password:
        raise ValidationError(["name", "email", "password"], "Please fill all fields.")
    if not _EMAIL_RE.match(email.strip().lower()):
        raise ValidationError(["email"], "Please enter a valid email address.")
    if password != confirm_password:
        raise ValidationError(["confirm_password"], "Passwords do not match.")

    try:
        response = await client.post(
            REGISTER_ENDPOINT_TEMPLATE.format(role=role.value),
            json={"name": name.strip(), "email": email.strip(), "password": password},
        )
    except NetworkError as exc:
        raise AuthError(exc.user_message) from exc

    if not response.is_success:
        error = AuthError(error_message(response, "Registration failed. Please try again."))
        error.title = "Registration failed"
        raise error

    logger.info("Registered new %s %r.", role.value, name.strip())
    return REGISTRATION_SUCCESS
