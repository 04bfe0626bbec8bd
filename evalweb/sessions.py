"""
evaldash session cookies and shared FastAPI dependencies.

Each browser gets an opaque session id cookie; the server keeps the eval/run/
test-criteria linkage (and an optional API key from the settings page) in an
EvalSession behind it.

Usage:
    @router.get("/things")
    def list_things(session: EvalSession = Depends(get_session),
                    client: EvalServiceClient = Depends(get_client)):
        ...
"""

from typing import Optional

from fastapi import Depends, Request, Response

from evalcore.client import EvalServiceClient
from evalcore.config import Settings
from evalcore.session import EvalSession, SessionStore
from evalcore.translation import Translator, build_translator

COOKIE_NAME = "evaldash_session"
API_KEY_HEADER = "X-Api-Key"


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> SessionStore:
    return request.app.state.sessions


def get_session(request: Request, response: Response) -> EvalSession:
    """Look up the caller's session, creating one (and its cookie) if needed."""
    store = get_store(request)
    session = store.get(request.cookies.get(COOKIE_NAME))
    if session is None:
        session = store.create()
        set_session_cookie(response, session, get_app_settings(request).server.session_expire_hours)
    return session


def set_session_cookie(response: Response, session: EvalSession, expire_hours: float = 24) -> None:
    response.set_cookie(
        key=COOKIE_NAME,
        value=session.session_id,
        httponly=True,  # Not accessible via JavaScript
        secure=False,   # Set to True in production with HTTPS
        samesite="lax",
        max_age=int(expire_hours * 3600),
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(key=COOKIE_NAME)


def resolve_api_key(request: Request, session: Optional[EvalSession], settings: Settings) -> Optional[str]:
    """Header, then session (settings page), then configuration."""
    return (
        request.headers.get(API_KEY_HEADER)
        or (session.api_key if session else None)
        or settings.external_api.api_key
        or None
    )


def get_client(request: Request, session: EvalSession = Depends(get_session)) -> EvalServiceClient:
    settings = get_app_settings(request)
    return EvalServiceClient.from_config(
        settings.external_api, api_key=resolve_api_key(request, session, settings)
    )


def get_translator(request: Request) -> Translator:
    settings = get_app_settings(request)
    return build_translator(settings.translation)
