from __future__ import annotations

from typing import Annotated, AsyncIterator

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from revision_api.config.settings import Settings, get_settings
from revision_api.core.security import InvalidTokenError, subject_from_token
from revision_api.db.session import get_session_factory
from revision_api.services.ai import AgentConfiguration, GeminiGenerativeClient, RevisionNoteAgent
from revision_api.services.revision.service import RevisionService

SettingsDependency = Annotated[Settings, Depends(get_settings)]
SessionFactoryDependency = Annotated[
    async_sessionmaker[AsyncSession], Depends(get_session_factory)
]

bearer_scheme = HTTPBearer(
    auto_error=False,
    scheme_name="JWTBearer",
    description="Paste a JWT access token issued by the identity service.",
)

TokenDependency = Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)]


def get_current_user_id(token: TokenDependency, settings: SettingsDependency) -> str:
    if not token or not token.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required"
        )
    try:
        return subject_from_token(token.credentials, settings)
    except InvalidTokenError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc


def get_revision_service(
    session_factory: SessionFactoryDependency,
    settings: SettingsDependency,
) -> RevisionService:
    """Service for read-only ranking and staleness work; it cannot generate notes."""
    return RevisionService(session_factory, settings=settings)


async def get_note_revision_service(
    session_factory: SessionFactoryDependency,
    settings: SettingsDependency,
) -> AsyncIterator[RevisionService]:
    """Service able to generate notes; without a Gemini key it only serves cached ones."""
    if not settings.gemini_api_key:
        yield RevisionService(session_factory, settings=settings)
        return

    client = GeminiGenerativeClient(
        api_key=settings.gemini_api_key,
        model=settings.gemini_model,
        endpoint=settings.gemini_endpoint,
        timeout=settings.gemini_request_timeout_seconds,
    )
    agent = RevisionNoteAgent(
        client=client,
        config=AgentConfiguration(
            default_model=settings.gemini_model,
            default_temperature=settings.ai_generation_default_temperature,
            max_attempts=settings.ai_generation_max_attempts,
        ),
    )
    try:
        yield RevisionService(session_factory, settings=settings, generator=agent)
    finally:
        await client.aclose()


CurrentUserIdDependency = Annotated[str, Depends(get_current_user_id)]
RevisionServiceDependency = Annotated[RevisionService, Depends(get_revision_service)]
NoteRevisionServiceDependency = Annotated[RevisionService, Depends(get_note_revision_service)]


__all__ = [
    "CurrentUserIdDependency",
    "NoteRevisionServiceDependency",
    "RevisionServiceDependency",
    "SessionFactoryDependency",
    "SettingsDependency",
    "TokenDependency",
    "get_current_user_id",
    "get_note_revision_service",
    "get_revision_service",
]
