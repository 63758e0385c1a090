"""Repository for the media_tokens table."""

from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from mediasession.infrastructure.persistence.models import MediaTokenModel, utc_now


class MediaTokenRepository:
    """CRUD for backed-up media tokens, one row per user.

    No business logic here - validation happens in the credential store, which
    treats whatever comes back from this table as untrusted input.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session."""
        self.session = session

    async def get(self, user_id: str) -> MediaTokenModel | None:
        stmt = select(MediaTokenModel).where(MediaTokenModel.user_id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    # Listen up - UPSERT pattern: if the row exists → update, else → create. We do it with a
    # select first (like everywhere else in this codebase) instead of dialect-specific
    # ON CONFLICT so the same code runs on SQLite and PostgreSQL.
    async def upsert(
        self,
        user_id: str,
        access_token: str,
        refresh_token: str,
        expires_at: datetime,
    ) -> MediaTokenModel:
        """Store or update the tokens for a user.

        Returns:
            The created or updated MediaTokenModel
        """
        model = await self.get(user_id)
        now = utc_now()

        if model:
            model.access_token = access_token
            model.refresh_token = refresh_token
            model.expires_at = expires_at
            model.updated_at = now
        else:
            model = MediaTokenModel(
                user_id=user_id,
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=expires_at,
                updated_at=now,
            )
            self.session.add(model)

        await self.session.flush()
        return model

    async def delete(self, user_id: str) -> bool:
        """Delete the row for a user.

        Returns:
            True if a row was deleted, False if none existed
        """
        stmt = delete(MediaTokenModel).where(MediaTokenModel.user_id == user_id)
        result = await self.session.execute(stmt)
        return bool(result.rowcount)
