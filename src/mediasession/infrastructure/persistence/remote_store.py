"""Remote token backup on top of the SQL repository."""

from datetime import UTC, datetime
from typing import Any

from mediasession.domain.ports import IRemoteTokenStore
from mediasession.infrastructure.persistence.database import Database
from mediasession.infrastructure.persistence.models import ensure_utc_aware
from mediasession.infrastructure.persistence.repositories import MediaTokenRepository


def _to_epoch_ms(dt: datetime) -> int:
    return int(ensure_utc_aware(dt).timestamp() * 1000)


def _from_epoch_ms(value: Any) -> datetime:
    return datetime.fromtimestamp(int(value) / 1000, tz=UTC)


class SqlRemoteTokenStore(IRemoteTokenStore):
    """IRemoteTokenStore backed by the media_tokens table.

    Speaks the same entry shape as the local store (epoch-ms expires_at) so the
    credential store can validate both with TokenSet.from_dict().
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def get(self, user_id: str) -> dict[str, Any] | None:
        async with self._db.session_scope() as session:
            model = await MediaTokenRepository(session).get(user_id)
            if model is None:
                return None
            return {
                "access_token": model.access_token,
                "refresh_token": model.refresh_token,
                "expires_at": _to_epoch_ms(model.expires_at),
            }

    async def upsert(self, user_id: str, entry: dict[str, Any]) -> None:
        async with self._db.session_scope() as session:
            await MediaTokenRepository(session).upsert(
                user_id=user_id,
                access_token=entry["access_token"],
                refresh_token=entry["refresh_token"],
                expires_at=_from_epoch_ms(entry["expires_at"]),
            )

    async def delete(self, user_id: str) -> None:
        async with self._db.session_scope() as session:
            await MediaTokenRepository(session).delete(user_id)
