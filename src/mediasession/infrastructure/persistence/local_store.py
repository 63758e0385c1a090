"""JSON-file backed local stores (tokens, pending slot, PKCE verifier).

Hey future me - these three stores play the role a browser's storage plays for a web client:
- LocalTokenStore: the durable "current tokens" entry, read on every cold start
- PendingTokenSlot: written by an out-of-band callback handler, consumed exactly once
- FileVerifierStore: the PKCE verifier + state for ONE authorization flow

They're all synchronous on purpose - a few hundred bytes of JSON on local disk is fast enough
that the credential store can call them inline without awaiting anything.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from mediasession.domain.entities import PendingAuthorization
from mediasession.domain.exceptions import ValidationError
from mediasession.domain.ports import ILocalTokenStore, IPendingTokenSlot, IVerifierStore

logger = logging.getLogger(__name__)

# Key names double as the notification keys passed to handle_storage_notification()
LOCAL_TOKENS_KEY = "spotify_tokens"
PENDING_TOKENS_KEY = "spotify_pending_tokens"
VERIFIER_KEY = "spotify_code_verifier"


class JsonFileStore:
    """One JSON document per key inside a data directory."""

    def __init__(self, data_dir: Path | str, key: str) -> None:
        self.key = key
        self.path = Path(data_dir) / f"{key}.json"

    def read(self) -> Any | None:
        """Load the document, or None if missing or not valid JSON."""
        try:
            with open(self.path, encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("Unreadable store file %s, ignoring: %s", self.path, e)
            return None

    # Listen up, write-to-temp-then-rename so a crash mid-write never leaves half a JSON
    # document behind. os.replace is atomic on POSIX and Windows when src/dst share a dir.
    def write(self, value: Any) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(value, f)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def delete(self) -> None:
        self.path.unlink(missing_ok=True)

    def exists(self) -> bool:
        return self.path.exists()


class LocalTokenStore(ILocalTokenStore):
    """Durable local token entry."""

    def __init__(self, data_dir: Path | str) -> None:
        self._file = JsonFileStore(data_dir, LOCAL_TOKENS_KEY)

    def read(self) -> Any | None:
        return self._file.read()

    def write(self, entry: dict[str, Any]) -> None:
        self._file.write(entry)

    def clear(self) -> None:
        self._file.delete()


class PendingTokenSlot(IPendingTokenSlot):
    """One-shot slot for tokens obtained by an out-of-band callback handler."""

    def __init__(self, data_dir: Path | str) -> None:
        self._file = JsonFileStore(data_dir, PENDING_TOKENS_KEY)

    def has_pending(self) -> bool:
        return self._file.exists()

    # Hey future me - read THEN delete, even if the content is garbage. A broken pending entry
    # left in place would be re-read on every load() forever.
    def take(self) -> Any | None:
        entry = self._file.read()
        self._file.delete()
        return entry

    def put(self, entry: dict[str, Any]) -> None:
        self._file.write(entry)

    def clear(self) -> None:
        self._file.delete()


class FileVerifierStore(IVerifierStore):
    """Flow-scoped PKCE verifier and state."""

    def __init__(self, data_dir: Path | str) -> None:
        self._file = JsonFileStore(data_dir, VERIFIER_KEY)

    def save(self, pending: PendingAuthorization) -> None:
        self._file.write(pending.to_dict())

    def load(self) -> PendingAuthorization | None:
        data = self._file.read()
        if data is None:
            return None
        try:
            return PendingAuthorization.from_dict(data)
        except ValidationError as e:
            logger.warning("Discarding malformed PKCE flow data: %s", e)
            return None

    def clear(self) -> None:
        self._file.delete()
