# src/taskpulse/connectors/matrix_client.py

from __future__ import annotations

import importlib.util
import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path

from nio import AsyncClient, AsyncClientConfig, LoginResponse

logger = logging.getLogger(__name__)

SESSION_FILE_NAME = "session.json"


def e2ee_available() -> bool:
    """python-olm present -> nio can keep an encrypted store for the bot."""
    return importlib.util.find_spec("olm") is not None


@dataclass(frozen=True, slots=True)
class MatrixSession:
    """Access token + device of the reminder bot, reused across restarts."""

    access_token: str
    user_id: str
    device_id: str

    @classmethod
    def load(cls, path: Path) -> MatrixSession | None:
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text("utf-8"))
            return cls(
                access_token=str(data["access_token"]),
                user_id=str(data["user_id"]),
                device_id=str(data["device_id"]),
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Ignoring unreadable Matrix session %s: %r", path, e)
            return None

    def save(self, path: Path) -> None:
        # Credentials: write owner-only, replace in one step.
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(asdict(self), f)
        os.replace(tmp, path)

    def apply(self, client: AsyncClient) -> None:
        client.access_token = self.access_token
        client.user_id = self.user_id
        client.device_id = self.device_id


class MatrixMessenger:
    """OutboundMessenger over a logged-in nio AsyncClient."""

    def __init__(self, client: AsyncClient, *, fallback_room_id: str | None = None) -> None:
        self._client = client
        self._fallback_room_id = fallback_room_id

    async def send_text(
        self,
        *,
        text: str,
        room_id: str | None = None,
        to_user_id: str | None = None,
    ) -> None:
        target = (room_id or self._fallback_room_id or "").strip()
        if not target:
            raise ValueError(f"No Matrix room to deliver to (user={to_user_id})")

        await self._client.room_send(
            room_id=target,
            message_type="m.room.message",
            content={"msgtype": "m.notice", "body": text},
            ignore_unverified_devices=True,
        )


async def login_matrix_client(settings) -> AsyncClient | None:
    """
    Logged-in client for the reminder bot, or None when Matrix is misconfigured.

    A saved session is reused; otherwise TASKPULSE_MATRIX_PASSWORD logs in once
    and the new session is saved under matrix_store_path.
    """
    homeserver = (getattr(settings, "matrix_homeserver", "") or "").strip()
    user_id = (getattr(settings, "matrix_user_id", "") or "").strip()
    if not homeserver or not user_id:
        logger.error("Matrix is not configured: set TASKPULSE_MATRIX_HOMESERVER and TASKPULSE_MATRIX_USER_ID")
        return None

    store_dir = Path(getattr(settings, "matrix_store_path", ".local/taskpulse/matrix_store"))
    store_dir.mkdir(parents=True, exist_ok=True)
    session_path = store_dir / SESSION_FILE_NAME

    encrypted = e2ee_available()
    client = AsyncClient(
        homeserver,
        user_id,
        store_path=str(store_dir) if encrypted else None,
        config=AsyncClientConfig(encryption_enabled=encrypted, store_sync_tokens=True),
    )

    session = MatrixSession.load(session_path)
    if session is not None:
        session.apply(client)
        if encrypted:
            client.load_store()
        logger.info("Matrix session restored for %s (e2ee=%s)", session.user_id, encrypted)
        return client

    password = (getattr(settings, "matrix_password", "") or "").strip()
    if not password:
        logger.error("No saved Matrix session and TASKPULSE_MATRIX_PASSWORD is empty.")
        await client.close()
        return None

    resp = await client.login(password=password, device_name=f"{getattr(settings, 'app_name', 'taskpulse')} reminders")
    if not isinstance(resp, LoginResponse):
        logger.error("Matrix login failed: %r", resp)
        await client.close()
        return None

    MatrixSession(resp.access_token, resp.user_id, resp.device_id).save(session_path)
    logger.info("Matrix login ok, session saved (user=%s e2ee=%s)", resp.user_id, encrypted)
    return client
