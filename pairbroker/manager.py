from __future__ import annotations

import asyncio
import contextlib
import logging
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from .credentials import CREDENTIALS_FILENAME, package_credentials, read_credentials
from .gateway import (
    CONNECTION_CLOSE,
    CONNECTION_OPEN,
    ConnectionUpdate,
    GatewayError,
    ProtocolConnection,
    ProtocolGateway,
)
from .ids import make_session_id
from .messages import Branding, session_string_message, welcome_message
from .metrics import (
    CREDENTIALS_DELIVERED_TOTAL,
    PAIRING_REQUESTS_TOTAL,
    SESSIONS_CLOSED_TOTAL,
    SESSIONS_LIVE,
)
from .snapshots import SessionSnapshot, mask_phone
from .store import SessionExistsError, SessionStore


LOGGER = logging.getLogger("pairbroker")


SESSION_TIMEOUT = 120.0
PAIRING_CODE_DELAY = 1.5
OPEN_SETTLE_DELAY = 5.0
POST_SEND_DELAY = 1.0
MAX_ID_ATTEMPTS = 5

STATUS_PENDING = "pending"
STATUS_AWAITING_CODE = "registered-awaiting-code"
STATUS_ALREADY_REGISTERED = "already-registered"
STATUS_OPEN = "open"
STATUS_CLOSING = "closing"
STATUS_CLOSED = "closed"

CODE_ISSUED_MESSAGE = (
    "Pairing code generated. Please use it on your WhatsApp. Waiting for connection..."
)
ALREADY_CONNECTED_MESSAGE = "Session already registered. No new pairing code needed."
SETUP_FAILED_MESSAGE = (
    "An unexpected server error occurred during session setup. Please try again."
)
SESSION_ENDED_MESSAGE = (
    "The session ended before a pairing code was issued. Please try again."
)


@dataclass(slots=True)
class PairingOutcome:
    kind: str
    session_id: Optional[str] = None
    code: Optional[str] = None
    message: str = ""
    status_code: int = 200

    @classmethod
    def pairing_code(cls, session_id: str, code: str) -> "PairingOutcome":
        return cls(kind="code", session_id=session_id, code=code, message=CODE_ISSUED_MESSAGE)

    @classmethod
    def already_connected(cls, session_id: str) -> "PairingOutcome":
        return cls(
            kind="already_connected",
            session_id=session_id,
            message=ALREADY_CONNECTED_MESSAGE,
        )

    @classmethod
    def error(cls, message: str = SETUP_FAILED_MESSAGE, *, session_id: Optional[str] = None) -> "PairingOutcome":
        return cls(kind="error", session_id=session_id, message=message, status_code=500)

    def to_payload(self) -> dict[str, Any]:
        if self.kind == "code":
            return {
                "success": True,
                "code": self.code,
                "sessionId": self.session_id,
                "message": self.message,
            }
        if self.kind == "already_connected":
            return {
                "success": True,
                "message": self.message,
                "sessionId": self.session_id,
                "alreadyConnected": True,
            }
        return {"success": False, "message": self.message}


@dataclass(slots=True, eq=False)
class Session:
    session_id: str
    phone_number: str
    directory: Path
    created_at: float = field(default_factory=time.time)
    status: str = STATUS_PENDING
    client: Optional[ProtocolConnection] = None
    responded: bool = False
    close_reason: Optional[str] = None
    reply: Optional[asyncio.Future[PairingOutcome]] = None
    events: asyncio.Queue[ConnectionUpdate] = field(default_factory=asyncio.Queue)
    setup_task: Optional[asyncio.Task[Any]] = None
    watch_task: Optional[asyncio.Task[Any]] = None
    timeout_task: Optional[asyncio.Task[Any]] = None
    finished: asyncio.Event = field(default_factory=asyncio.Event)

    def respond(self, outcome: PairingOutcome) -> bool:
        """Deliver the first response for this session; later calls are ignored."""

        if self.responded:
            return False
        self.responded = True
        if self.reply is not None and not self.reply.done():
            self.reply.set_result(outcome)
        return True


class PairingBroker:
    """Issue pairing codes and supervise each pairing session until cleanup."""

    def __init__(
        self,
        gateway: ProtocolGateway,
        sessions_dir: Path,
        *,
        branding: Branding,
        session_prefix: str,
        session_timeout: float = SESSION_TIMEOUT,
        pairing_code_delay: float = PAIRING_CODE_DELAY,
        open_settle_delay: float = OPEN_SETTLE_DELAY,
        post_send_delay: float = POST_SEND_DELAY,
        creds_poll_attempts: int = 5,
        creds_poll_interval: float = 1.0,
        store: Optional[SessionStore] = None,
    ) -> None:
        self._gateway = gateway
        self._sessions_dir = sessions_dir
        self._sessions_dir.mkdir(parents=True, exist_ok=True)
        self._branding = branding
        self._session_prefix = session_prefix
        self._session_timeout = session_timeout
        self._pairing_code_delay = pairing_code_delay
        self._open_settle_delay = open_settle_delay
        self._post_send_delay = post_send_delay
        self._creds_poll_attempts = creds_poll_attempts
        self._creds_poll_interval = creds_poll_interval
        self._store = store if store is not None else SessionStore()
        self._started = False

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def sessions_dir(self) -> Path:
        return self._sessions_dir

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._sweep_orphan_directories()
        self._update_metrics()

    async def shutdown(self) -> None:
        for session in self._store.sessions():
            if not await self._finish(session, "shutdown"):
                # Claimed by one of its own tasks.
                await session.finished.wait()
        await self._gateway.aclose()
        self._update_metrics()

    def _sweep_orphan_directories(self) -> None:
        for path in sorted(self._sessions_dir.iterdir()):
            if not path.is_dir() or path.name in self._store:
                continue
            removed = self._remove_directory(path)
            LOGGER.info("stage=orphan_sweep path=%s removed=%s", path, removed)

    async def begin(self, phone_number: str) -> PairingOutcome:
        try:
            session = await self._create_session(phone_number)
        except (SessionExistsError, OSError) as exc:
            LOGGER.error("stage=session_create_failed phone=%s error=%s", mask_phone(phone_number), exc)
            PAIRING_REQUESTS_TOTAL.labels("error").inc()
            return PairingOutcome.error()

        loop = asyncio.get_running_loop()
        session.reply = loop.create_future()
        session.timeout_task = loop.create_task(self._expire_after(session))
        session.setup_task = loop.create_task(self._setup(session))

        outcome = await asyncio.shield(session.reply)
        PAIRING_REQUESTS_TOTAL.labels(outcome.kind).inc()
        return outcome

    async def _create_session(self, phone_number: str) -> Session:
        session: Optional[Session] = None
        for _ in range(MAX_ID_ATTEMPTS):
            session_id = make_session_id()
            candidate = Session(
                session_id=session_id,
                phone_number=phone_number,
                directory=self._sessions_dir / session_id,
            )
            try:
                await self._store.add(candidate)
            except SessionExistsError:
                LOGGER.warning("stage=session_id_collision session_id=%s", candidate.session_id)
                continue
            session = candidate
            break
        if session is None:
            raise SessionExistsError("session_id_exhausted")

        try:
            session.directory.mkdir(parents=True, exist_ok=True)
        except OSError:
            await self._store.release(session)
            raise
        self._update_metrics()
        LOGGER.info(
            "stage=session_created session_id=%s phone=%s",
            session.session_id,
            mask_phone(phone_number),
        )
        return session

    async def _setup(self, session: Session) -> None:
        session_id = session.session_id
        try:
            client = await self._gateway.open(session_id, session.directory)
            session.client = client
            LOGGER.info(
                "stage=connection_created session_id=%s registered=%s",
                session_id,
                client.registered,
            )

            if client.registered:
                self._set_status(session, STATUS_ALREADY_REGISTERED, reason="already_registered")
                session.respond(PairingOutcome.already_connected(session_id))
                await self._finish(session, "already_registered")
                return

            client.subscribe(session.events.put_nowait)
            session.watch_task = asyncio.get_running_loop().create_task(self._watch(session))

            if self._pairing_code_delay > 0:
                await asyncio.sleep(self._pairing_code_delay)
            code = await client.request_pairing_code(session.phone_number)
            if not code:
                raise GatewayError("empty_pairing_code")

            if session.respond(PairingOutcome.pairing_code(session_id, code)):
                self._set_status(session, STATUS_AWAITING_CODE, reason="pairing_code")
                LOGGER.info("stage=pairing_code_issued session_id=%s", session_id)
            else:
                LOGGER.warning("stage=duplicate_response session_id=%s", session_id)
                await self._finish(session, "duplicate_response")
        except Exception:
            LOGGER.exception("stage=setup_failed session_id=%s", session_id)
            session.respond(PairingOutcome.error())
            await self._finish(session, "setup_failed")

    async def _watch(self, session: Session) -> None:
        while True:
            update = await session.events.get()
            try:
                finished = await self._handle_update(session, update)
            except Exception:
                LOGGER.exception(
                    "stage=event_handler_error session_id=%s connection=%s",
                    session.session_id,
                    update.connection,
                )
                await self._finish(session, "event_error")
                return
            if finished:
                return

    async def _handle_update(self, session: Session, update: ConnectionUpdate) -> bool:
        if update.connection == CONNECTION_OPEN:
            await self._on_open(session)
            return True
        if update.connection == CONNECTION_CLOSE:
            await self._on_close(session, update)
            return True
        LOGGER.debug(
            "stage=connection_update session_id=%s connection=%s",
            session.session_id,
            update.connection,
        )
        return False

    async def _on_open(self, session: Session) -> None:
        session_id = session.session_id
        client = session.client
        self._set_status(session, STATUS_OPEN, reason="connection_open")
        if self._open_settle_delay > 0:
            await asyncio.sleep(self._open_settle_delay)

        creds_path = session.directory / CREDENTIALS_FILENAME
        if not await self._wait_for_credentials(creds_path):
            LOGGER.error("stage=credentials_missing session_id=%s path=%s", session_id, creds_path)
            await self._finish(session, "credentials_missing")
            return

        try:
            if client is None or not client.self_id:
                raise GatewayError("self_id_unknown")
            token = package_credentials(read_credentials(creds_path), self._session_prefix)
            recipient = client.self_id
            await client.send_message(
                recipient, session_string_message(self._branding.bot_name, token)
            )
            await client.send_message(recipient, welcome_message(self._branding))
            if self._post_send_delay > 0:
                await asyncio.sleep(self._post_send_delay)
        except Exception:
            LOGGER.exception("stage=delivery_failed session_id=%s", session_id)
            await self._finish(session, "delivery_failed")
            return

        CREDENTIALS_DELIVERED_TOTAL.inc()
        LOGGER.info("stage=credentials_delivered session_id=%s", session_id)
        await self._finish(session, "completed")

    async def _wait_for_credentials(self, path: Path) -> bool:
        attempts = self._creds_poll_attempts
        while True:
            if path.is_file():
                return True
            if attempts <= 0:
                return False
            attempts -= 1
            await asyncio.sleep(self._creds_poll_interval)

    async def _on_close(self, session: Session, update: ConnectionUpdate) -> None:
        if update.auth_rejected:
            LOGGER.warning(
                "stage=auth_rejected session_id=%s status_code=%s error=%s",
                session.session_id,
                update.status_code,
                update.error,
            )
            reason = "auth_rejected"
        elif update.retryable:
            # No reconnect here; the caller issues a fresh pairing request.
            LOGGER.info(
                "stage=connection_closed session_id=%s status_code=%s error=%s",
                session.session_id,
                update.status_code,
                update.error,
            )
            reason = "connection_closed"
        else:
            LOGGER.warning(
                "stage=connection_closed_unknown session_id=%s status_code=%s",
                session.session_id,
                update.status_code,
            )
            reason = "closed_unknown"
        await self._finish(session, reason)

    async def _expire_after(self, session: Session) -> None:
        await asyncio.sleep(self._session_timeout)
        if self._store.get(session.session_id) is not session or self._store.claimed(session.session_id):
            return
        LOGGER.info(
            "stage=session_timeout session_id=%s age=%.1fs",
            session.session_id,
            time.time() - session.created_at,
        )
        await self._finish(session, "timeout")

    async def cleanup(self, session_id: str, *, reason: str = "cleanup") -> bool:
        session = self._store.get(session_id)
        if session is None:
            return False
        return await self._finish(session, reason)

    async def _finish(self, session: Session, reason: str) -> bool:
        claimed = await self._store.claim(session.session_id, expected=session)
        if claimed is None:
            return False

        removed_dir = False
        try:
            self._set_status(session, STATUS_CLOSING, reason=reason)
            session.close_reason = reason
            if session.respond(PairingOutcome.error(SESSION_ENDED_MESSAGE)):
                LOGGER.warning(
                    "stage=response_on_cleanup session_id=%s reason=%s",
                    session.session_id,
                    reason,
                )

            current = asyncio.current_task()
            for task in (session.setup_task, session.watch_task, session.timeout_task):
                if task is None or task is current or task.done():
                    continue
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

            if session.client is not None:
                try:
                    await session.client.close()
                except Exception as exc:
                    LOGGER.warning(
                        "stage=close_failed session_id=%s error=%s",
                        session.session_id,
                        exc,
                    )

            removed_dir = self._remove_directory(session.directory)
        finally:
            # Released only after the handle is closed and the directory is gone.
            await self._store.release(session)
            self._set_status(session, STATUS_CLOSED, reason=reason)
            session.finished.set()
            SESSIONS_CLOSED_TOTAL.labels(reason).inc()
            self._update_metrics()

        LOGGER.info(
            "stage=session_cleanup session_id=%s reason=%s removed_dir=%s",
            session.session_id,
            reason,
            removed_dir,
        )
        return True

    @staticmethod
    def _remove_directory(path: Path) -> bool:
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            return False
        except OSError as exc:
            LOGGER.warning("event=session_dir_remove_failed path=%s error=%s", path, exc)
            return False
        return True

    def _set_status(self, session: Session, status: str, *, reason: str | None = None) -> None:
        previous = session.status
        if previous != status:
            LOGGER.info(
                "stage=state_transition session_id=%s from=%s to=%s reason=%s",
                session.session_id,
                previous,
                status,
                reason or "none",
            )
        session.status = status

    def status(self, session_id: str) -> Optional[SessionSnapshot]:
        session = self._store.get(session_id)
        if session is None:
            return None
        return SessionSnapshot.from_session(session)

    def stats_snapshot(self) -> Dict[str, int]:
        counts: Dict[str, int] = {
            STATUS_PENDING: 0,
            STATUS_AWAITING_CODE: 0,
            STATUS_OPEN: 0,
        }
        for session in self._store.sessions():
            counts[session.status] = counts.get(session.status, 0) + 1
        counts["live"] = len(self._store)
        return counts

    def _update_metrics(self) -> None:
        SESSIONS_LIVE.set(len(self._store))


__all__ = [
    "PairingBroker",
    "PairingOutcome",
    "Session",
    "STATUS_ALREADY_REGISTERED",
    "STATUS_AWAITING_CODE",
    "STATUS_CLOSED",
    "STATUS_CLOSING",
    "STATUS_OPEN",
    "STATUS_PENDING",
]
