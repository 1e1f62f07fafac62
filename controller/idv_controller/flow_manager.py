"""Per-page orchestration of the wallet identity verification flow."""
from __future__ import annotations

import asyncio
import logging
from asyncio import QueueEmpty
from typing import Any, Dict, List, Optional

from .backend.http_client import IdvHttpClient
from .backend.models import Session
from .capability import DeviceSignals, PlatformInvoker, detect_capabilities, resolve_entry_point
from .classifier import classify
from .config import Settings, get_settings
from .errors import IdvError, SessionNotFoundError, UserCanceledError
from .exchange import CredentialExchange
from .reporter import ResultReporter
from .state import FlowEvent, FlowOutcome, FlowPhase, FlowResult

logger = logging.getLogger(__name__)

STATUS_CREATING = "Creating secure credential request…"
STATUS_OPENING = "Opening Apple Wallet…"
STATUS_SUCCESS = "✅ Apple Wallet returned a verified government ID."
STATUS_NO_DOCUMENT = "ℹ️ Wallet opened but no valid ID was shared."
STATUS_CANCELED = "The request was canceled by the user."
STATUS_SCAN_QR = "Use your iPhone to scan the QR code and finish in Safari."
STATUS_REMOTE_SUCCESS = "✅ Verification finished on your iPhone."
STATUS_REMOTE_NO_DOCUMENT = "ℹ️ Verification finished on your iPhone but no valid ID was shared."
STATUS_UNEXPECTED = "Please try again"


class FlowManager:
    """Coordinates session acquisition, the wallet exchange, reporting and UI state for one page.

    One instance lives exactly as long as the page connection: capabilities and
    the entry point are resolved once in ``__init__`` and the cached session slot
    is written at most once.
    """

    def __init__(
        self,
        *,
        signals: DeviceSignals,
        settings: Optional[Settings] = None,
        invoke: Optional[PlatformInvoker] = None,
        prefilled_session_id: Optional[str] = None,
        http_client: Optional[IdvHttpClient] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.capabilities = detect_capabilities(signals)
        self._prefilled_session_id = prefilled_session_id or None

        self._owns_http_client = http_client is None
        self._http_client = http_client or IdvHttpClient(self.settings)
        self._exchange = CredentialExchange(
            self.capabilities,
            resolve_entry_point(self.capabilities, invoke),
            timeout_seconds=self.settings.exchange.timeout_seconds,
        )
        self._reporter = ResultReporter(self._http_client)

        self._phase: FlowPhase = FlowPhase.IDLE
        self._ui_subscribers: List[asyncio.Queue[FlowEvent]] = []
        self._cached_session: Optional[Session] = None
        self._last_result: Optional[FlowResult] = None
        self._status_message: Optional[str] = None
        self._status_is_error = False
        self._control_disabled = False

        self._flow_task: Optional[asyncio.Task[None]] = None
        self._qr_watch_task: Optional[asyncio.Task[None]] = None
        self._heartbeat_task: Optional[asyncio.Task[None]] = None

    @property
    def phase(self) -> FlowPhase:
        return self._phase

    @property
    def cached_session(self) -> Optional[Session]:
        return self._cached_session

    @property
    def last_result(self) -> Optional[FlowResult]:
        return self._last_result

    @property
    def status_message(self) -> Optional[str]:
        return self._status_message

    @property
    def status_is_error(self) -> bool:
        return self._status_is_error

    @property
    def control_disabled(self) -> bool:
        return self._control_disabled

    async def start(self) -> None:
        """Page loaded: auto-resume a prefilled session or show its QR code."""
        logger.info(
            "Starting flow manager (wallet_launch=%s, entry_point=%s, secure=%s, prefilled=%s)",
            self.capabilities.supports_wallet_launch,
            self._exchange.entry_point.kind.value,
            self.capabilities.is_secure_context,
            self._prefilled_session_id,
        )
        if self.settings.heartbeat_seconds > 0:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(), name="idv-page-heartbeat")

        session_id = self._prefilled_session_id
        if not session_id:
            return
        if self.capabilities.supports_wallet_launch:
            self._flow_task = asyncio.create_task(self._resume_and_exchange(session_id), name="idv-flow-resume")
        else:
            await self._show_qr(session_id)

    async def stop(self) -> None:
        logger.info("Stopping flow manager")
        for task in (self._flow_task, self._qr_watch_task, self._heartbeat_task):
            if task is None or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning("Error stopping flow task: %s", e)
        self._flow_task = None
        self._qr_watch_task = None
        self._heartbeat_task = None

        if self._owns_http_client:
            await self._http_client.aclose()
        logger.info("Flow manager stopped")

    def register_ui(self) -> asyncio.Queue[FlowEvent]:
        queue: asyncio.Queue[FlowEvent] = asyncio.Queue(maxsize=self.settings.ui_event_queue_size)
        self._ui_subscribers.append(queue)
        return queue

    def unregister_ui(self, queue: asyncio.Queue[FlowEvent]) -> None:
        if queue in self._ui_subscribers:
            self._ui_subscribers.remove(queue)

    def activate(self) -> Optional[asyncio.Task[None]]:
        """User activated the trigger control. Ignored while a flow is still running."""
        if self._flow_task and not self._flow_task.done():
            logger.info("Flow already in progress; ignoring activation")
            return None
        self._flow_task = asyncio.create_task(self._run_activation(), name="idv-flow")
        return self._flow_task

    async def wait_for_flow(self) -> None:
        task = self._flow_task
        if task is not None:
            await task

    # ============================================================
    # FLOW
    # ============================================================

    async def _run_activation(self) -> None:
        await self._stop_qr_watch()
        await self._set_control(disabled=True)
        try:
            session = self._cached_session
            if session is None:
                await self._start_new_session()
            elif self.capabilities.supports_wallet_launch:
                logger.info("🔁 [FLOW] Replaying cached session %s", session.session_id)
                await self._run_wallet_flow(session)
            else:
                await self._show_qr(session.session_id)
        except IdvError as exc:
            # Only session acquisition can land here; exchange failures are reported inside.
            logger.error("❌ [FLOW] Session acquisition failed: %s", exc)
            self._last_result = FlowResult(
                outcome=FlowOutcome.ERROR, session_id=None, has_valid_id=False, message=exc.user_message
            )
            await self._advance_phase(
                FlowPhase.DONE, data={"outcome": FlowOutcome.ERROR.value}, error=exc.user_message
            )
            await self._set_status(f"Error: {exc.user_message}", is_error=True)
        except asyncio.CancelledError:
            logger.info("⚠️ [FLOW] Flow cancelled")
            raise
        except Exception as exc:
            logger.exception("❌ [FLOW] Unexpected flow error: %s", exc)
            await self._set_status(f"Error: {STATUS_UNEXPECTED}", is_error=True)
        finally:
            await self._set_control(disabled=False)

    async def _start_new_session(self) -> None:
        await self._advance_phase(FlowPhase.REQUESTING_SESSION)
        await self._set_status(STATUS_CREATING)
        session = await self._http_client.create_session()
        self._remember(session)

        if self.capabilities.supports_wallet_launch:
            await self._run_wallet_flow(session)
        else:
            await self._show_qr(session.session_id)

    async def _resume_and_exchange(self, session_id: str) -> None:
        """Same-device continuation after a QR handoff: resume, then exchange without user action."""
        await self._advance_phase(FlowPhase.REQUESTING_SESSION, data={"sessionId": session_id})
        try:
            session = await self._http_client.resume_session(session_id)
        except IdvError as exc:
            logger.warning("Unable to resume session %s: %s", session_id, exc)
            await self._advance_phase(FlowPhase.IDLE)
            return
        self._remember(session)
        await self._run_wallet_flow(session)

    async def _run_wallet_flow(self, session: Session) -> None:
        """One exchange attempt. Every exit reports exactly once."""
        await self._advance_phase(FlowPhase.EXCHANGING_CREDENTIAL, data={"sessionId": session.session_id})
        await self._set_status(STATUS_OPENING)

        try:
            wallet_response = await self._exchange.request_credential(session)
        except UserCanceledError as exc:
            await self._conclude(
                session, FlowOutcome.CANCELED, has_valid_id=False,
                payload={"error": exc.user_message}, message=STATUS_CANCELED,
            )
            return
        except IdvError as exc:
            logger.error("❌ [FLOW] Digital credential flow failed: %s", exc)
            await self._conclude(
                session, FlowOutcome.ERROR, has_valid_id=False,
                payload={"error": exc.user_message}, message=f"Wallet flow failed: {exc.user_message}",
                is_error=True,
            )
            return
        except asyncio.CancelledError:
            # Page went away mid-exchange; the backend still gets its one report.
            await asyncio.shield(self._reporter.report(session.session_id, False, {"error": "Flow cancelled"}))
            raise
        except Exception as exc:
            logger.exception("❌ [FLOW] Unexpected exchange error: %s", exc)
            await self._conclude(
                session, FlowOutcome.ERROR, has_valid_id=False,
                payload={"error": str(exc)}, message=f"Wallet flow failed: {exc}", is_error=True,
            )
            return

        has_valid_id = classify(wallet_response)
        await self._conclude(
            session,
            FlowOutcome.SUCCESS if has_valid_id else FlowOutcome.NO_DOCUMENT,
            has_valid_id=has_valid_id,
            payload=wallet_response,
            message=STATUS_SUCCESS if has_valid_id else STATUS_NO_DOCUMENT,
        )

    async def _conclude(
        self,
        session: Session,
        outcome: FlowOutcome,
        *,
        has_valid_id: bool,
        payload: Any,
        message: str,
        is_error: bool = False,
    ) -> None:
        await self._advance_phase(FlowPhase.REPORTING, data={"sessionId": session.session_id})
        reported = await self._reporter.report(session.session_id, has_valid_id, payload)

        self._last_result = FlowResult(
            outcome=outcome,
            session_id=session.session_id,
            has_valid_id=has_valid_id,
            message=message,
            reported=reported,
        )
        await self._advance_phase(
            FlowPhase.DONE,
            data={"outcome": outcome.value, "hasValidId": has_valid_id, "sessionId": session.session_id},
            error=message if is_error else None,
        )
        await self._set_status(message, is_error=is_error)
        logger.info("🏁 [FLOW] session=%s outcome=%s reported=%s", session.session_id, outcome.value, reported)

    def _remember(self, session: Session) -> None:
        if self._cached_session is None:
            self._cached_session = session

    # ============================================================
    # QR FALLBACK
    # ============================================================

    async def _show_qr(self, session_id: str) -> None:
        await self._stop_qr_watch()
        url = self._http_client.qr_url(session_id)
        await self._advance_phase(FlowPhase.SHOWING_QR, data={"sessionId": session_id})
        await self._broadcast(
            FlowEvent(type="qr", phase=self._phase, data={"sessionId": session_id, "url": url})
        )
        await self._set_status(STATUS_SCAN_QR)
        logger.info("📱 [QR] Showing QR for session %s", session_id)

        if self.settings.qr.watch_enabled:
            self._qr_watch_task = asyncio.create_task(
                self._watch_qr_session(session_id), name="idv-qr-watch"
            )

    async def _watch_qr_session(self, session_id: str) -> None:
        """Poll the backend until the other device finishes the session out-of-band."""
        qr = self.settings.qr
        loop = asyncio.get_running_loop()
        deadline = loop.time() + qr.watch_timeout_seconds
        try:
            while loop.time() < deadline:
                await asyncio.sleep(qr.poll_interval_seconds)
                snapshot = await self._http_client.get_status(session_id)
                if snapshot is None or not snapshot.is_terminal:
                    continue

                has_valid_id = bool(snapshot.valid_government_id)
                outcome = FlowOutcome.SUCCESS if has_valid_id else FlowOutcome.NO_DOCUMENT
                message = STATUS_REMOTE_SUCCESS if has_valid_id else STATUS_REMOTE_NO_DOCUMENT
                # The scanning device already reported; nothing is posted from here.
                self._last_result = FlowResult(
                    outcome=outcome, session_id=session_id, has_valid_id=has_valid_id,
                    message=message, reported=True,
                )
                await self._advance_phase(
                    FlowPhase.DONE,
                    data={"outcome": outcome.value, "hasValidId": has_valid_id, "sessionId": session_id},
                )
                await self._set_status(message)
                logger.info("📱 [QR] Session %s completed on another device (%s)", session_id, outcome.value)
                return
            logger.info("📱 [QR] Stopped watching session %s after %.0fs", session_id, qr.watch_timeout_seconds)
        except SessionNotFoundError:
            logger.warning("📱 [QR] Session %s disappeared while showing QR", session_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("📱 [QR] Watch loop crashed: %s", e)

    async def _stop_qr_watch(self) -> None:
        task = self._qr_watch_task
        self._qr_watch_task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    # ============================================================
    # UI EVENTS
    # ============================================================

    async def _broadcast(self, event: FlowEvent) -> None:
        """Broadcast event to all UI subscribers, dropping the oldest when a queue is full."""
        for queue in list(self._ui_subscribers):
            try:
                if queue.full():
                    try:
                        queue.get_nowait()
                    except QueueEmpty:
                        pass
                queue.put_nowait(event)
            except Exception as e:
                logger.warning("Failed to broadcast event to subscriber: %s", e)

    async def _advance_phase(
        self,
        phase: FlowPhase,
        *,
        data: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        logger.debug("phase %s -> %s", self._phase.value, phase.value)
        self._phase = phase
        await self._broadcast(FlowEvent(type="state", data=data or {}, phase=phase, error=error))

    async def _set_status(self, message: str, *, is_error: bool = False) -> None:
        self._status_message = message
        self._status_is_error = is_error
        await self._broadcast(
            FlowEvent(type="status", phase=self._phase, data={"message": message, "isError": is_error})
        )

    async def _set_control(self, *, disabled: bool) -> None:
        self._control_disabled = disabled
        await self._broadcast(FlowEvent(type="control", phase=self._phase, data={"disabled": disabled}))

    async def _heartbeat_loop(self) -> None:
        """Send periodic heartbeat to the page."""
        try:
            while True:
                await asyncio.sleep(self.settings.heartbeat_seconds)
                await self._broadcast(FlowEvent(type="heartbeat", data={}, phase=self._phase))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Heartbeat loop crashed: %s", e)


__all__ = ["FlowManager"]
