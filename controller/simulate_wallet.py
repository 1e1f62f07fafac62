#!/usr/bin/env python3
# Run one wallet verification flow against a real IDV backend with a canned wallet.

from __future__ import annotations
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict

from idv_controller.capability import DeviceSignals
from idv_controller.config import get_settings
from idv_controller.errors import PlatformError
from idv_controller.flow_manager import FlowManager
from idv_controller.logging_config import configure_logging

log = logging.getLogger("simulate_wallet")

IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 18_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/18.0 Mobile/15E148 Safari/604.1"
)
DESKTOP_UA = "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0) AppleWebKit/605.1.15 (KHTML, like Gecko) Safari/605.1.15"


def build_wallet(args: argparse.Namespace):
    """Fake platform invoker: answers from a file, rejects with a DOMException name, or hangs."""
    canned: Any = None
    if args.response:
        canned = json.loads(Path(args.response).read_text(encoding="utf-8"))

    async def invoke(method: str, options: Dict[str, Any]) -> Any:
        log.info("wallet <- %s %s", method, json.dumps(options)[:200])
        if args.hang:
            await asyncio.Event().wait()
        if args.reject:
            raise PlatformError(args.reject, f"Simulated {args.reject}")
        return canned

    return invoke


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    if args.backend:
        settings = settings.model_copy(update={"backend_api_url": args.backend.rstrip("/")})
    if args.timeout is not None:
        settings = settings.model_copy(
            update={"exchange": settings.exchange.model_copy(update={"timeout_seconds": args.timeout})}
        )

    signals = DeviceSignals(
        user_agent=DESKTOP_UA if args.desktop else IPHONE_UA,
        has_identity_get=args.entry_point == "identity",
        has_credentials_get=args.entry_point == "credentials",
    )
    manager = FlowManager(
        signals=signals, settings=settings, invoke=build_wallet(args), prefilled_session_id=args.session
    )
    events = manager.register_ui()

    async def printer() -> None:
        while True:
            event = await events.get()
            print(json.dumps(event.to_message(), ensure_ascii=False))

    printer_task = asyncio.create_task(printer())
    try:
        await manager.start()
        if not args.session:
            manager.activate()
        await manager.wait_for_flow()
        await asyncio.sleep(0)  # let the printer drain
    finally:
        await manager.stop()
        printer_task.cancel()
        try:
            await printer_task
        except asyncio.CancelledError:
            pass

    result = manager.last_result
    if result is None:
        log.warning("No terminal result (phase=%s)", manager.phase.value)
        return 2
    log.info("Outcome: %s (hasValidId=%s, reported=%s)", result.outcome.value, result.has_valid_id, result.reported)
    return 0 if result.has_valid_id else 1


def parse():
    ap = argparse.ArgumentParser(description="Simulate an in-page wallet verification against an IDV backend")
    ap.add_argument("--backend", help="Backend base URL (defaults to BACKEND_API_URL)")
    ap.add_argument("--session", help="Resume this session id instead of creating one")
    ap.add_argument("--entry-point", default="identity", choices=["identity", "credentials", "none"])
    ap.add_argument("--desktop", action="store_true", help="Pretend to be a desktop browser (QR fallback)")
    wallet = ap.add_mutually_exclusive_group()
    wallet.add_argument("--response", help="JSON file with the wallet response to return")
    wallet.add_argument("--reject", help="Reject with this DOMException name (e.g. NotAllowedError)")
    wallet.add_argument("--hang", action="store_true", help="Never settle the platform call")
    ap.add_argument("--timeout", type=float, help="Override the exchange timeout (seconds)")
    ap.add_argument("--log", default="info", choices=["debug", "info", "warn", "error"])
    return ap.parse_args()


if __name__ == "__main__":
    args = parse()
    configure_logging(args.log.upper().replace("WARN", "WARNING"), console_only=True)
    sys.exit(asyncio.run(run(args)))
