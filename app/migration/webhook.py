"""
Webhook delivery mode: one HTTP POST per attempt to an external automation
trigger, classified by response code.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import requests

from app.domain.migration import DestinationCredentials, MigrationUnit, Product, SessionToken, StepOutcome
from app.migration.cancellation import CancellationToken
from app.migration.failures import FailureReason
from app.migration.locks import AccountLocks
from app.migration.logging_utils import log_event
from app.migration.session.base import SessionStore
from app.migration.text import format_price, html_to_plain_text

logger = logging.getLogger(__name__)

AUTH_STATUS_CODES = {401, 403}
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


def build_payload(product: Product, *, decimals: int = 2) -> dict[str, Any]:
    """
    Normalized product fields sent to the automation endpoint.
    """

    now = datetime.now(timezone.utc).isoformat()
    return {
        "title": product.title,
        "description": html_to_plain_text(product.description),
        "price": format_price(product.price, decimals=decimals),
        "file_url": product.asset_ref,
        "image_url": product.image_ref,
        "type": product.product_type,
        "permalink": product.permalink,
        "user_email": product.user_email,
        "created_at": product.created_at.isoformat() if product.created_at else now,
        "updated_at": product.updated_at.isoformat() if product.updated_at else now,
    }


class WebhookDeliveryStep:
    """
    Step function for webhook delivery.

    Stored cookies ride along in the body; a `cookies` array in the response
    replaces the stored session. Posts without cookies hold the account lock
    until their response is handled, so concurrent units of one account wait
    for the first login and reuse its cookies.
    """

    def __init__(
        self,
        *,
        url: str,
        session_store: SessionStore,
        account_locks: AccountLocks | None = None,
        session: requests.Session | None = None,
        timeout_seconds: float = 30.0,
        price_decimals: int = 2,
    ) -> None:
        if not url.strip():
            raise ValueError("Webhook URL must not be empty.")
        self._url = url
        self._store = session_store
        self._locks = account_locks or AccountLocks()
        self._session = session or requests.Session()
        self._timeout_seconds = timeout_seconds
        self._price_decimals = price_decimals

    async def run(
        self,
        unit: MigrationUnit,
        credentials: DestinationCredentials,
        token: CancellationToken | None = None,
    ) -> StepOutcome:
        if token is not None and token.cancelled:
            return StepOutcome.terminal("post", token.reason or FailureReason.CANCELLED, detail="cancelled before post")

        account = credentials.account_key
        async with self._locks.for_account(account):
            stored = await asyncio.to_thread(self._store.load, account)
            if stored is None or not stored.cookies:
                # Without cookies the remote workflow logs in; only one such post per account at a time.
                return await self._deliver(unit, account, stored, lock_held=True)
        return await self._deliver(unit, account, stored, lock_held=False)

    async def _deliver(
        self,
        unit: MigrationUnit,
        account: str,
        stored: SessionToken | None,
        *,
        lock_held: bool,
    ) -> StepOutcome:
        payload = build_payload(unit.product, decimals=self._price_decimals)
        if stored is not None and stored.cookies:
            payload["cookies"] = stored.cookies
        payload["attempt"] = unit.attempt
        payload["migration_id"] = unit.unit_id
        headers = {
            "Content-Type": "application/json",
            "X-Migration-Attempt": str(unit.attempt),
            "X-Migration-ID": unit.unit_id,
        }

        try:
            response = await self._post(payload, headers)
        except (requests.Timeout, requests.ConnectionError) as exc:
            log_event(logger, logging.WARNING, "webhook_network_error", unit_id=unit.unit_id, error=str(exc))
            return StepOutcome.transient("post", FailureReason.NETWORK_ERROR, detail=str(exc))
        except requests.RequestException as exc:
            log_event(logger, logging.ERROR, "webhook_request_invalid", unit_id=unit.unit_id, error=str(exc))
            return StepOutcome.terminal("post", FailureReason.HTTP_ERROR, detail=str(exc))

        status = response.status_code
        log_event(
            logger,
            logging.INFO,
            "webhook_response",
            unit_id=unit.unit_id,
            attempt=unit.attempt,
            status_code=status,
            with_cookies="cookies" in payload,
        )
        if 200 <= status < 300:
            return await self._handle_success(response, unit, account, lock_held=lock_held)
        if status in AUTH_STATUS_CODES:
            async with self._account_scope(account, lock_held):
                await asyncio.to_thread(self._store.invalidate, account)
            return StepOutcome.transient(
                "post",
                FailureReason.HTTP_ERROR,
                detail=f"HTTP {status}: session rejected",
            )
        if status in RETRYABLE_STATUS_CODES or status >= 500:
            return StepOutcome.transient("post", FailureReason.HTTP_ERROR, detail=f"HTTP {status}")
        reason = FailureReason.VALIDATION_REJECTED if status in {400, 422} else FailureReason.HTTP_ERROR
        return StepOutcome.terminal("post", reason, detail=f"HTTP {status}: {_snippet(response)}", submitted=True)

    async def check_connection(self) -> bool:
        """
        Post a test ping to the endpoint. True when it answers 2xx.
        """

        payload = {"test": True, "timestamp": datetime.now(timezone.utc).isoformat()}
        try:
            response = await self._post(payload, {"Content-Type": "application/json"})
        except requests.RequestException as exc:
            log_event(logger, logging.WARNING, "webhook_check_failed", error=str(exc))
            return False
        reachable = 200 <= response.status_code < 300
        log_event(logger, logging.INFO, "webhook_checked", status_code=response.status_code, reachable=reachable)
        return reachable

    async def _post(self, payload: dict[str, Any], headers: dict[str, str]) -> requests.Response:
        # A POST in flight is never abandoned: cancellation waits for the response.
        task = asyncio.ensure_future(
            asyncio.to_thread(
                self._session.post,
                self._url,
                json=payload,
                headers=headers,
                timeout=self._timeout_seconds,
            )
        )
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            await asyncio.wait({task})
            raise

    @asynccontextmanager
    async def _account_scope(self, account: str, lock_held: bool) -> AsyncIterator[None]:
        if lock_held:
            yield
            return
        async with self._locks.for_account(account):
            yield

    async def _handle_success(
        self,
        response: requests.Response,
        unit: MigrationUnit,
        account: str,
        *,
        lock_held: bool,
    ) -> StepOutcome:
        body: Any = {}
        if response.text and response.text.strip():
            try:
                body = response.json()
            except ValueError:
                log_event(logger, logging.WARNING, "webhook_response_not_json", unit_id=unit.unit_id)
                body = {}
        if not isinstance(body, dict):
            body = {}

        cookies = body.get("cookies")
        if isinstance(cookies, list) and cookies and all(isinstance(item, dict) for item in cookies):
            try:
                async with self._account_scope(account, lock_held):
                    await asyncio.to_thread(self._store.save, account, SessionToken(cookies=cookies))
            except Exception as exc:
                log_event(logger, logging.WARNING, "session_save_failed", account=account, error=str(exc))

        destination_url = body.get("destination_url") or body.get("payhip_url")
        return StepOutcome.ok(
            "post",
            detail=f"HTTP {response.status_code}",
            submitted=True,
            destination_url=str(destination_url) if destination_url else None,
        )


def _snippet(response: requests.Response, limit: int = 200) -> str:
    text = (response.text or "").strip()
    return text[:limit]
