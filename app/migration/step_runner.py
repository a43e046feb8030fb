"""
Browser-driven upload of one product through the destination web UI.

One call to `AutomationStepRunner.run` is one attempt:

    navigate(login) -> detect login need -> [authenticate] -> navigate(create form)
    -> fill fields -> [attach files] -> submit -> verify

Every step has its own timeout. Failures come back as `StepOutcome` values:
timeouts and UI hiccups are `transient`, bot challenges, rejected credentials
and destination validation errors are `terminal`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

from app.domain.migration import DestinationCredentials, MigrationUnit, Product, SessionToken, StepOutcome
from app.migration.cancellation import CancellationToken
from app.migration.config.models import DestinationSiteConfig
from app.migration.failures import FailureReason
from app.migration.locks import AccountLocks
from app.migration.logging_utils import log_event
from app.migration.page_control import PageControl, PageControlError, PageTimeoutError
from app.migration.session.base import SessionStore
from app.migration.text import format_price, html_to_plain_text, is_remote_reference

logger = logging.getLogger(__name__)

T = TypeVar("T")

PageFactory = Callable[[], AbstractAsyncContextManager[PageControl]]

# Slack on top of the page-level timeout before the step itself is abandoned.
_BACKSTOP_GRACE_SECONDS = 0.5


@dataclass(frozen=True)
class StepTimeouts:
    navigation: float = 30.0
    login_probe: float = 5.0
    authentication: float = 30.0
    fill: float = 10.0
    upload: float = 60.0
    submit: float = 30.0


@dataclass(frozen=True)
class DelayPolicy:
    """
    Fixed settle delays between UI actions.

    With `use_readiness_checks`, each field is awaited explicitly before it is
    filled and the fixed delays are skipped.
    """

    settle_seconds: float = 1.0
    navigation_seconds: float = 2.0
    upload_seconds: float = 5.0
    use_readiness_checks: bool = False


class _StepAborted(Exception):
    def __init__(self, outcome: StepOutcome) -> None:
        super().__init__(outcome.detail)
        self.outcome = outcome


class AutomationStepRunner:
    """
    Executes the upload step sequence against a page-control capability.
    """

    def __init__(
        self,
        *,
        site: DestinationSiteConfig,
        page_factory: PageFactory,
        session_store: SessionStore,
        account_locks: AccountLocks | None = None,
        timeouts: StepTimeouts | None = None,
        delays: DelayPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._site = site
        self._page_factory = page_factory
        self._store = session_store
        self._locks = account_locks or AccountLocks()
        self._timeouts = timeouts or StepTimeouts()
        self._delays = delays or DelayPolicy()
        self._sleep = sleep

    async def run(
        self,
        unit: MigrationUnit,
        credentials: DestinationCredentials,
        token: CancellationToken | None = None,
    ) -> StepOutcome:
        log_event(
            logger,
            logging.INFO,
            "browser_attempt_started",
            unit_id=unit.unit_id,
            attempt=unit.attempt,
            destination=self._site.name,
        )
        try:
            async with self._page_factory() as page:
                outcome = await self._execute(page, unit, credentials, token)
        except _StepAborted as aborted:
            outcome = aborted.outcome
        except PageControlError as exc:
            outcome = StepOutcome.transient("open_page", FailureReason.NETWORK_ERROR, detail=str(exc))

        log_event(
            logger,
            logging.INFO if outcome.is_ok else logging.WARNING,
            "browser_attempt_finished",
            unit_id=unit.unit_id,
            attempt=unit.attempt,
            step=outcome.step_name,
            outcome=outcome.outcome,
            reason=outcome.reason,
            submitted=outcome.submitted,
        )
        return outcome

    async def _execute(
        self,
        page: PageControl,
        unit: MigrationUnit,
        credentials: DestinationCredentials,
        token: CancellationToken | None,
    ) -> StepOutcome:
        async with self._locks.for_account(credentials.account_key):
            await self._establish_session(page, credentials, token)

        if unit.submission_unverified:
            reconciled = await self._reconcile(page, unit.product, token)
            if reconciled is not None:
                return reconciled

        await self._open_create_form(page, token)
        await self._fill_fields(page, unit.product, token)
        await self._attach_files(page, unit, token)
        self._check_cancelled(token, "submit")
        return await self._submit(page, unit)

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def _establish_session(
        self,
        page: PageControl,
        credentials: DestinationCredentials,
        token: CancellationToken | None,
    ) -> None:
        account = credentials.account_key
        stored = await asyncio.to_thread(self._store.load, account)
        if stored is not None and stored.cookies:
            await self._step(
                page,
                "restore_session",
                page.set_cookies(stored.cookies),
                timeout=self._timeouts.fill,
                reason=FailureReason.UI_NOT_READY,
            )

        await self._navigate(page, "navigate_login", self._required_page("login"), token)
        login_form = await self._step(
            page,
            "detect_login",
            page.wait_for_any(self._site.conditions("login_form"), timeout=self._timeouts.login_probe),
            timeout=self._timeouts.login_probe,
            reason=FailureReason.UI_NOT_READY,
        )
        if login_form is None:
            log_event(logger, logging.INFO, "login_skipped", account=account, restored=stored is not None)
            return

        if stored is not None:
            log_event(logger, logging.INFO, "session_stale", account=account)
            await asyncio.to_thread(self._store.invalidate, account)
        await self._authenticate(page, credentials, token)

    async def _authenticate(
        self,
        page: PageControl,
        credentials: DestinationCredentials,
        token: CancellationToken | None,
    ) -> None:
        if not credentials.email or not credentials.password:
            raise _StepAborted(
                StepOutcome.terminal(
                    "authenticate",
                    FailureReason.INVALID_CREDENTIALS,
                    detail="login required but no credentials were supplied",
                )
            )

        await self._fill(page, "fill_login_email", "login_email", credentials.email, token)
        await self._fill(page, "fill_login_password", "login_password", credentials.password, token)
        self._check_cancelled(token, "login_submit")
        await self._step(
            page,
            "login_submit",
            page.click(self._required_selector("login_submit"), timeout=self._timeouts.authentication),
            timeout=self._timeouts.authentication,
            reason=FailureReason.UI_NOT_READY,
        )

        challenge = self._site.conditions("bot_challenge_indicator")
        errors = self._site.conditions("login_error_indicator")
        success = self._site.conditions("login_success_indicator")
        matched = await self._step(
            page,
            "await_login",
            page.wait_for_any(challenge + errors + success, timeout=self._timeouts.authentication),
            timeout=self._timeouts.authentication,
            reason=FailureReason.TIMEOUT,
        )
        if matched in challenge:
            raise _StepAborted(
                StepOutcome.terminal("await_login", FailureReason.BOT_CHALLENGE, detail=f"matched {matched}")
            )
        if matched in errors:
            raise _StepAborted(
                StepOutcome.terminal("await_login", FailureReason.INVALID_CREDENTIALS, detail="login error shown")
            )
        if matched is None:
            await self._abort_if_challenged(page, "await_login")
            raise _StepAborted(
                StepOutcome.transient("await_login", FailureReason.TIMEOUT, detail="no post-login signal")
            )

        cookies = await self._step(
            page,
            "capture_session",
            page.get_cookies(),
            timeout=self._timeouts.fill,
            reason=FailureReason.UI_NOT_READY,
        )
        try:
            await asyncio.to_thread(self._store.save, credentials.account_key, SessionToken(cookies=cookies))
        except Exception as exc:
            log_event(
                logger,
                logging.WARNING,
                "session_save_failed",
                account=credentials.account_key,
                error=str(exc),
            )
        log_event(logger, logging.INFO, "login_succeeded", account=credentials.account_key)

    # ------------------------------------------------------------------
    # Product form
    # ------------------------------------------------------------------

    async def _reconcile(
        self,
        page: PageControl,
        product: Product,
        token: CancellationToken | None,
    ) -> StepOutcome | None:
        list_url = self._site.page("product_list")
        if list_url is None:
            return None

        await self._navigate(page, "reconcile", list_url, token)
        escaped = product.title.replace("\\", "\\\\").replace('"', '\\"')
        found = await self._step(
            page,
            "reconcile",
            page.wait_for_any([f'text="{escaped}"'], timeout=self._timeouts.login_probe),
            timeout=self._timeouts.login_probe,
            reason=FailureReason.UI_NOT_READY,
        )
        if found is None:
            return None
        log_event(logger, logging.INFO, "product_already_listed", source_id=product.source_id)
        return StepOutcome.ok("reconcile", detail="product already listed at destination")

    async def _open_create_form(self, page: PageControl, token: CancellationToken | None) -> None:
        await self._navigate(page, "navigate_create_form", self._required_page("create_product"), token)
        form = self._site.conditions("product_form")
        if not form:
            return
        challenge = self._site.conditions("bot_challenge_indicator")
        matched = await self._step(
            page,
            "await_create_form",
            page.wait_for_any(challenge + form, timeout=self._timeouts.navigation),
            timeout=self._timeouts.navigation,
            reason=FailureReason.UI_NOT_READY,
        )
        if matched in challenge:
            raise _StepAborted(
                StepOutcome.terminal("await_create_form", FailureReason.BOT_CHALLENGE, detail=f"matched {matched}")
            )
        if matched is None:
            raise _StepAborted(
                StepOutcome.transient("await_create_form", FailureReason.UI_NOT_READY, detail="create form not shown")
            )

    async def _fill_fields(self, page: PageControl, product: Product, token: CancellationToken | None) -> None:
        await self._fill(page, "fill_title", "product_title", product.title, token)
        description = html_to_plain_text(product.description)
        if description:
            await self._fill(page, "fill_description", "product_description", description, token)
        price = format_price(product.price, decimals=self._site.price_decimals)
        await self._fill(page, "fill_price", "product_price", price, token)

    async def _attach_files(self, page: PageControl, unit: MigrationUnit, token: CancellationToken | None) -> None:
        product = unit.product
        for step, reference, selector_key in (
            ("attach_asset", product.asset_ref, "product_file"),
            ("attach_image", product.image_ref, "product_image"),
        ):
            if not reference:
                continue
            if is_remote_reference(reference):
                # Remote references are not downloaded; callers pre-resolve them to local paths.
                log_event(logger, logging.WARNING, "asset_skipped_remote", unit_id=unit.unit_id, step=step)
                continue
            selector = self._site.selector(selector_key)
            if selector is None:
                log_event(logger, logging.WARNING, "asset_skipped_no_input", unit_id=unit.unit_id, step=step)
                continue

            path = Path(reference).expanduser()
            if not path.is_file():
                raise _StepAborted(
                    StepOutcome.terminal(step, FailureReason.ASSET_MISSING, detail=f"not a file: {path}")
                )

            self._check_cancelled(token, step)
            await self._step(
                page,
                step,
                page.set_input_file(selector, str(path), timeout=self._timeouts.upload),
                timeout=self._timeouts.upload,
                reason=FailureReason.UI_NOT_READY,
            )
            if not self._delays.use_readiness_checks:
                await self._sleep(self._delays.upload_seconds)

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    async def _submit(self, page: PageControl, unit: MigrationUnit) -> StepOutcome:
        """
        Click submit and observe its result without interruption.

        Cancelling the surrounding task waits for the outcome before the
        cancellation propagates, so no submission is left unresolved.
        """

        task = asyncio.ensure_future(self._submit_and_verify(page))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            outcome = await task
            log_event(
                logger,
                logging.WARNING,
                "submit_resolved_after_cancel",
                unit_id=unit.unit_id,
                outcome=outcome.outcome,
            )
            raise

    async def _submit_and_verify(self, page: PageControl) -> StepOutcome:
        timeout = self._timeouts.submit
        try:
            await asyncio.wait_for(
                page.click(self._required_selector("product_submit"), timeout=timeout),
                timeout=timeout + _BACKSTOP_GRACE_SECONDS,
            )
        except (PageControlError, asyncio.TimeoutError) as exc:
            if await self._detect(page, "bot_challenge_indicator"):
                return StepOutcome.terminal("submit", FailureReason.BOT_CHALLENGE, detail="challenge before submit")
            return StepOutcome.transient("submit", FailureReason.UI_NOT_READY, detail=_describe(exc))

        challenge = self._site.conditions("bot_challenge_indicator")
        errors = self._site.conditions("submit_error_indicator")
        success = self._site.conditions("submit_success_indicator")
        detail = ""
        try:
            matched = await asyncio.wait_for(
                page.wait_for_any(challenge + errors + success, timeout=timeout),
                timeout=timeout + _BACKSTOP_GRACE_SECONDS,
            )
        except (PageControlError, asyncio.TimeoutError) as exc:
            matched = None
            detail = _describe(exc)

        if matched in challenge:
            return StepOutcome.terminal(
                "verify",
                FailureReason.BOT_CHALLENGE,
                detail=f"matched {matched}",
                submitted=True,
            )
        if matched in errors:
            return StepOutcome.terminal(
                "verify",
                FailureReason.VALIDATION_REJECTED,
                detail=f"error banner {matched}",
                submitted=True,
            )
        if matched in success:
            return StepOutcome.ok(
                "verify",
                detail=f"matched {matched}",
                submitted=True,
                destination_url=await _safe_url(page),
            )

        if await self._detect(page, "bot_challenge_indicator"):
            return StepOutcome.terminal("verify", FailureReason.BOT_CHALLENGE, submitted=True)
        if await self._detect(page, "submit_error_indicator"):
            return StepOutcome.terminal("verify", FailureReason.VALIDATION_REJECTED, submitted=True)
        return StepOutcome.transient(
            "verify",
            FailureReason.TIMEOUT,
            detail=detail or "no post-submit signal",
            submitted=True,
        )

    # ------------------------------------------------------------------
    # Step helpers
    # ------------------------------------------------------------------

    async def _navigate(self, page: PageControl, step: str, url: str, token: CancellationToken | None) -> None:
        self._check_cancelled(token, step)
        await self._step(
            page,
            step,
            page.navigate(url, timeout=self._timeouts.navigation),
            timeout=self._timeouts.navigation,
            reason=FailureReason.NETWORK_ERROR,
        )
        await self._abort_if_challenged(page, step)
        if not self._delays.use_readiness_checks:
            await self._sleep(self._delays.navigation_seconds)

    async def _fill(
        self,
        page: PageControl,
        step: str,
        selector_key: str,
        value: str,
        token: CancellationToken | None,
    ) -> None:
        self._check_cancelled(token, step)
        selector = self._required_selector(selector_key)
        if self._delays.use_readiness_checks:
            ready = await self._step(
                page,
                step,
                page.wait_for_any([selector], timeout=self._timeouts.fill),
                timeout=self._timeouts.fill,
                reason=FailureReason.UI_NOT_READY,
            )
            if ready is None:
                await self._abort_if_challenged(page, step)
                raise _StepAborted(StepOutcome.transient(step, FailureReason.UI_NOT_READY, detail="field not ready"))

        await self._step(
            page,
            step,
            page.fill(selector, value, timeout=self._timeouts.fill),
            timeout=self._timeouts.fill,
            reason=FailureReason.UI_NOT_READY,
        )
        if not self._delays.use_readiness_checks:
            await self._sleep(self._delays.settle_seconds)

    async def _step(
        self,
        page: PageControl,
        step: str,
        action: Awaitable[T],
        *,
        timeout: float,
        reason: str,
    ) -> T:
        try:
            return await asyncio.wait_for(action, timeout=timeout + _BACKSTOP_GRACE_SECONDS)
        except (asyncio.TimeoutError, PageTimeoutError) as exc:
            await self._abort_if_challenged(page, step)
            raise _StepAborted(StepOutcome.transient(step, FailureReason.TIMEOUT, detail=_describe(exc))) from exc
        except PageControlError as exc:
            await self._abort_if_challenged(page, step)
            raise _StepAborted(StepOutcome.transient(step, reason, detail=str(exc))) from exc

    async def _abort_if_challenged(self, page: PageControl, step: str) -> None:
        if await self._detect(page, "bot_challenge_indicator"):
            raise _StepAborted(StepOutcome.terminal(step, FailureReason.BOT_CHALLENGE, detail="bot challenge detected"))

    async def _detect(self, page: PageControl, key: str) -> bool:
        for condition in self._site.conditions(key):
            try:
                if await page.is_present(condition):
                    return True
            except PageControlError as exc:
                logger.debug("Probe %s failed: %s", condition, exc)
        return False

    def _check_cancelled(self, token: CancellationToken | None, step: str) -> None:
        if token is not None and token.cancelled:
            raise _StepAborted(
                StepOutcome.terminal(step, token.reason or FailureReason.CANCELLED, detail="cancelled before step")
            )

    def _required_page(self, key: str) -> str:
        url = self._site.page(key)
        if url is None:
            raise ValueError(f"Destination '{self._site.name}' has no '{key}' page configured.")
        return url

    def _required_selector(self, key: str) -> str:
        selector = self._site.selector(key)
        if selector is None:
            raise ValueError(f"Destination '{self._site.name}' has no '{key}' selector configured.")
        return selector


def _describe(exc: BaseException) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return "step timed out"
    return str(exc) or type(exc).__name__


async def _safe_url(page: PageControl) -> str | None:
    try:
        return await page.current_url()
    except PageControlError:
        return None
