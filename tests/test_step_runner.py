"""
tests/test_step_runner.py

Pytest tests for AutomationStepRunner against the scripted FakePage.

Coverage
--------
- Fresh login, session capture and successful upload
- Markup stripping and price formatting of filled fields
- Session restore (login skipped) and stale-session re-login
- One login per account when runs overlap
- Terminal outcomes: bad credentials, bot challenge, validation banner, missing asset
- Transient outcomes: silent submit, field timeout
- Cancellation before start and during submit
- Reconcile of a submission whose outcome was unknown
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal

import pytest

from app.domain.migration import DestinationCredentials, MigrationUnit, Product, SessionToken
from app.migration.cancellation import CancellationToken
from app.migration.failures import FailureReason
from app.migration.step_runner import AutomationStepRunner, DelayPolicy

NO_DELAYS = DelayPolicy(settle_seconds=0.0, navigation_seconds=0.0, upload_seconds=0.0)


def _runner(site, page_factory, store, sleep, *, delays: DelayPolicy = NO_DELAYS) -> AutomationStepRunner:
    return AutomationStepRunner(
        site=site,
        page_factory=page_factory,
        session_store=store,
        delays=delays,
        sleep=sleep,
    )


def _unit(product: Product) -> MigrationUnit:
    return MigrationUnit(unit_id=product.source_id, product=product, attempt=1)


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


class TestSuccessfulUpload:
    def test_fresh_login_saves_session_and_submits(
        self, site, page_factory, fake_page, file_store, sleep_recorder, credentials, product
    ) -> None:
        runner = _runner(site, page_factory, file_store, sleep_recorder)

        outcome = asyncio.run(runner.run(_unit(product), credentials))

        assert outcome.is_ok
        assert outcome.submitted is True
        assert outcome.destination_url == "https://dest.test/products/p-1"
        assert fake_page.fills["#email"] == "seller@example.com"
        assert fake_page.fills["#password"] == "s3cret"
        assert fake_page.submit_clicks == 1

        stored = file_store.load(credentials.account_key)
        assert stored is not None
        assert stored.cookies == [{"name": "sid", "value": "fresh"}]

    def test_description_markup_is_stripped(
        self, site, page_factory, fake_page, file_store, sleep_recorder, credentials, product
    ) -> None:
        runner = _runner(site, page_factory, file_store, sleep_recorder)

        asyncio.run(runner.run(_unit(product), credentials))

        assert fake_page.fills["#description"] == "Bold text"

    def test_price_uses_destination_decimal_format(
        self, site, page_factory, fake_page, file_store, sleep_recorder, credentials, product
    ) -> None:
        runner = _runner(site, page_factory, file_store, sleep_recorder)

        asyncio.run(runner.run(_unit(product), credentials))

        assert fake_page.fills["#title"] == "Lightroom Presets"
        assert fake_page.fills["#price"] == "19.00"

    def test_local_asset_is_attached(
        self, site, page_factory, fake_page, file_store, sleep_recorder, credentials, tmp_path
    ) -> None:
        asset = tmp_path / "presets.zip"
        asset.write_bytes(b"zip")
        product = Product(source_id="p-2", title="Pack", description="", price=Decimal("5"), asset_ref=str(asset))
        runner = _runner(site, page_factory, file_store, sleep_recorder)

        outcome = asyncio.run(runner.run(_unit(product), credentials))

        assert outcome.is_ok
        assert fake_page.files["#file"] == str(asset)

    def test_remote_asset_is_skipped(
        self, site, page_factory, fake_page, file_store, sleep_recorder, credentials
    ) -> None:
        product = Product(
            source_id="p-3",
            title="Pack",
            description="",
            price=Decimal("5"),
            asset_ref="https://cdn.example.com/pack.zip",
        )
        runner = _runner(site, page_factory, file_store, sleep_recorder)

        outcome = asyncio.run(runner.run(_unit(product), credentials))

        assert outcome.is_ok
        assert fake_page.files == {}

    def test_fixed_settle_delays_are_applied(
        self, site, page_factory, file_store, sleep_recorder, credentials, product
    ) -> None:
        delays = DelayPolicy(settle_seconds=1.0, navigation_seconds=2.0, upload_seconds=5.0)
        runner = _runner(site, page_factory, file_store, sleep_recorder, delays=delays)

        asyncio.run(runner.run(_unit(product), credentials))

        assert 1.0 in sleep_recorder.calls
        assert 2.0 in sleep_recorder.calls

    def test_readiness_checks_replace_fixed_delays(
        self, site, page_factory, fake_page, file_store, sleep_recorder, credentials, product
    ) -> None:
        delays = DelayPolicy(settle_seconds=1.0, navigation_seconds=2.0, use_readiness_checks=True)
        runner = _runner(site, page_factory, file_store, sleep_recorder, delays=delays)

        outcome = asyncio.run(runner.run(_unit(product), credentials))

        assert outcome.is_ok
        assert sleep_recorder.calls == []


# ---------------------------------------------------------------------------
# Session handling
# ---------------------------------------------------------------------------


class TestSessionHandling:
    def test_valid_stored_session_skips_login(
        self, site, page_factory, fake_page, file_store, sleep_recorder, credentials, product
    ) -> None:
        file_store.save(credentials.account_key, SessionToken(cookies=[{"name": "sid", "value": "old"}]))
        runner = _runner(site, page_factory, file_store, sleep_recorder)

        outcome = asyncio.run(runner.run(_unit(product), credentials))

        assert outcome.is_ok
        assert fake_page.restored_cookies == [{"name": "sid", "value": "old"}]
        assert "#email" not in fake_page.fills
        assert "#login-btn" not in fake_page.clicks

    def test_stale_session_is_replaced_after_login(
        self, site, page_factory, fake_page, file_store, sleep_recorder, credentials, product
    ) -> None:
        file_store.save(credentials.account_key, SessionToken(cookies=[{"name": "sid", "value": "old"}]))
        fake_page.accept_cookies = False
        runner = _runner(site, page_factory, file_store, sleep_recorder)

        outcome = asyncio.run(runner.run(_unit(product), credentials))

        assert outcome.is_ok
        assert "#login-btn" in fake_page.clicks
        stored = file_store.load(credentials.account_key)
        assert stored is not None
        assert stored.cookies == [{"name": "sid", "value": "fresh"}]

    def test_missing_credentials_when_login_required_is_terminal(
        self, site, page_factory, fake_page, file_store, sleep_recorder, product
    ) -> None:
        runner = _runner(site, page_factory, file_store, sleep_recorder)

        outcome = asyncio.run(runner.run(_unit(product), DestinationCredentials(account_key="acct")))

        assert outcome.is_terminal
        assert outcome.reason == FailureReason.INVALID_CREDENTIALS
        assert fake_page.submit_clicks == 0

    def test_concurrent_runs_for_one_account_log_in_once(
        self, site, page_pool, file_store, sleep_recorder, credentials, caplog
    ) -> None:
        runner = _runner(site, page_pool.open_page, file_store, sleep_recorder)
        first = Product(source_id="p-1", title="Presets", description="", price=Decimal("5"))
        second = Product(source_id="p-2", title="Brushes", description="", price=Decimal("7"))

        async def scenario():
            return await asyncio.gather(
                runner.run(_unit(first), credentials),
                runner.run(_unit(second), credentials),
            )

        with caplog.at_level(logging.INFO, logger="app.migration.step_runner"):
            outcomes = asyncio.run(scenario())

        assert all(outcome.is_ok for outcome in outcomes)
        assert page_pool.login_clicks() == 1
        skipped = [record for record in caplog.records if '"event": "login_skipped"' in record.getMessage()]
        assert len(skipped) == 1
        assert [page.restored_cookies for page in page_pool.pages].count([{"name": "sid", "value": "fresh"}]) == 1
# ---------------------------------------------------------------------------


class TestFailureClassification:
    def test_login_error_is_terminal(
        self, site, page_factory, fake_page, file_store, sleep_recorder, credentials, product
    ) -> None:
        fake_page.login_outcome = "error"
        runner = _runner(site, page_factory, file_store, sleep_recorder)

        outcome = asyncio.run(runner.run(_unit(product), credentials))

        assert outcome.is_terminal
        assert outcome.reason == FailureReason.INVALID_CREDENTIALS
        assert fake_page.submit_clicks == 0
        assert file_store.load(credentials.account_key) is None

    def test_bot_challenge_on_create_form_is_terminal(
        self, site, page_factory, fake_page, file_store, sleep_recorder, credentials, product
    ) -> None:
        fake_page.challenge_urls.add("https://dest.test/products/new")
        runner = _runner(site, page_factory, file_store, sleep_recorder)

        outcome = asyncio.run(runner.run(_unit(product), credentials))

        assert outcome.is_terminal
        assert outcome.reason == FailureReason.BOT_CHALLENGE
        assert outcome.step_name == "navigate_create_form"

    def test_bot_challenge_after_login_is_terminal(
        self, site, page_factory, fake_page, file_store, sleep_recorder, credentials, product
    ) -> None:
        fake_page.login_outcome = "challenge"
        runner = _runner(site, page_factory, file_store, sleep_recorder)

        outcome = asyncio.run(runner.run(_unit(product), credentials))

        assert outcome.is_terminal
        assert outcome.reason == FailureReason.BOT_CHALLENGE

    def test_error_banner_after_submit_is_terminal(
        self, site, page_factory, fake_page, file_store, sleep_recorder, credentials, product
    ) -> None:
        fake_page.submit_outcome = "error"
        runner = _runner(site, page_factory, file_store, sleep_recorder)

        outcome = asyncio.run(runner.run(_unit(product), credentials))

        assert outcome.is_terminal
        assert outcome.reason == FailureReason.VALIDATION_REJECTED
        assert outcome.submitted is True

    def test_silent_submit_is_transient_and_flags_submission(
        self, site, page_factory, fake_page, file_store, sleep_recorder, credentials, product
    ) -> None:
        fake_page.submit_outcome = "silent"
        runner = _runner(site, page_factory, file_store, sleep_recorder)

        outcome = asyncio.run(runner.run(_unit(product), credentials))

        assert outcome.is_transient
        assert outcome.reason == FailureReason.TIMEOUT
        assert outcome.submitted is True

    def test_field_timeout_is_transient(
        self, site, page_factory, fake_page, file_store, sleep_recorder, credentials, product
    ) -> None:
        fake_page.fail_fill.add("#title")
        runner = _runner(site, page_factory, file_store, sleep_recorder)

        outcome = asyncio.run(runner.run(_unit(product), credentials))

        assert outcome.is_transient
        assert outcome.step_name == "fill_title"
        assert outcome.submitted is False
        assert fake_page.submit_clicks == 0

    def test_missing_local_asset_is_terminal(
        self, site, page_factory, fake_page, file_store, sleep_recorder, credentials, tmp_path
    ) -> None:
        product = Product(
            source_id="p-4",
            title="Pack",
            description="",
            price=Decimal("5"),
            asset_ref=str(tmp_path / "missing.zip"),
        )
        runner = _runner(site, page_factory, file_store, sleep_recorder)

        outcome = asyncio.run(runner.run(_unit(product), credentials))

        assert outcome.is_terminal
        assert outcome.reason == FailureReason.ASSET_MISSING
        assert fake_page.submit_clicks == 0


# ---------------------------------------------------------------------------
# Cancellation and resubmission safety
# ---------------------------------------------------------------------------


class TestCancellation:
    def test_cancelled_token_stops_before_navigation(
        self, site, page_factory, fake_page, file_store, sleep_recorder, credentials, product
    ) -> None:
        token = CancellationToken()
        token.cancel()
        runner = _runner(site, page_factory, file_store, sleep_recorder)

        outcome = asyncio.run(runner.run(_unit(product), credentials, token))

        assert outcome.is_terminal
        assert outcome.reason == FailureReason.CANCELLED
        assert fake_page.navigations == []

    def test_cancel_during_submit_waits_for_outcome(
        self, site, page_factory, fake_page, file_store, sleep_recorder, credentials, product
    ) -> None:
        fake_page.submit_delay = 0.05
        runner = _runner(site, page_factory, file_store, sleep_recorder)

        async def scenario() -> None:
            task = asyncio.ensure_future(runner.run(_unit(product), credentials))
            while fake_page.submit_clicks == 0:
                await asyncio.sleep(0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())

        assert fake_page.submit_clicks == 1
        assert fake_page.submits_completed == 1


class TestReconcile:
    def test_listed_product_is_not_resubmitted(
        self, site_with_product_list, page_factory, fake_page, file_store, sleep_recorder, credentials, product
    ) -> None:
        fake_page.listed_titles.add(product.title)
        unit = _unit(product)
        unit.submission_unverified = True
        runner = _runner(site_with_product_list, page_factory, file_store, sleep_recorder)

        outcome = asyncio.run(runner.run(unit, credentials))

        assert outcome.is_ok
        assert outcome.step_name == "reconcile"
        assert fake_page.submit_clicks == 0

    def test_unlisted_product_is_submitted(
        self, site_with_product_list, page_factory, fake_page, file_store, sleep_recorder, credentials, product
    ) -> None:
        unit = _unit(product)
        unit.submission_unverified = True
        runner = _runner(site_with_product_list, page_factory, file_store, sleep_recorder)

        outcome = asyncio.run(runner.run(unit, credentials))

        assert outcome.is_ok
        assert outcome.step_name == "verify"
        assert fake_page.submit_clicks == 1
