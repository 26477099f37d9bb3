"""
End-to-end tests for AlertPipeline against a SQLite database.

Covers:
- A forecast above the 10-year threshold produces one major alert
- The next cycle is suppressed by dedup
- User selection (disabled, no rivers, quiet hours, invalid preferences)
- One user's failure does not affect the others
- Manual trigger for a single user
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from flowwatch.alerting.dedup import DedupGuard
from flowwatch.alerting.pipeline import UserNotFoundError
from flowwatch.alerting.schemas import AlertSeverity, OutcomeStatus
from flowwatch.db.models import (
    FlowAlertHistory,
    NotificationPreference,
    PushToken,
    ReturnPeriodCacheEntry,
    RiverMapping,
    Station,
)

THRESHOLDS = {
    "data": [{"return_period_2": 1000, "return_period_5": 2000, "return_period_10": 4000, "return_period_25": 5000}]
}


def preference(user_id, rivers=("r1",), enabled=True, **extra):
    return NotificationPreference(
        user_id=user_id,
        enabled=enabled,
        monitored_river_ids=list(rivers) if isinstance(rivers, (list, tuple)) else rivers,
        **extra,
    )


@pytest.fixture
def seed_river(seed, now):
    async def _seed(river_id="r1", reach_id="23021904", name="Clear Creek"):
        await seed(
            RiverMapping(river_id=river_id, noaa_reach_id=reach_id),
            Station(station_id=river_id, name=name),
            ReturnPeriodCacheEntry(
                river_id=river_id,
                document={**THRESHOLDS, "lastUpdated": (now - timedelta(days=1)).isoformat()},
            ),
        )

    return _seed


async def all_history(session_factory):
    async with session_factory() as session:
        return (await session.execute(select(FlowAlertHistory))).scalars().all()


@pytest.mark.asyncio
class TestScheduledRun:
    async def test_major_alert_sent_and_recorded(
        self, session_factory, seed, seed_river, make_noaa_client, streamflow,
        build_pipeline, notifier, hours_from_now,
    ):
        await seed_river()
        await seed(preference("u1"), PushToken(user_id="u1", token="device-1"))
        client = make_noaa_client({
            "short_range": streamflow([(hours_from_now(6), 4500.0)]),
            "medium_range": streamflow([]),
        })

        summary = await build_pipeline(client).run()

        assert summary.users_processed == 1
        assert summary.per_user_outcome == [OutcomeStatus.FULFILLED]
        assert summary.outcomes[0].alerts_sent == 1

        (message,) = notifier.messages
        assert message.title == "Major Flow Alert: Clear Creek"
        assert message.data["returnPeriod"] == "10"

        (row,) = await all_history(session_factory)
        assert row.severity == AlertSeverity.MAJOR.value
        assert row.return_period == 10
        assert row.return_period_flow == 4000.0
        assert row.sent is True
        assert client.requests[0].url.path.endswith("/reaches/23021904/streamflow")

    async def test_next_cycle_is_deduplicated(
        self, session_factory, seed, seed_river, make_noaa_client, streamflow,
        build_pipeline, notifier, now, hours_from_now,
    ):
        await seed_river()
        await seed(preference("u1"), PushToken(user_id="u1", token="device-1"))
        client = make_noaa_client({
            "short_range": streamflow([(hours_from_now(6), 4500.0)]),
            "medium_range": streamflow([]),
        })

        await build_pipeline(client, now=now).run()
        second = await build_pipeline(client, now=now + timedelta(minutes=30)).run()

        assert second.outcomes[0].alerts_matched == 1
        assert second.outcomes[0].alerts_sent == 0
        assert len(notifier.messages) == 1
        assert len(await all_history(session_factory)) == 1

    async def test_same_period_twice_in_one_run_sends_once(
        self, session_factory, seed, seed_river, make_noaa_client, streamflow,
        build_pipeline, notifier, hours_from_now,
    ):
        await seed_river()
        await seed(preference("u1"), PushToken(user_id="u1", token="device-1"))
        client = make_noaa_client({
            "short_range": streamflow([(hours_from_now(6), 4500.0), (hours_from_now(9), 4600.0)]),
            "medium_range": streamflow([(hours_from_now(72), 5200.0)]),
        })

        summary = await build_pipeline(client).run()

        # 10-year twice (second one deduped), 25-year once
        assert summary.outcomes[0].alerts_matched == 3
        assert summary.outcomes[0].alerts_sent == 2
        assert sorted(m.data["returnPeriod"] for m in notifier.messages) == ["10", "25"]

    async def test_disabled_range_not_evaluated(
        self, seed, seed_river, make_noaa_client, streamflow, build_pipeline, notifier,
        hours_from_now,
    ):
        await seed_river()
        await seed(
            preference("u1", include_short_range=False),
            PushToken(user_id="u1", token="device-1"),
        )
        client = make_noaa_client({
            "short_range": streamflow([(hours_from_now(6), 4500.0)]),
            "medium_range": streamflow([]),
        })

        summary = await build_pipeline(client).run()
        assert summary.outcomes[0].alerts_matched == 0
        assert notifier.messages == []

    async def test_below_thresholds_no_alert(
        self, session_factory, seed, seed_river, make_noaa_client, streamflow, build_pipeline,
        hours_from_now,
    ):
        await seed_river()
        await seed(preference("u1"))
        client = make_noaa_client({
            "short_range": streamflow([(hours_from_now(6), 999.0)]),
            "medium_range": streamflow([]),
        })

        summary = await build_pipeline(client).run()
        assert summary.per_user_outcome == [OutcomeStatus.FULFILLED]
        assert await all_history(session_factory) == []

    async def test_missing_thresholds_skip_river(
        self, seed, make_noaa_client, streamflow, build_pipeline, notifier, hours_from_now,
    ):
        await seed(preference("u1", rivers=["unknown-river"]))
        client = make_noaa_client({
            "short_range": streamflow([(hours_from_now(6), 1e6)]),
            "medium_range": streamflow([]),
        })

        summary = await build_pipeline(client).run()
        assert summary.per_user_outcome == [OutcomeStatus.FULFILLED]
        assert notifier.messages == []

    async def test_forecast_outage_skips_river(
        self, seed, seed_river, make_noaa_client, build_pipeline, notifier,
    ):
        await seed_river()
        await seed(preference("u1"))
        client = make_noaa_client({"short_range": 503, "medium_range": 503})

        summary = await build_pipeline(client).run()
        assert summary.per_user_outcome == [OutcomeStatus.FULFILLED]
        assert notifier.messages == []

    async def test_no_token_still_recorded(
        self, session_factory, seed, seed_river, make_noaa_client, streamflow, build_pipeline,
        hours_from_now,
    ):
        await seed_river()
        await seed(preference("u1"))
        client = make_noaa_client({
            "short_range": streamflow([(hours_from_now(6), 4500.0)]),
            "medium_range": streamflow([]),
        })

        summary = await build_pipeline(client).run()

        assert summary.outcomes[0].alerts_sent == 0
        (row,) = await all_history(session_factory)
        assert row.sent is False


@pytest.mark.asyncio
class TestUserSelection:
    async def test_ineligible_users_skipped(
        self, seed, make_noaa_client, build_pipeline, now,
    ):
        await seed(
            preference("enabled"),
            preference("disabled", enabled=False),
            preference("no-rivers", rivers=[]),
            preference("quiet", quiet_hours_enabled=True, quiet_hour_start=10, quiet_hour_end=14),
            preference("invalid", rivers="r1"),
        )

        selected = await build_pipeline(make_noaa_client({})).select_users(now)
        assert [p.user_id for p in selected] == ["enabled"]

    async def test_empty_run(self, make_noaa_client, build_pipeline):
        summary = await build_pipeline(make_noaa_client({})).run()
        assert summary.users_processed == 0
        assert summary.outcomes == []

    async def test_enumeration_failure_propagates(self, make_noaa_client, build_pipeline):
        pipeline = build_pipeline(make_noaa_client({}))

        def broken_factory():
            raise RuntimeError("database down")

        pipeline._session_factory = broken_factory
        with pytest.raises(RuntimeError):
            await pipeline.run()


@pytest.mark.asyncio
class TestFailureIsolation:
    async def test_failing_user_is_rejected_others_fulfilled(
        self, session_factory, seed, seed_river, make_noaa_client, streamflow, build_pipeline,
        notifier, hours_from_now,
    ):
        class FlakyDedup(DedupGuard):
            async def is_duplicate(self, user_id, river_id, return_period, now=None):
                if user_id == "u-bad":
                    raise RuntimeError("history unavailable")
                return await super().is_duplicate(user_id, river_id, return_period, now)

        await seed_river()
        await seed(
            preference("u-good"),
            preference("u-bad"),
            PushToken(user_id="u-good", token="device-good"),
            PushToken(user_id="u-bad", token="device-bad"),
        )
        client = make_noaa_client({
            "short_range": streamflow([(hours_from_now(6), 4500.0)]),
            "medium_range": streamflow([]),
        })
        pipeline = build_pipeline(client)
        pipeline.dedup = FlakyDedup(session_factory)

        summary = await pipeline.run()

        outcomes = {o.user_id: o for o in summary.outcomes}
        assert outcomes["u-good"].status == OutcomeStatus.FULFILLED
        assert outcomes["u-good"].alerts_sent == 1
        assert outcomes["u-bad"].status == OutcomeStatus.REJECTED
        assert "history unavailable" in outcomes["u-bad"].error
        assert [m.token for m in notifier.messages] == ["device-good"]


    async def test_failing_river_does_not_stop_other_rivers(
        self, session_factory, seed, seed_river, make_noaa_client, streamflow, build_pipeline,
        notifier, hours_from_now,
    ):
        class RiverFlakyDedup(DedupGuard):
            async def is_duplicate(self, user_id, river_id, return_period, now=None):
                if river_id == "r-bad":
                    raise RuntimeError("history unavailable")
                return await super().is_duplicate(user_id, river_id, return_period, now)

        await seed_river("r-bad", reach_id="23021905", name="Bear Creek")
        await seed_river("r-good", reach_id="23021906", name="Clear Creek")
        await seed(
            preference("u1", rivers=["r-bad", "r-good"]),
            PushToken(user_id="u1", token="device-1"),
        )
        client = make_noaa_client({
            "short_range": streamflow([(hours_from_now(6), 4500.0)]),
            "medium_range": streamflow([]),
        })
        pipeline = build_pipeline(client)
        pipeline.dedup = RiverFlakyDedup(session_factory)

        summary = await pipeline.run()

        (outcome,) = summary.outcomes
        assert outcome.status == OutcomeStatus.FULFILLED
        assert outcome.alerts_sent == 1
        assert [m.data["riverId"] for m in notifier.messages] == ["r-good"]


@pytest.mark.asyncio
class TestManualTrigger:
    async def test_single_user_ignores_enabled_and_quiet_hours(
        self, seed, seed_river, make_noaa_client, streamflow, build_pipeline, notifier,
        hours_from_now,
    ):
        await seed_river()
        await seed(
            preference(
                "u1",
                enabled=False,
                quiet_hours_enabled=True,
                quiet_hour_start=0,
                quiet_hour_end=23,
            ),
            PushToken(user_id="u1", token="device-1"),
        )
        client = make_noaa_client({
            "short_range": streamflow([(hours_from_now(6), 4500.0)]),
            "medium_range": streamflow([]),
        })

        summary = await build_pipeline(client).trigger("u1")

        assert summary.users_processed == 1
        assert summary.outcomes[0].alerts_sent == 1
        assert len(notifier.messages) == 1

    async def test_unknown_user(self, make_noaa_client, build_pipeline):
        with pytest.raises(UserNotFoundError):
            await build_pipeline(make_noaa_client({})).trigger("ghost")

    async def test_invalid_preferences_rejected(self, seed, make_noaa_client, build_pipeline):
        await seed(preference("u1", rivers="r1"))

        summary = await build_pipeline(make_noaa_client({})).trigger("u1")
        assert summary.per_user_outcome == [OutcomeStatus.REJECTED]

    async def test_all_matches_scheduled_selection(self, seed, make_noaa_client, build_pipeline):
        await seed(preference("u1", rivers=[]), preference("u2", enabled=False))

        summary = await build_pipeline(make_noaa_client({})).trigger("all")
        assert summary.users_processed == 0
