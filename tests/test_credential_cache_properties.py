"""
Property-based tests for the credential cache and ticket parsing.
"""

import asyncio
from datetime import datetime, timedelta, timezone

from hypothesis import given, settings
from hypothesis import strategies as st

from dataset_monitor.credential_cache import CredentialCache
from dataset_monitor.exceptions import AuthError
from dataset_monitor.provider_client import ProviderClient, parse_ticket_payload

from provider_fakes import FakeProvider, combined_transport


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def _run(coro):
    return asyncio.run(coro)


class TestCacheHitProperty:
    """A valid cached credential is returned without any network call."""

    @given(
        expires=st.integers(min_value=301, max_value=86400),
        calls=st.integers(min_value=2, max_value=6),
    )
    @settings(max_examples=50, deadline=None)
    def test_repeated_calls_within_lifetime_hit_cache(self, expires: int, calls: int) -> None:
        fake = FakeProvider(expires=expires)
        clock = ManualClock()

        async def scenario():
            async with ProviderClient(transport=fake.transport()) as client:
                cache = CredentialCache(client, safety_margin_seconds=300, clock=clock)
                first = await cache.get_or_refresh(fake.config)
                others = [await cache.get_or_refresh(fake.config) for _ in range(calls - 1)]
                return first, others

        first, others = _run(scenario())

        assert fake.ticket_calls == 1
        assert all(other is first for other in others)
        assert first.expires_at == clock.now + timedelta(seconds=expires - 300)

    def test_ticket_fields_are_parsed(self) -> None:
        fake = FakeProvider(expires=3600, version="2.1")
        clock = ManualClock()

        async def scenario():
            async with ProviderClient(transport=fake.transport()) as client:
                return await CredentialCache(client, clock=clock).get_or_refresh(fake.config)

        credential = _run(scenario())

        assert credential.token == "token-1"
        assert credential.version == "2.1"
        assert credential.service_url("DATASET_LIST") == f"{fake.base}/datasets"
        assert credential.service_url("GET_DATASET_DETAILS") == f"{fake.base}/dataset"
        assert credential.service_url("MISSING") is None


class TestExpiryProperty:
    """Once a credential is no longer valid, exactly one refresh happens."""

    @given(
        expires=st.integers(min_value=400, max_value=7200),
        margin=st.integers(min_value=0, max_value=300),
    )
    @settings(max_examples=50, deadline=None)
    def test_expired_credential_is_replaced(self, expires: int, margin: int) -> None:
        fake = FakeProvider(expires=expires)
        clock = ManualClock()

        async def scenario():
            async with ProviderClient(transport=fake.transport()) as client:
                cache = CredentialCache(client, safety_margin_seconds=margin, clock=clock)
                first = await cache.get_or_refresh(fake.config)
                clock.advance(expires - margin)  # expires_at == now: no longer valid
                second = await cache.get_or_refresh(fake.config)
                third = await cache.get_or_refresh(fake.config)
                return first, second, third, cache

        first, second, third, cache = _run(scenario())

        assert fake.ticket_calls == 2
        assert second is not first
        assert second.token == "token-2"
        assert first.token == "token-1"  # superseded, never mutated
        assert third is second
        assert cache.get(fake.name) is second

    def test_refresh_leaves_other_providers_alone(self) -> None:
        a = FakeProvider(name="center-a", expires=1000)
        b = FakeProvider(name="center-b", expires=100000)
        clock = ManualClock()

        async def scenario():
            async with ProviderClient(transport=combined_transport(a, b)) as client:
                cache = CredentialCache(client, safety_margin_seconds=0, clock=clock)
                await cache.get_or_refresh(a.config)
                b_first = await cache.get_or_refresh(b.config)
                clock.advance(2000)
                await cache.get_or_refresh(a.config)
                return b_first, cache.get("center-b")

        b_first, b_cached = _run(scenario())

        assert a.ticket_calls == 2
        assert b.ticket_calls == 1
        assert b_cached is b_first

    def test_invalidate_forces_refresh(self) -> None:
        fake = FakeProvider()

        async def scenario():
            async with ProviderClient(transport=fake.transport()) as client:
                cache = CredentialCache(client)
                await cache.get_or_refresh(fake.config)
                cache.invalidate(fake.name)
                cache.invalidate("never-cached")
                return await cache.get_or_refresh(fake.config)

        credential = _run(scenario())

        assert fake.ticket_calls == 2
        assert credential.token == "token-2"


class TestAuthFailureProperty:
    """Ticket failures surface as AuthError and leave the cache empty."""

    @given(status=st.sampled_from([401, 403, 500, 502, 503]))
    @settings(max_examples=20, deadline=None)
    def test_non_2xx_ticket_response_raises(self, status: int) -> None:
        fake = FakeProvider(ticket_status=status)

        async def scenario():
            async with ProviderClient(transport=fake.transport()) as client:
                cache = CredentialCache(client)
                try:
                    await cache.get_or_refresh(fake.config)
                except AuthError as e:
                    return e, cache.get(fake.name)
            raise AssertionError("Expected AuthError")

        error, cached = _run(scenario())

        assert error.code == "TICKET_REJECTED"
        assert error.details["status_code"] == status
        assert cached is None

    def test_wrong_secret_raises(self) -> None:
        fake = FakeProvider(secret_key="right")
        config = fake.config
        wrong = type(config)(name=config.name, url=config.url, secret_key="wrong")

        async def scenario():
            async with ProviderClient(transport=fake.transport()) as client:
                await CredentialCache(client).get_or_refresh(wrong)

        try:
            _run(scenario())
        except AuthError as e:
            assert e.details["status_code"] == 401
            return
        raise AssertionError("Expected AuthError")

    def test_unreachable_endpoint_raises(self) -> None:
        fake = FakeProvider(name="center-a")
        other = FakeProvider(name="center-z")

        async def scenario():
            async with ProviderClient(transport=combined_transport(other)) as client:
                await CredentialCache(client).get_or_refresh(fake.config)

        try:
            _run(scenario())
        except AuthError as e:
            assert e.code == "TICKET_UNREACHABLE"
            return
        raise AssertionError("Expected AuthError")


class TestTicketPayloadParsing:
    def test_version_defaults_to_1_0(self) -> None:
        ticket = parse_ticket_payload({
            "ticket": {"token": "t", "expires": 60},
            "serviceList": [],
        })
        assert ticket.version == "1.0"
        assert ticket.services == ()

    def test_first_service_version_wins(self) -> None:
        ticket = parse_ticket_payload({
            "ticket": {"token": "t", "expires": 60},
            "serviceList": [
                {"name": "DATASET_LIST", "version": "3.0", "url": "https://x/list"},
                {"name": "GET_DATASET_DETAILS", "version": "4.0", "url": "https://x/d"},
                "garbage",
            ],
        })
        assert ticket.version == "3.0"
        assert [s.name for s in ticket.services] == ["DATASET_LIST", "GET_DATASET_DETAILS"]

    def test_malformed_payloads_raise_value_error(self) -> None:
        for payload in (
            [],
            {},
            {"ticket": {"expires": 60}},
            {"ticket": {"token": "t"}},
            {"ticket": {"token": "t", "expires": True}},
        ):
            try:
                parse_ticket_payload(payload)
            except ValueError:
                continue
            raise AssertionError(f"Expected ValueError for {payload!r}")
