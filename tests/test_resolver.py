from datetime import date

import pytest

from conftest import FakeClock, FakeSearchClient, listing
from services.aspects import AspectSignal
from services.errors import AuthError, NetworkError, UpstreamError, ValidationError
from services.models import AspectDistribution, AspectSource, Attribute, AttributeValue
from services.resolver import AspectResolver, SignalPolicy, merge_values
from services.settings import Settings
from services.ttl_cache import TimeBoxedCache

FORD_MUSTANGS = [
    listing("1967 Ford Mustang Fastback"),
    listing("1965 Ford Mustang Coupe 289"),
    listing("2005 Ford Mustang GT"),
]


def make_resolver(client, clock=None, **kw):
    clock = clock or FakeClock()
    return AspectResolver(client, TimeBoxedCache(clock=clock), Settings(value_store_path=None), **kw), clock


@pytest.mark.anyio
async def test_models_merge_live_counts_with_catalog():
    client = FakeSearchClient(items=FORD_MUSTANGS)
    resolver, _ = make_resolver(client)

    res = await resolver.resolve_models("Ford")

    assert res.source == AspectSource.MERGED
    mustang = [v for v in res.values if v.value == "Mustang"]
    assert [(v.count, v.parent) for v in mustang] == [(3, "Ford")]
    assert "F-150" in [v.value for v in res.values]
    names = [v.display_name for v in res.values]
    assert names == sorted(names, key=str.lower)
    assert client.queries == ["Ford car truck vehicle"]
    assert client.calls[0][1].aspect_filter() == "categoryId:6001,Make:{Ford}"


@pytest.mark.anyio
async def test_upstream_failure_still_answers_every_step():
    client = FakeSearchClient(error=UpstreamError("boom", status=500))
    resolver, _ = make_resolver(client)

    makes = await resolver.resolve_makes()
    models = await resolver.resolve_models("Toyota")
    years = await resolver.resolve_years("Toyota", "Camry")

    for res in (makes, models, years):
        assert res.values
        assert res.source == AspectSource.FALLBACK
    assert years.values[0].value == str(date.today().year)
    assert years.values[-1].value == "1990"


@pytest.mark.anyio
async def test_auth_failure_falls_back():
    resolver, _ = make_resolver(FakeSearchClient(error=AuthError("no creds")))
    res = await resolver.resolve_makes()
    assert res.source == AspectSource.FALLBACK
    assert "Ford" in [v.value for v in res.values]


@pytest.mark.anyio
async def test_zero_counts_are_dropped():
    def extractor(items, attribute, make=None, distributions=()):
        return {"Ford": AspectSignal(structured=5), "Yugo": AspectSignal()}

    resolver, _ = make_resolver(FakeSearchClient(), extractor=extractor)
    res = await resolver.resolve_makes()

    values = [v.value for v in res.values]
    assert "Ford" in values
    assert "Yugo" not in values
    assert [v.count for v in res.values if v.value == "Ford"] == [5]


@pytest.mark.anyio
async def test_thin_live_signal_uses_catalog():
    client = FakeSearchClient(items=[listing("2001 Zastava Koral", Make="Zastava")])
    resolver, _ = make_resolver(client, policy=SignalPolicy(min_makes=3))

    res = await resolver.resolve_makes()

    assert res.source == AspectSource.FALLBACK
    assert "Zastava" not in [v.value for v in res.values]


@pytest.mark.anyio
async def test_years_are_live_only():
    client = FakeSearchClient(items=FORD_MUSTANGS)
    resolver, _ = make_resolver(client)

    res = await resolver.resolve_years("Ford", "Mustang")

    assert res.source == AspectSource.LIVE
    assert [v.value for v in res.values] == ["2005", "1967", "1965"]
    assert client.queries == ["Ford Mustang"]


@pytest.mark.anyio
async def test_results_are_cached_until_refresh():
    client = FakeSearchClient(items=FORD_MUSTANGS)
    resolver, clock = make_resolver(client)

    first = await resolver.resolve_models("Ford")
    assert await resolver.resolve_models("  ford ") is first
    assert len(client.calls) == 1

    await resolver.resolve_models("Ford", force_refresh=True)
    assert len(client.calls) == 2

    clock.advance(5 * 60 * 1000)
    await resolver.resolve_models("Ford")
    assert len(client.calls) == 3


@pytest.mark.anyio
async def test_fallback_results_expire_sooner():
    client = FakeSearchClient(error=NetworkError("timeout"))
    resolver, clock = make_resolver(client)

    await resolver.resolve_makes()
    clock.advance(60 * 1000)
    client.error = None
    client.items = [listing("2018 Ford F-150", Make="Ford")]

    res = await resolver.resolve_makes()
    assert res.source == AspectSource.MERGED
    assert len(client.calls) == 2


@pytest.mark.anyio
async def test_changing_make_does_not_reuse_other_make_data():
    client = FakeSearchClient(items=FORD_MUSTANGS)
    resolver, _ = make_resolver(client)

    await resolver.resolve_models("Ford")
    await resolver.resolve_models("Toyota")
    await resolver.resolve_years("Ford", "Mustang")
    await resolver.resolve_models("Ford")

    assert client.queries == [
        "Ford car truck vehicle",
        "Toyota car truck vehicle",
        "Ford Mustang",
        "Ford car truck vehicle",
    ]
    assert [c.aspects for _, c in client.calls] == [
        (("Make", "Ford"),),
        (("Make", "Toyota"),),
        (("Make", "Ford"), ("Model", "Mustang")),
        (("Make", "Ford"),),
    ]


@pytest.mark.anyio
async def test_changing_model_drops_old_years():
    client = FakeSearchClient(items=FORD_MUSTANGS)
    resolver, _ = make_resolver(client)

    await resolver.resolve_years("Ford", "Mustang")
    await resolver.resolve_years("Ford", "Bronco")
    await resolver.resolve_years("Ford", "Mustang")
    assert client.queries == ["Ford Mustang", "Ford Bronco", "Ford Mustang"]


@pytest.mark.anyio
async def test_is_current_tracks_latest_selection():
    resolver, _ = make_resolver(FakeSearchClient(items=FORD_MUSTANGS))
    await resolver.resolve_years("Ford", "Mustang")
    assert resolver.is_current("ford", "Mustang")
    await resolver.resolve_models("Toyota")
    assert not resolver.is_current("Ford")
    assert resolver.is_current("Toyota")


@pytest.mark.anyio
@pytest.mark.parametrize("make,model", [("", "Mustang"), ("Ford", "  ")])
async def test_blank_input_raises_before_upstream(make, model):
    client = FakeSearchClient(items=FORD_MUSTANGS)
    resolver, _ = make_resolver(client)
    with pytest.raises(ValidationError):
        await resolver.resolve_years(make, model)
    assert client.calls == []


@pytest.mark.anyio
async def test_retries_only_retryable_errors():
    class Flaky(FakeSearchClient):
        def __init__(self, errors):
            super().__init__(items=[listing("2018 Ford F-150", Make="Ford")])
            self.errors = list(errors)

        async def search(self, query, constraints=None, page_size=100):
            if self.errors:
                self.calls.append((query, constraints))
                raise self.errors.pop(0)
            return await super().search(query, constraints, page_size)

    resolver, _ = make_resolver(Flaky([NetworkError("reset")]), max_attempts=2)
    assert (await resolver.resolve_makes()).source == AspectSource.MERGED

    client = Flaky([UpstreamError("bad request", status=400)])
    resolver, _ = make_resolver(client, max_attempts=3)
    assert (await resolver.resolve_makes()).source == AspectSource.FALLBACK
    assert len(client.calls) == 1


@pytest.mark.anyio
async def test_attribute_set_combines_sources():
    client = FakeSearchClient(items=FORD_MUSTANGS)
    resolver, _ = make_resolver(client)

    attrs = await resolver.resolve_attribute_set("Ford", "Mustang")
    assert attrs.source == AspectSource.MERGED
    assert attrs.models and attrs.years
    assert attrs.to_dict()["years"][0] == {"value": "2005", "displayName": "2005", "count": 1}

    resolver.clear_cache()
    assert (await resolver.resolve_attribute_set()).models == ()


def test_merge_keeps_live_over_fallback():
    live = [AttributeValue("ford", "ford", 9)]
    fallback = [AttributeValue("Ford", "Ford", 1), AttributeValue("Audi", "Audi", 1)]
    merged = merge_values(live, fallback, Attribute.MAKE)
    assert [(v.value, v.count) for v in merged] == [("Audi", 1), ("ford", 9)]


@pytest.mark.anyio
async def test_marketplace_distribution_drives_make_counts():
    client = FakeSearchClient(items=[listing("2018 Ford F-150", Make="Ford")])
    client.distributions = [AspectDistribution("Make", (("Ford", 120), ("Yugo", 0)))]
    resolver, _ = make_resolver(client)

    res = await resolver.resolve_makes()

    assert res.source == AspectSource.MERGED
    assert [v.count for v in res.values if v.value == "Ford"] == [120]
    assert "Yugo" not in [v.value for v in res.values]


@pytest.mark.anyio
async def test_interleaved_sessions_keep_their_own_cascade():
    client = FakeSearchClient(items=FORD_MUSTANGS)
    resolver, _ = make_resolver(client)

    for _ in range(3):
        await resolver.resolve_models("Ford", session="picker-a")
        await resolver.resolve_models("Toyota", session="picker-b")

    assert client.queries == ["Ford car truck vehicle", "Toyota car truck vehicle"]
    assert resolver.is_current("Ford", session="picker-a")
    assert resolver.is_current("Toyota", session="picker-b")
    assert not resolver.is_current("Ford", session="picker-b")

    # picker-b still browses Toyota, so picker-a leaving Ford only drops Ford
    await resolver.resolve_models("Honda", session="picker-a")
    await resolver.resolve_models("Toyota", session="picker-b")
    await resolver.resolve_models("Ford", session="picker-a")
    assert client.queries[2:] == ["Honda car truck vehicle", "Ford car truck vehicle"]
