from conftest import listing
from services.aspects import (
    AspectSignal,
    Structured,
    TitleText,
    classify,
    extract,
    extract_signals,
    make_from_text,
    model_from_text,
    year_from_text,
)
from services.models import AspectDistribution, Attribute


def test_classify_prefers_structured_fields():
    item = listing("2018 Ford F-150 XLT", Make="Ford", Year="2018")
    assert classify(item, Attribute.MAKE) == Structured("Ford")
    assert classify(item, Attribute.MODEL) == TitleText("2018 Ford F-150 XLT")


def test_structured_and_title_hits_are_counted_apart():
    items = [
        listing("1967 Ford Mustang Fastback", Model="Mustang"),
        listing("1966 Ford Mustang coupe"),
        listing("Ford mustang GT 2005"),
    ]
    signals = extract_signals(items, Attribute.MODEL, make="Ford")
    assert signals == {"Mustang": AspectSignal(structured=1, text=2)}
    assert signals["Mustang"].weighted(0.5) == 2
    assert extract(items, "model", make="Ford") == {"Mustang": 3}


def test_year_from_text_ignores_out_of_range_numbers():
    assert year_from_text("Low miles 1850 restored 1969 Camaro") == "1969"
    assert year_from_text("Camaro SS 350") is None


def test_make_from_text_uses_aliases_and_longest_match():
    assert make_from_text("2012 Chevy Silverado 1500") == "Chevrolet"
    assert make_from_text("2019 Land Rover Range Rover Sport HSE") == "Land Rover"
    assert make_from_text("Tractor parts lot") is None


def test_model_from_text_prefers_catalog_then_next_token():
    assert model_from_text("2019 Land Rover Range Rover Sport HSE", "Land Rover") == "Range Rover Sport"
    assert model_from_text("2014 Ford Fusion SE", "Ford") == "Fusion"
    assert model_from_text("Ford 1965 Falcon Futura", "Ford") == "Falcon"
    assert model_from_text("no make here") is None


def test_year_structured_value_must_be_valid():
    items = [listing("Ford Mustang", Year="1066"), listing("Ford Mustang", Model_Year="1999")]
    assert extract(items, Attribute.YEAR) == {"1999": 1}


def test_first_spelling_wins():
    items = [listing("x", Model="CR-V"), listing("y", Model="cr-v")]
    assert extract(items, Attribute.MODEL) == {"CR-V": 2}


def test_distribution_counts_replace_per_item_counting():
    items = [listing("2018 Ford F-150", Make="Ford"), listing("2012 Chevy Silverado")]
    dists = (
        AspectDistribution("Model", (("F-150", 40),)),
        AspectDistribution("Make", (("Ford", 120), ("chevy", 7), ("Yugo", 0))),
    )

    signals = extract_signals(items, Attribute.MAKE, distributions=dists)

    assert signals == {
        "Ford": AspectSignal(structured=120),
        "Chevrolet": AspectSignal(structured=7),
        "Yugo": AspectSignal(),
    }
    assert extract(items, Attribute.YEAR, distributions=dists) == {"2018": 1, "2012": 1}
