import pandas as pd

from zenith_dwh.processing.resolvers import CategoryNormalizer, TerritoryResolver, clean_text


def test_clean_text():
    assert clean_text("  Sydney ") == "Sydney"
    assert clean_text("   ") is None
    assert clean_text(None) is None
    assert clean_text(float("nan")) is None


def test_territory_first_city_wins_and_unknown_is_ignored():
    territory = pd.DataFrame([
        {"city": "Sydney", "country": "Australia", "continent": "Oceania"},
        {"city": " Sydney", "country": "Unknown", "continent": "Oceania"},
        {"city": "Atlantis", "country": "Unknown", "continent": "Unknown"},
        {"city": None, "country": "Nowhere", "continent": "Nowhere"},
    ])
    resolver = TerritoryResolver.from_frame(territory)

    assert len(resolver) == 2
    assert resolver.country_for(" Sydney ") == "Australia"
    assert resolver.continent_for("Sydney") == "Oceania"
    assert resolver.country_for("Atlantis") is None
    assert "Atlantis" in resolver
    assert resolver.country_for("sydney") is None


def test_territory_countries_series():
    resolver = TerritoryResolver.from_frame(pd.DataFrame([
        {"city": "Berlin", "country": "Germany", "continent": "Europe"},
    ]))
    countries = resolver.countries(pd.Series(["Berlin", "Paris", None]))
    assert list(countries) == ["Germany", None, None]


def test_territory_series_on_string_dtype():
    resolver = TerritoryResolver.from_frame(pd.DataFrame([
        {"city": "Berlin", "country": "Germany", "continent": "Europe"},
    ]))
    cities = pd.Series(["Berlin", "Paris"], dtype="string")
    assert list(resolver.countries(cities)) == ["Germany", None]
    assert list(resolver.continents(cities)) == ["Europe", None]


def test_empty_territory_resolver():
    assert TerritoryResolver.empty().is_empty
    assert TerritoryResolver.from_frame(None).is_empty


def test_category_normalizer_substitutes_known_plurals():
    normalizer = CategoryNormalizer()
    assert normalizer.normalize(" Tires ") == "Tire"
    assert normalizer.normalize("Road Bikes") == "Road"
    assert normalizer.normalize("Pedals") == "Pedals"
    assert normalizer.normalize("  ") is None


def test_category_normalizer_unmatched_labels():
    category_map = pd.DataFrame([
        {"category_id": "AC_TI", "category": "Accessories", "subcategory": "Tire"},
        {"category_id": "ZZ_UN", "category": "Unknown", "subcategory": "Unknown"},
    ])
    normalizer = CategoryNormalizer.from_frame(category_map, {"Tires": "Tire"})

    assert normalizer.known_subcategories == frozenset({"Tire"})
    assert normalizer.unmatched(pd.Series(["Tires", "Gloves", "Unknown", None])) == {"Gloves"}
    assert normalizer.normalize("Helmets") == "Helmets"


def test_unmatched_is_empty_without_category_map():
    assert CategoryNormalizer().unmatched(pd.Series(["Anything"])) == set()
