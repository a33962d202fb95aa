import random

import pytest

from app.services.exceptions import MessageResolutionError
from app.services.messages import (
    fill_placeholders,
    load_message_catalogs,
    normalize_language,
    pick_variant,
    push_recent,
    resolve_message,
)

VARIANTS = [
    {"en": {"title": "Hi {{sport}}", "body": "At {{location}}"}, "es": {"title": "Hola {{sport}}", "body": "En {{location}}"}},
]


def test_catalogs_load_from_yaml(catalogs):
    assert len(catalogs["morning_motivation"]) == 20
    assert len(catalogs["weekly_recap"]) == 9
    assert "session_reminder_2h_host" in catalogs
    for variants in catalogs.values():
        for variant in variants:
            assert "en" in variant


def test_catalog_without_english_text_is_skipped(tmp_path):
    (tmp_path / "good.yaml").write_text(
        "name: good\nvariants:\n  - en: {title: A, body: B}\n", encoding="utf-8"
    )
    (tmp_path / "bad.yaml").write_text(
        "name: bad\nvariants:\n  - es: {title: A, body: B}\n", encoding="utf-8"
    )

    catalogs = load_message_catalogs(tmp_path)

    assert list(catalogs) == ["good"]


def test_missing_catalog_directory_returns_empty(tmp_path):
    assert load_message_catalogs(tmp_path / "missing") == {}


def test_normalize_language_falls_back_to_english():
    assert normalize_language("es") == "es"
    assert normalize_language("es-CO") == "es"
    assert normalize_language("fr") == "en"
    assert normalize_language(None) == "en"


def test_resolve_uses_recipient_language():
    message = resolve_message(VARIANTS, "es", {"sport": "Tenis", "location": "Usaquén"})

    assert message.title == "Hola Tenis"
    assert message.body == "En Usaquén"
    assert message.index == 0


def test_unsupported_language_gets_english_text():
    message = resolve_message(VARIANTS, "de", {"sport": "Tennis", "location": "Court 3"})

    assert message.title == "Hi Tennis"


def test_unresolved_placeholder_is_an_error():
    with pytest.raises(MessageResolutionError, match="location"):
        resolve_message(VARIANTS, "en", {"sport": "Tennis"})


def test_none_value_counts_as_missing():
    with pytest.raises(MessageResolutionError):
        fill_placeholders("{{days}} days", {"days": None})


def test_zero_is_a_valid_value():
    assert fill_placeholders("{{count}} sessions", {"count": 0}) == "0 sessions"


def test_empty_catalog_is_an_error():
    with pytest.raises(MessageResolutionError):
        resolve_message([], "en")


def test_pick_variant_avoids_recent_indices():
    rng = random.Random(7)
    for _ in range(20):
        assert pick_variant(10, list(range(9)), rng) == 9


def test_pick_variant_falls_back_when_everything_is_recent():
    rng = random.Random(7)
    assert pick_variant(3, [0, 1, 2], rng) in (0, 1, 2)


def test_recent_list_evicts_oldest_past_cap():
    recent = list(range(15))

    updated = push_recent(recent, 19, 15)

    assert len(updated) == 15
    assert updated[0] == 1
    assert updated[-1] == 19


def test_recent_list_grows_below_cap():
    assert push_recent([3, 4], 5, 15) == [3, 4, 5]
