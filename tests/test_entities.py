"""Tests for entity definitions and Notion property mapping."""

import pytest
from hypothesis import given, strategies as st

from wrestling_sync.sync.entities import (
    DEFAULT_ENTITIES, FACTIONS, SEGMENTS, SHOWS, TEAMS, WRESTLERS,
    as_bool, as_date, as_int, as_non_negative_int, as_reference, as_reference_list,
    extract_property_value,
)
from wrestling_sync.sync.exceptions import RecordError

from conftest import page


class TestExtractPropertyValue:

    def test_plain_values_pass_through(self):
        assert extract_property_value("Rock") == "Rock"
        assert extract_property_value(15) == 15
        assert extract_property_value(None) is None

    def test_title_and_rich_text(self):
        title = {"type": "title", "title": [{"plain_text": "The "}, {"plain_text": "Rock"}]}
        rich = {"type": "rich_text", "rich_text": [{"text": {"content": "People's champ"}}]}
        assert extract_property_value(title) == "The Rock"
        assert extract_property_value(rich) == "People's champ"
        assert extract_property_value({"type": "rich_text", "rich_text": []}) is None

    def test_select_status_and_multi_select(self):
        assert extract_property_value({"type": "select", "select": {"name": "Main Event"}}) == "Main Event"
        assert extract_property_value({"type": "select", "select": None}) is None
        assert extract_property_value({"type": "status", "status": {"name": "Active"}}) == "Active"
        assert extract_property_value(
            {"type": "multi_select", "multi_select": [{"name": "a"}, {"name": "b"}]}
        ) == ["a", "b"]

    def test_date_relation_number_checkbox(self):
        assert extract_property_value({"type": "date", "date": {"start": "2024-05-01"}}) == "2024-05-01"
        assert extract_property_value({"type": "date", "date": None}) is None
        assert extract_property_value(
            {"type": "relation", "relation": [{"id": "wr-1"}, {"id": "wr-2"}]}
        ) == ["wr-1", "wr-2"]
        assert extract_property_value({"type": "number", "number": 18}) == 18
        assert extract_property_value({"type": "checkbox", "checkbox": False}) is False

    def test_untyped_property_objects(self):
        assert extract_property_value({"id": "x", "number": 3}) == 3
        assert extract_property_value({"unrelated": 1}) == {"unrelated": 1}


class TestConverters:

    def test_as_int(self):
        assert as_int("12") == 12
        assert as_int(12.0) == 12
        assert as_int("") is None
        with pytest.raises(ValueError):
            as_int(1.5)
        with pytest.raises(ValueError):
            as_int(True)

    def test_as_non_negative_int(self):
        assert as_non_negative_int(0) == 0
        with pytest.raises(ValueError):
            as_non_negative_int(-1)

    def test_as_bool(self):
        assert as_bool("Yes") is True
        assert as_bool("0") is False
        assert as_bool(None) is None
        with pytest.raises(ValueError):
            as_bool("maybe")

    @pytest.mark.parametrize("placeholder", ["TBD", "tba", "", "N/A", "Date TBD"])
    def test_as_date_placeholders(self, placeholder):
        assert as_date(placeholder) is None

    def test_as_date(self):
        assert as_date("2024-03-01") == "2024-03-01"
        assert as_date("2024-03-01T20:00:00.000+01:00") == "2024-03-01"
        with pytest.raises(ValueError):
            as_date("next tuesday")

    def test_references(self):
        assert as_reference(["wr-1"]) == "wr-1"
        assert as_reference([]) is None
        assert as_reference("wr-1") == "wr-1"
        with pytest.raises(ValueError):
            as_reference(["wr-1", "wr-2"])
        assert as_reference_list("wr-1") == ["wr-1"]
        assert as_reference_list(["wr-1", "", "wr-2"]) == ["wr-1", "wr-2"]

    @given(st.integers(min_value=0, max_value=10**6))
    def test_non_negative_ints_accept_their_text_form(self, number):
        assert as_non_negative_int(str(number)) == number


class TestEntityDefinition:

    def test_descriptors_follow_references(self):
        assert WRESTLERS.descriptor.depends_on == frozenset({"factions"})
        assert SHOWS.descriptor.depends_on == frozenset({"seasons", "templates"})
        assert SEGMENTS.descriptor.depends_on == frozenset({"shows", "wrestlers"})
        assert FACTIONS.descriptor.depends_on == frozenset()

    def test_local_only_fields(self):
        assert WRESTLERS.local_only_fields == frozenset({"fans", "bumps", "image_url"})
        assert FACTIONS.local_only_fields == frozenset({"leader"})

    def test_map_remote(self):
        fields = WRESTLERS.map_remote(page(
            "wr-1", Name="Rock", Deck_Size="20", Player="no", Faction=["fac-1"], Tier=None,
            Unmapped="ignored",
        ))
        assert fields == {"name": "Rock", "deck_size": 20, "is_player": False, "faction": "fac-1"}

    def test_map_remote_requires_id_and_required_fields(self):
        with pytest.raises(RecordError):
            WRESTLERS.map_remote(page(None, Name="Rock"))
        with pytest.raises(RecordError) as exc_info:
            TEAMS.map_remote(page("team-1", Name="Tag", Member_1=["wr-1"]))
        assert exc_info.value.external_id == "team-1"
        assert "wrestler_2" in exc_info.value.reason

    def test_map_remote_reports_bad_values(self):
        with pytest.raises(RecordError) as exc_info:
            WRESTLERS.map_remote(page("wr-1", Name="Rock", Deck_Size=-3))
        assert "Deck Size" in exc_info.value.reason

    def test_reference_ids(self):
        fields = SEGMENTS.map_remote(page(
            "seg-1", Name="Opener", Show=["show-1"], Participants=["wr-1", "wr-2"], Winners=["wr-1"]
        ))
        assert sorted(SEGMENTS.reference_ids(fields)) == [
            ("shows", "show-1"), ("wrestlers", "wr-1"), ("wrestlers", "wr-1"), ("wrestlers", "wr-2"),
        ]

    def test_merge_keeps_local_only_fields(self):
        existing = WRESTLERS.with_defaults({"name": "Rock", "deck_size": 15})
        existing["fans"] = 1200
        merged = WRESTLERS.merge(existing, {"name": "The Rock", "deck_size": 20, "fans": 0})

        assert merged["name"] == "The Rock"
        assert merged["deck_size"] == 20
        assert merged["fans"] == 1200

    def test_to_remote_uses_property_names(self):
        assert WRESTLERS.to_remote({"name": "Rock", "fans": 5, "tier": None, "deck_size": 20}) == {
            "Name": "Rock", "Deck Size": 20,
        }

    def test_default_catalogue_names_are_unique(self):
        names = [definition.name for definition in DEFAULT_ENTITIES]
        assert len(names) == len(set(names)) == 8
