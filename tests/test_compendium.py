"""Tests for the taxonomic compendium and the GBIF taxonomy lookup."""

from unittest.mock import MagicMock, patch

import pandas as pd
import pytest
import requests

from occcube.compendium import (
    COMPENDIUM_COLUMNS,
    GbifTaxonomyLookup,
    TaxonInfo,
    build_compendium,
    collect_included_taxa,
    format_includes,
)
from occcube.errors import ExternalLookupFailure
from occcube.store import OccurrenceStore


class FakeLookup:
    """Taxonomy lookup backed by a dict; unknown keys fail."""

    def __init__(self, taxa):
        self.taxa = taxa
        self.calls = []

    def lookup(self, key):
        self.calls.append(key)
        if key not in self.taxa:
            raise ExternalLookupFailure(key, "unknown taxon key")
        return self.taxa[key]


@pytest.fixture
def lookup():
    return FakeLookup({
        9999: TaxonInfo(9999, "Anas platyrhynchos Linnaeus, 1758", "SPECIES", "ACCEPTED", "Animalia"),
        2480528: TaxonInfo(2480528, "Corvus corone Linnaeus, 1758", "SPECIES", "ACCEPTED", "Animalia"),
    })


def mock_response(status_code, payload=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload or {}
    return response


class TestCollectIncludedTaxa:

    def test_distinct_taxa_per_species(self, store):
        included = collect_included_taxa(store, chunk_size=2)
        assert set(included) == {9999, 2480528}
        assert included[9999] == {
            9999: "Anas platyrhynchos Linnaeus, 1758",
            4444: "Anas boschas Linnaeus, 1758",
        }
        assert included[2480528] == {
            2480528: "Corvus corone Linnaeus, 1758",
            7788776: "Corvus corone cornix Linnaeus, 1758",
        }

    def test_records_without_species_key_ignored(self, store):
        included = collect_included_taxa(store)
        assert 0 not in included
        assert all(1234 not in taxa and 5678 not in taxa for taxa in included.values())


class TestFormatIncludes:

    def test_sorted_and_joined(self):
        text = format_includes({7788776: "Corvus corone cornix", 2480528: "Corvus corone"})
        assert text == "2480528: Corvus corone | 7788776: Corvus corone cornix"

    def test_missing_name(self):
        assert format_includes({5: None}) == "5"


class TestBuildCompendium:

    def test_one_row_per_species(self, store, lookup):
        compendium, summary = build_compendium(store, lookup, chunk_size=3)

        assert list(compendium.columns) == COMPENDIUM_COLUMNS
        assert compendium["speciesKey"].tolist() == [9999, 2480528]
        assert summary.rows == 2
        assert sorted(lookup.calls) == [9999, 2480528]

        row = compendium.set_index("speciesKey").loc[9999]
        assert row["species"] == "Anas platyrhynchos Linnaeus, 1758"
        assert row["rank"] == "SPECIES"
        assert row["kingdom"] == "Animalia"
        assert row["includes"] == (
            "4444: Anas boschas Linnaeus, 1758 | 9999: Anas platyrhynchos Linnaeus, 1758"
        )

    def test_species_seen_only_through_synonyms(self, tmp_path):
        # species key 500 never appears as a taxon key of its own records
        records = pd.DataFrame({
            "gbifID": [1, 2, 3],
            "decimalLatitude": [50.0, 50.1, 50.2],
            "decimalLongitude": [4.0, 4.1, 4.2],
            "speciesKey": pd.array([500, 500, 500], dtype="Int64"),
            "taxonKey": pd.array([501, 502, 501], dtype="Int64"),
            "scientificName": ["Synonym one", "Subspecies two", "Synonym one"],
        })
        lookup = FakeLookup({500: TaxonInfo(500, "Accepted species", "SPECIES", "ACCEPTED", "Plantae")})
        with OccurrenceStore(tmp_path / "syn.sqlite") as s:
            s.append(records)
            compendium, _ = build_compendium(s, lookup)

        assert len(compendium) == 1
        row = compendium.iloc[0]
        assert row["speciesKey"] == 500
        assert row["species"] == "Accepted species"
        assert row["includes"] == "501: Synonym one | 502: Subspecies two"

    def test_each_taxon_listed_once(self, store, lookup):
        compendium, _ = build_compendium(store, lookup, chunk_size=1)
        for includes in compendium["includes"]:
            keys = [entry.split(":")[0] for entry in includes.split(" | ")]
            assert len(keys) == len(set(keys))

    def test_failed_lookup_drops_row(self, store):
        lookup = FakeLookup({
            9999: TaxonInfo(9999, "Anas platyrhynchos Linnaeus, 1758", "SPECIES", "ACCEPTED", "Animalia"),
        })
        compendium, summary = build_compendium(store, lookup)
        assert compendium["speciesKey"].tolist() == [9999]
        assert summary.missing_lookups == [2480528]
        assert summary.species == 2


class TestGbifTaxonomyLookup:

    @pytest.fixture
    def client(self):
        session = MagicMock(spec=requests.Session)
        session.headers = {}
        return GbifTaxonomyLookup(session=session, base_backoff=0)

    def test_parses_species(self, client):
        client.session.get.return_value = mock_response(200, {
            "key": 9999,
            "scientificName": "Anas platyrhynchos Linnaeus, 1758",
            "rank": "SPECIES",
            "taxonomicStatus": "ACCEPTED",
            "kingdom": "Animalia",
        })
        info = client.lookup(9999)
        assert info == TaxonInfo(9999, "Anas platyrhynchos Linnaeus, 1758", "SPECIES", "ACCEPTED", "Animalia")
        client.session.get.assert_called_once()
        assert client.session.get.call_args[0][0] == "https://api.gbif.org/v1/species/9999"

    def test_results_cached(self, client):
        client.session.get.return_value = mock_response(200, {"key": 1, "scientificName": "X"})
        client.lookup(1)
        client.lookup(1)
        assert client.session.get.call_count == 1

    @patch("occcube.compendium.time.sleep")
    def test_retries_server_errors(self, mock_sleep, client):
        client.session.get.side_effect = [
            mock_response(503),
            mock_response(429),
            mock_response(200, {"key": 2, "scientificName": "Y"}),
        ]
        assert client.lookup(2).scientific_name == "Y"
        assert client.session.get.call_count == 3
        assert mock_sleep.call_count == 2

    def test_unknown_key(self, client):
        client.session.get.return_value = mock_response(404)
        with pytest.raises(ExternalLookupFailure) as excinfo:
            client.lookup(3)
        assert excinfo.value.key == 3

    @patch("occcube.compendium.time.sleep")
    def test_network_error_after_retries(self, mock_sleep, client):
        client.session.get.side_effect = requests.ConnectionError("down")
        with pytest.raises(ExternalLookupFailure):
            client.lookup(4)
        assert client.session.get.call_count == client.max_retries

    @patch("occcube.compendium.time.sleep")
    def test_max_retries_exceeded(self, mock_sleep, client):
        client.session.get.return_value = mock_response(500)
        with pytest.raises(ExternalLookupFailure, match="max retries"):
            client.lookup(5)
        assert client.session.get.call_count == client.max_retries

    @patch("occcube.compendium.time.sleep")
    def test_no_backoff_after_last_attempt(self, mock_sleep):
        session = MagicMock(spec=requests.Session)
        session.headers = {}
        session.get.return_value = mock_response(503)
        client = GbifTaxonomyLookup(session=session, max_retries=3, base_backoff=2.0)

        with pytest.raises(ExternalLookupFailure, match="max retries"):
            client.lookup(6)
        assert [c.args[0] for c in mock_sleep.call_args_list] == [2.0, 4.0]
