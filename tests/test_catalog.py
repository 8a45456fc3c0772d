"""
Tests for catalog snapshots, live introspection and join path finding.
"""

import pytest
from sqlalchemy import create_engine

from bizsql.sql.catalog.introspect import introspect_catalog
from bizsql.sql.catalog.snapshot import SnapshotCatalog
from bizsql.sql.graph.path_finder import JoinPathFinder

SNAPSHOT = {
    "version": "7",
    "tables": [
        {"name": "tbl_Countries", "columns": [{"name": "CountryID", "is_key": True}, {"name": "CountryName"}]},
        {"name": "tbl_Players", "schema": "crm", "columns": [
            {"name": "PlayerID", "is_key": True},
            {"name": "CountryID", "is_key": True, "concept": "country"},
            {"name": "CreatedBy"},
        ]},
    ],
    "foreign_keys": [
        {"from_table": "TBL_PLAYERS", "from_column": "CountryID", "to_table": "tbl_countries", "to_column": "CountryID"},
        {"from_table": "tbl_Players", "from_column": "CreatedBy", "to_table": "tbl_Users", "to_column": "UserID"},
    ],
}


class TestSnapshot:
    def test_relationship_names_are_canonicalized(self):
        catalog = SnapshotCatalog.from_dict(SNAPSHOT)
        rel, = catalog.all_foreign_keys()
        assert (rel.from_table, rel.to_table) == ("tbl_Players", "tbl_Countries")

    def test_audit_column_relationships_are_dropped(self):
        catalog = SnapshotCatalog.from_dict(SNAPSHOT)
        assert all(r.from_column != "CreatedBy" for r in catalog.all_foreign_keys())

    def test_lookups_are_case_insensitive(self):
        catalog = SnapshotCatalog.from_dict(SNAPSHOT)
        assert catalog.get_table("TBL_PLAYERS").name == "tbl_Players"
        assert catalog.get_table("tbl_Players").get_column("countryid").concept == "country"
        assert catalog.has_table("tbl_countries")
        assert catalog.get_table("tbl_Missing") is None
        assert len(catalog.get_foreign_keys("tbl_COUNTRIES")) == 1

    def test_list_tables(self):
        catalog = SnapshotCatalog.from_dict(SNAPSHOT)
        assert [t.name for t in catalog.list_tables()] == ["tbl_Countries", "tbl_Players"]
        assert [t.name for t in catalog.list_tables("CRM")] == ["tbl_Players"]
        assert catalog.version == "7"

    def test_artifact_snapshot(self, catalog):
        assert catalog.version == "2024.06.1"
        assert len(catalog.list_tables()) == 4
        assert len(catalog.all_foreign_keys()) == 3


class TestJoinPathFinder:
    @pytest.fixture
    def finder(self, catalog):
        return JoinPathFinder(catalog.all_foreign_keys())

    def test_direct_relationship(self, finder):
        path = finder.find_shortest_path("tbl_Countries", "tbl_Daily_actions_players")
        assert [r.render() for r in path] == ["tbl_Daily_actions_players.CountryID = tbl_Countries.CountryID"]
        assert finder.find_bridge("tbl_Countries", "tbl_Daily_actions_players") is None

    def test_bridge_table(self, finder):
        """Daily actions reach countries only through the player table"""
        assert finder.find_bridge("tbl_Daily_actions", "tbl_Countries") == "tbl_Daily_actions_players"
        path = finder.find_shortest_path("tbl_Daily_actions", "tbl_Countries")
        assert " → " in finder.get_path_description(path)

    def test_same_table_and_missing_path(self, finder):
        assert finder.find_shortest_path("tbl_Countries", "tbl_Countries") == []
        assert finder.find_shortest_path("tbl_Countries", "tbl_Unknown") is None
        assert finder.find_shortest_path("tbl_Daily_actions", "tbl_Countries", max_hops=1) is None

    def test_direct_relationships_both_directions(self, finder):
        assert finder.direct_relationships("tbl_Daily_actions_players", "tbl_Daily_actions") == \
            finder.direct_relationships("tbl_Daily_actions", "tbl_Daily_actions_players")


class TestIntrospection:
    @pytest.fixture
    def engine(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'casino.db'}")
        with engine.begin() as conn:
            conn.exec_driver_sql(
                "CREATE TABLE tbl_Countries (CountryID INTEGER PRIMARY KEY, CountryName TEXT)"
            )
            conn.exec_driver_sql(
                "CREATE TABLE tbl_Players (PlayerID INTEGER PRIMARY KEY, Username TEXT, "
                "CountryID INTEGER REFERENCES tbl_Countries(CountryID))"
            )
        yield engine
        engine.dispose()

    def test_snapshot_from_live_database(self, engine):
        snapshot = introspect_catalog(
            engine,
            business_metadata={"tbl_Players": {
                "purpose": "One row per player",
                "columns": {"CountryID": {"concept": "country"}},
            }},
            version="test-1",
        )

        assert snapshot["version"] == "test-1"
        assert [t["name"] for t in snapshot["tables"]] == ["tbl_Countries", "tbl_Players"]
        assert snapshot["foreign_keys"] == [{
            "from_table": "tbl_Players", "from_column": "CountryID",
            "to_table": "tbl_Countries", "to_column": "CountryID",
        }]

        catalog = SnapshotCatalog.from_dict(snapshot)
        players = catalog.get_table("tbl_Players")
        assert players.business_purpose == "One row per player"
        assert players.get_column("CountryID").is_key
        assert players.get_column("CountryID").concept == "country"
        assert not players.get_column("Username").is_key
