"""Tests for column matching and schema evolution."""

from __future__ import annotations

import pytest

from tabletalk.core.types import EvolutionOptions, MatchType
from tabletalk.exceptions import ConflictError
from tabletalk.schema.engine import SchemaStore
from tabletalk.schema.evolution import (
    SchemaEvolutionMatcher,
    levenshtein_distance,
    name_similarity,
)
from tabletalk.storage.rows import RowStore


@pytest.fixture
def schema_id(schema_store: SchemaStore) -> str:
    return schema_store.create_schema(
        "customers", [{"name": "customer_id"}, {"name": "email"}, {"name": "city"}]
    ).id


@pytest.fixture
def matcher(schema_store: SchemaStore, rows: RowStore) -> SchemaEvolutionMatcher:
    return SchemaEvolutionMatcher(schema_store, rows)


class TestSimilarity:
    @pytest.mark.parametrize(
        ("a", "b", "distance"),
        [("", "", 0), ("abc", "", 3), ("kitten", "sitting", 3), ("email", "e_mail", 1)],
    )
    def test_levenshtein(self, a: str, b: str, distance: int) -> None:
        assert levenshtein_distance(a, b) == distance
        assert levenshtein_distance(b, a) == distance

    def test_name_similarity(self) -> None:
        assert name_similarity("Email", "email") == 1.0
        assert name_similarity("", "") == 1.0
        assert name_similarity("abc", "xyz") == 0.0
        assert name_similarity("email", "e_mail") == pytest.approx(5 / 6)


class TestIdentify:
    def test_classifies_each_column(
        self, matcher: SchemaEvolutionMatcher, schema_id: str
    ) -> None:
        result = matcher.identify(
            [
                {"name": "Email", "type": "string"},
                {"name": "citi", "type": "string"},
                {"name": "cust_id", "type": "string"},
                {"name": "phone_number", "type": "string"},
            ],
            schema_id,
        )

        by_column = {m.file_column: m for m in result.mappings}
        assert by_column["Email"].match_type == MatchType.EXACT
        assert by_column["Email"].schema_column == "email"
        assert by_column["Email"].confidence == 1.0

        assert by_column["citi"].match_type == MatchType.FUZZY
        assert by_column["citi"].schema_column == "city"
        assert by_column["citi"].confidence == pytest.approx(0.75)

        assert by_column["cust_id"].match_type == MatchType.NONE
        assert by_column["cust_id"].schema_column is None
        assert by_column["phone_number"].match_type == MatchType.NONE

        assert [c.name for c in result.new_columns] == ["cust_id", "phone_number"]

    def test_threshold_is_exclusive(self, schema_store: SchemaStore, schema_id: str) -> None:
        strict = SchemaEvolutionMatcher(schema_store, threshold=0.75)
        mapping = strict.match_column("citi", ["city"])
        assert mapping.match_type == MatchType.NONE

    def test_empty_schema_means_all_new(
        self, matcher: SchemaEvolutionMatcher, schema_store: SchemaStore
    ) -> None:
        empty = schema_store.create_schema("empty").id
        result = matcher.identify([{"name": "a"}], empty)

        assert result.mappings[0].match_type == MatchType.NONE
        assert result.mappings[0].confidence == 0.0


class TestEvolve:
    def test_new_version(self, matcher: SchemaEvolutionMatcher, schema_id: str) -> None:
        result = matcher.evolve(schema_id, [{"name": "phone", "type": "string"}], created_by="u1")

        assert result.success
        assert result.version == 2
        assert result.added_columns == ["phone"]
        assert result.message == "Created version 2 with 1 new columns."

    def test_in_place(self, matcher: SchemaEvolutionMatcher, schema_id: str) -> None:
        result = matcher.evolve(
            schema_id,
            [{"name": "phone"}],
            EvolutionOptions(create_new_version=False),
        )

        assert result.version == 1
        assert result.message == "Added 1 columns to version 1."

    def test_reapplying_is_noop(
        self, matcher: SchemaEvolutionMatcher, schema_store: SchemaStore, schema_id: str
    ) -> None:
        matcher.evolve(schema_id, [{"name": "phone"}])
        again = matcher.evolve(schema_id, [{"name": "Phone"}])

        assert again.success
        assert again.added_columns == []
        assert again.skipped_columns == ["Phone"]
        assert again.version == 2
        assert schema_store.get_schema(schema_id).revision == 1

    def test_types_mapped_from_file_types(
        self, matcher: SchemaEvolutionMatcher, schema_store: SchemaStore, schema_id: str
    ) -> None:
        matcher.evolve(
            schema_id,
            [
                {"name": "amount", "type": "number"},
                {"name": "active", "type": "bool"},
                {"name": "joined", "type": "date"},
                {"name": "notes", "type": "mystery"},
            ],
        )
        types = {c.name: c.type for c in schema_store.get_schema(schema_id).columns}

        assert types["amount"] == "numeric"
        assert types["active"] == "boolean"
        assert types["joined"] == "timestamp"
        assert types["notes"] == "text"

    def test_nothing_accepted(self, matcher: SchemaEvolutionMatcher, schema_id: str) -> None:
        result = matcher.evolve(schema_id, [])

        assert result.success
        assert result.version == 1
        assert result.message == "No columns to add."

    def test_stale_expected_revision(
        self, matcher: SchemaEvolutionMatcher, schema_id: str
    ) -> None:
        matcher.evolve(schema_id, [{"name": "phone"}])

        with pytest.raises(ConflictError):
            matcher.evolve(schema_id, [{"name": "fax"}], expected_revision=0)

    def test_migrates_bound_files(
        self, matcher: SchemaEvolutionMatcher, rows: RowStore, schema_id: str
    ) -> None:
        rows.create_file_table("crm.csv", "alice", [{"name": "email"}], schema_id=schema_id)
        rows.insert_rows("crm.csv", [{"email": "a@x.io"}, {"email": "b@x.io"}])
        rows.create_file_table("other.csv", "alice", [{"name": "email"}])

        result = matcher.evolve(
            schema_id,
            [{"name": "score", "type": "number"}, {"name": "tier"}],
            EvolutionOptions(migrate_data=True, update_existing_records=True),
        )

        assert result.migrated_files == ["crm.csv"]
        assert result.updated_rows == 2
        assert "Migrated 1 files." in result.message
        assert [c.name for c in rows.get_file("crm.csv").columns] == ["email", "score", "tier"]
        assert [c.name for c in rows.get_file("other.csv").columns] == ["email"]
        assert {r["score"] for r in rows.sample_rows("crm.csv")} == {0}
        assert {r["tier"] for r in rows.sample_rows("crm.csv")} == {None}

    def test_migration_without_backfill_leaves_nulls(
        self, matcher: SchemaEvolutionMatcher, rows: RowStore, schema_id: str
    ) -> None:
        rows.create_file_table("crm.csv", "alice", [{"name": "email"}], schema_id=schema_id)
        rows.insert_rows("crm.csv", [{"email": "a@x.io"}])

        result = matcher.evolve(
            schema_id, [{"name": "score", "type": "number"}], EvolutionOptions(migrate_data=True)
        )

        assert result.updated_rows == 0
        assert rows.sample_rows("crm.csv") == [{"email": "a@x.io", "score": None}]

    def test_reapplying_migrates_files_still_missing_columns(
        self,
        matcher: SchemaEvolutionMatcher,
        rows: RowStore,
        schema_store: SchemaStore,
        schema_id: str,
    ) -> None:
        rows.create_file_table("crm.csv", "alice", [{"name": "email"}], schema_id=schema_id)
        matcher.evolve(
            schema_id, [{"name": "score", "type": "number"}], EvolutionOptions(migrate_data=True)
        )
        rows.create_file_table("late.csv", "alice", [{"name": "email"}], schema_id=schema_id)
        rows.insert_rows("late.csv", [{"email": "c@x.io"}])

        plain = matcher.evolve(schema_id, [{"name": "score", "type": "number"}])
        assert plain.message == "All columns already exist in the schema; nothing changed."
        assert plain.migrated_files == []

        again = matcher.evolve(
            schema_id,
            [{"name": "Score", "type": "number"}],
            EvolutionOptions(migrate_data=True, update_existing_records=True),
        )

        assert again.skipped_columns == ["Score"]
        assert again.migrated_files == ["late.csv"]
        assert again.updated_rows == 1
        assert again.message == "All columns already exist in the schema; migrated 1 files."
        assert [c.name for c in rows.get_file("late.csv").columns] == ["email", "score"]
        assert [c.type for c in rows.get_file("late.csv").columns] == ["text", "numeric"]
        assert schema_store.get_schema(schema_id).revision == 1


class TestRollback:
    def test_rollback(self, matcher: SchemaEvolutionMatcher, schema_id: str) -> None:
        matcher.evolve(schema_id, [{"name": "phone"}])
        result = matcher.rollback(schema_id, 1)

        assert result.version == 3
        assert result.message == "Created version 3 from version 1."
