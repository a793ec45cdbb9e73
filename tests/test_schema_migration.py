import pytest
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.pool import StaticPool

from chatbridge.services.schema_migration import OPTIONAL_COLUMNS, ensure_schema, upgrade_message_schema

LEGACY_TABLE = """
CREATE TABLE chat_messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id VARCHAR(100) NOT NULL,
    text TEXT NOT NULL,
    kind VARCHAR(20) NOT NULL,
    correlation_id BIGINT,
    created_at DATETIME NOT NULL
)
"""


@pytest.fixture
def empty_engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    yield engine
    engine.dispose()


def _columns(engine) -> set[str]:
    return {column["name"] for column in inspect(engine).get_columns("chat_messages")}


class TestEnsureSchema:
    def test_creates_table_when_missing(self, empty_engine):
        added = ensure_schema(empty_engine)

        assert added == []
        assert inspect(empty_engine).has_table("chat_messages")
        assert {name for name, _ in OPTIONAL_COLUMNS} <= _columns(empty_engine)

    def test_is_idempotent(self, empty_engine):
        ensure_schema(empty_engine)
        before = _columns(empty_engine)

        for _ in range(3):
            assert ensure_schema(empty_engine) == []

        assert _columns(empty_engine) == before


class TestUpgradeMessageSchema:
    def test_adds_missing_optional_columns(self, empty_engine):
        with empty_engine.begin() as conn:
            conn.execute(text(LEGACY_TABLE))

        added = upgrade_message_schema(empty_engine)

        assert added == [name for name, _ in OPTIONAL_COLUMNS]
        assert {name for name, _ in OPTIONAL_COLUMNS} <= _columns(empty_engine)

    def test_second_upgrade_adds_nothing(self, empty_engine):
        with empty_engine.begin() as conn:
            conn.execute(text(LEGACY_TABLE))

        upgrade_message_schema(empty_engine)
        assert upgrade_message_schema(empty_engine) == []

    def test_legacy_rows_survive(self, empty_engine):
        with empty_engine.begin() as conn:
            conn.execute(text(LEGACY_TABLE))
            conn.execute(
                text(
                    "INSERT INTO chat_messages (session_id, text, kind, created_at) "
                    "VALUES ('chat_juan_a1b2c3', 'old', 'visitor', '2024-01-01 00:00:00')"
                )
            )

        ensure_schema(empty_engine)

        with empty_engine.connect() as conn:
            row = conn.execute(text("SELECT text, is_suspicious FROM chat_messages")).one()
        assert row.text == "old"
        assert not row.is_suspicious

    def test_no_table_no_changes(self, empty_engine):
        assert upgrade_message_schema(empty_engine) == []
