from nowplaying.shared.migrations.runner import VERSIONS_DIR, discover


def test_versions_sort_numerically(tmp_path):
    for name in ("010_later.sql", "002_second.sql", "001_first.sql", "notes.sql"):
        (tmp_path / name).write_text("SELECT 1;")
    (tmp_path / "README.md").write_text("not sql")

    assert [m.version for m in discover(tmp_path)] == ["001_first", "002_second", "010_later"]


def test_bundled_schema_defines_every_table():
    migrations = discover(VERSIONS_DIR)
    assert migrations[0].version == "000_initial_schema"

    sql = migrations[0].path.read_text(encoding="utf-8")
    for table in ("users", "provider_links", "linking_attempts", "sessions"):
        assert f"CREATE TABLE IF NOT EXISTS {table}" in sql


def test_fingerprint_migration_backfills_before_constraint():
    migrations = {m.version: m for m in discover(VERSIONS_DIR)}
    sql = migrations["001_provider_token_fingerprint"].path.read_text(encoding="utf-8")

    assert sql.index("UPDATE provider_links") < sql.index("SET NOT NULL")
