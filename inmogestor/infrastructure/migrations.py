from __future__ import annotations

import argparse
import hashlib
import logging
import sqlite3
import sys
from dataclasses import dataclass
from pathlib import Path

from inmogestor.bootstrap.logging import configure_logging
from inmogestor.bootstrap.settings import project_root, resolve_log_dir
from inmogestor.core.errors import PersistenceError
from inmogestor.domain.services import now_iso
from inmogestor.infrastructure.db import default_db_path, get_connection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Migration:
    version: int
    name: str
    up_sql: Path
    down_sql: Path

    @property
    def checksum(self) -> str:
        return hashlib.sha256(self.up_sql.read_bytes()).hexdigest()


def discover_migrations(migrations_dir: Path) -> list[Migration]:
    """Pares `NNN_nombre.up.sql` / `NNN_nombre.down.sql` ordenados por versión."""
    found: list[Migration] = []
    for up_file in sorted(migrations_dir.glob("*.up.sql")):
        stem = up_file.name[: -len(".up.sql")]
        version_text, name = stem.split("_", maxsplit=1)
        down_file = migrations_dir / f"{stem}.down.sql"
        if not down_file.exists():
            raise FileNotFoundError(f"Falta la migración down de {up_file.name}: {down_file}")
        found.append(Migration(version=int(version_text), name=name, up_sql=up_file, down_sql=down_file))
    return found


class MigrationRunner:
    def __init__(self, connection: sqlite3.Connection, migrations_dir: Path | None = None) -> None:
        self.connection = connection
        self.connection.row_factory = sqlite3.Row
        self.migrations = discover_migrations(migrations_dir or project_root() / "migrations")

    def apply_all(self) -> list[int]:
        applied = self._applied_checksums()
        newly_applied: list[int] = []
        for migration in self.migrations:
            stored = applied.get(migration.version)
            if stored is None:
                self._apply(migration)
                newly_applied.append(migration.version)
            elif stored != migration.checksum:
                raise PersistenceError(
                    f"La migración {migration.version:03d}_{migration.name} cambió después de aplicarse"
                )
        return newly_applied

    def rollback(self, steps: int = 1) -> list[int]:
        self._ensure_history_table()
        rows = self.connection.execute(
            "SELECT version FROM schema_migrations ORDER BY version DESC LIMIT ?", (steps,)
        ).fetchall()
        by_version = {migration.version: migration for migration in self.migrations}
        reverted: list[int] = []
        for row in rows:
            self._revert(by_version[row["version"]])
            reverted.append(row["version"])
        return reverted

    def status(self) -> list[dict[str, object]]:
        applied = self._applied_checksums()
        return [
            {
                "version": migration.version,
                "name": migration.name,
                "applied": migration.version in applied,
                "modified": migration.version in applied and applied[migration.version] != migration.checksum,
            }
            for migration in self.migrations
        ]

    def _ensure_history_table(self) -> None:
        with self.connection:
            self.connection.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    checksum TEXT NOT NULL,
                    applied_at TEXT NOT NULL
                )
                """
            )

    def _applied_checksums(self) -> dict[int, str]:
        self._ensure_history_table()
        rows = self.connection.execute("SELECT version, checksum FROM schema_migrations").fetchall()
        return {row["version"]: row["checksum"] for row in rows}

    def _apply(self, migration: Migration) -> None:
        script = migration.up_sql.read_text(encoding="utf-8")
        with self.connection:
            if script.strip():
                self.connection.executescript(script)
            self.connection.execute(
                "INSERT INTO schema_migrations (version, name, checksum, applied_at) VALUES (?, ?, ?, ?)",
                (migration.version, migration.name, migration.checksum, now_iso()),
            )
            self.connection.execute(f"PRAGMA user_version = {migration.version}")
        logger.info("Migración aplicada %03d_%s", migration.version, migration.name)

    def _revert(self, migration: Migration) -> None:
        script = migration.down_sql.read_text(encoding="utf-8")
        with self.connection:
            if script.strip():
                self.connection.executescript(script)
            self.connection.execute("DELETE FROM schema_migrations WHERE version = ?", (migration.version,))
            current = self.connection.execute(
                "SELECT COALESCE(MAX(version), 0) AS version FROM schema_migrations"
            ).fetchone()["version"]
            self.connection.execute(f"PRAGMA user_version = {current}")
        logger.info("Migración revertida %03d_%s", migration.version, migration.name)


def run_migrations(connection: sqlite3.Connection, migrations_dir: Path | None = None) -> list[int]:
    return MigrationRunner(connection, migrations_dir).apply_all()


def build_cli() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Gestiona el esquema SQLite local de InmoGestor")
    parser.add_argument("command", choices=["up", "down", "status"], help="Operación a ejecutar")
    parser.add_argument("--db", default=str(default_db_path()), help="Ruta al archivo SQLite")
    parser.add_argument("--steps", type=int, default=1, help="Número de migraciones a revertir")
    return parser


def main(argv: list[str] | None = None) -> int:
    configure_logging(resolve_log_dir())
    args = build_cli().parse_args(argv)

    connection = get_connection(Path(args.db))
    try:
        runner = MigrationRunner(connection)
        if args.command == "up":
            versions = runner.apply_all()
            logger.info("Migraciones aplicadas", extra={"extra": {"command": "up", "versions": versions}})
        elif args.command == "down":
            versions = runner.rollback(args.steps)
            logger.info("Migraciones revertidas", extra={"extra": {"command": "down", "versions": versions}})
        else:
            for item in runner.status():
                marker = "[x]" if item["applied"] else "[ ]"
                if item["modified"]:
                    marker = "[!]"
                sys.stdout.write(f"{marker} {item['version']:03d} {item['name']}\n")
    finally:
        connection.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
