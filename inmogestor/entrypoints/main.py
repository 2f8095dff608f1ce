from __future__ import annotations

import argparse
import faulthandler
import json
import logging
import sys
from pathlib import Path
from typing import Any

from inmogestor.bootstrap.container import AppContainer, build_container
from inmogestor.bootstrap.exception_handler import install_exception_hooks
from inmogestor.bootstrap.logging import configure_logging
from inmogestor.bootstrap.settings import project_root, resolve_log_dir
from inmogestor.core.errors import ImportValidationError
from inmogestor.core.metrics import metrics_registry
from inmogestor.domain.collections import MIRRORED_COLLECTIONS, Collection
from inmogestor.domain.sync_models import ImportPreview
from inmogestor.infrastructure.db import get_connection, get_memory_connection
from inmogestor.infrastructure.local_config import CloudConfigStore
from inmogestor.infrastructure.migrations import discover_migrations, run_migrations

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_NO_CLOUD = 2


def _write_json(payload: dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(payload, ensure_ascii=False, indent=2, default=str) + "\n")


def _run_selfcheck() -> int:
    errors = 0
    migrations_dir = project_root() / "migrations"
    try:
        migrations = discover_migrations(migrations_dir)
        connection = get_memory_connection()
        try:
            run_migrations(connection, migrations_dir)
        finally:
            connection.close()
        logger.info("Migraciones OK: %s", [migration.version for migration in migrations])
    except Exception as exc:  # noqa: BLE001
        logger.exception("Las migraciones no se pueden aplicar: %s", exc)
        errors += 1

    config_store = CloudConfigStore()
    config = config_store.load()
    if config is None:
        logger.warning("Sin config.json de Firestore en %s; la app funcionará en modo local", config_store.config_path)
    elif not config.is_complete:
        logger.error("config.json incompleto: faltan proyecto, credenciales o user_id")
        errors += 1
    elif not Path(config.credentials_path).exists():
        logger.error("No existe el fichero de credenciales: %s", config.credentials_path)
        errors += 1

    if errors:
        logger.error("Selfcheck falló con %s error(es)", errors)
        return EXIT_FAILED
    logger.info("Selfcheck OK.")
    return EXIT_OK


def _confirm_interactively(preview: ImportPreview) -> bool:
    lines = [f"  {key}: {count}" for key, count in preview.counts.items()]
    sys.stdout.write("¿Importar datos?\n" + "\n".join(lines) + "\nEsto reemplazará TODOS los datos actuales. [s/N] ")
    sys.stdout.flush()
    return sys.stdin.readline().strip().lower() in {"s", "si", "sí", "y", "yes"}


def _cmd_sync(container: AppContainer, _args: argparse.Namespace) -> int:
    if container.coordinator is None:
        logger.error("La nube no está configurada")
        return EXIT_NO_CLOUD
    result = container.coordinator.init_cloud(subscribe=False)
    push = container.coordinator.push_now()
    _write_json(
        {
            "pull": {"state": result.state.value, "applied": result.applied, "reason": result.reason},
            "push": {"pushed": push.pushed, "last_sync": push.last_sync, "reason": push.reason},
            "status": container.coordinator.session.status.value,
        }
    )
    return EXIT_OK if container.coordinator.session.last_error is None else EXIT_FAILED


def _cmd_pull(container: AppContainer, args: argparse.Namespace) -> int:
    if container.coordinator is None:
        logger.error("La nube no está configurada")
        return EXIT_NO_CLOUD
    coordinator = container.coordinator
    coordinator.enable_cloud()
    result = coordinator.manual_sync() if args.force else coordinator.sync_from_cloud()
    _write_json(
        {
            "state": result.state.value,
            "applied": result.applied,
            "last_sync": result.last_sync,
            "reason": result.reason,
            "collections": list(result.collections),
        }
    )
    return EXIT_OK if result.reason != "error" else EXIT_FAILED


def _cmd_export(container: AppContainer, args: argparse.Namespace) -> int:
    target = container.backup_service.export_to_file(Path(args.path) if args.path else None)
    sys.stdout.write(f"Backup exportado: {target}\n")
    return EXIT_OK


def _cmd_import(container: AppContainer, args: argparse.Namespace) -> int:
    confirm = (lambda _preview: True) if args.yes else _confirm_interactively
    coordinator = container.coordinator
    if coordinator is not None and not coordinator.session.is_delegated:
        coordinator.enable_cloud()
    try:
        result = container.backup_service.import_from_file(Path(args.path), confirm)
    except ImportValidationError as exc:
        sys.stderr.write(f"Error al importar: {exc}\n")
        return EXIT_FAILED
    if result.imported and coordinator is not None:
        coordinator.push_now()
    _write_json({"imported": result.imported, "counts": result.counts, "reason": result.reason})
    return EXIT_OK if result.imported else EXIT_FAILED


def _cmd_status(container: AppContainer, _args: argparse.Namespace) -> int:
    store = container.local_store
    payload: dict[str, Any] = {
        "cloud": container.cloud_available,
        "last_sync": store.get_last_sync(),
        "counts": {collection.remote_key: len(store.get_raw(collection)) for collection in MIRRORED_COLLECTIONS},
        "activities": len(store.get_raw(Collection.ACTIVITIES)),
        "metrics": metrics_registry.snapshot(),
    }
    if container.role_resolver is not None:
        payload["role"] = container.role_resolver.role.to_dict()
    _write_json(payload)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="inmogestor", description="InmoGestor Pro: almacén local y sincronización")
    parser.add_argument("--selfcheck", action="store_true", help="Valida esquema y configuración sin sincronizar")
    parser.add_argument("--db", default=None, help="Ruta al archivo SQLite")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("sync", help="Pull de arranque y subida del estado local")

    pull = subparsers.add_parser("pull", help="Descarga el documento remoto")
    pull.add_argument("--force", action="store_true", help="Aplica el remoto sin comparar lastSync")

    export = subparsers.add_parser("export", help="Exporta un backup JSON")
    export.add_argument("path", nargs="?", default=None)

    import_parser = subparsers.add_parser("import", help="Importa un backup JSON (destructivo)")
    import_parser.add_argument("path")
    import_parser.add_argument("--yes", action="store_true", help="No pedir confirmación")

    subparsers.add_parser("status", help="Resumen del estado local")
    return parser


_COMMANDS = {
    "sync": _cmd_sync,
    "pull": _cmd_pull,
    "export": _cmd_export,
    "import": _cmd_import,
    "status": _cmd_status,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    log_dir = resolve_log_dir()
    configure_logging(log_dir)
    install_exception_hooks()
    faulthandler.enable()
    logger.info("Log dir: %s", log_dir)
    logger.info("Python: %s", sys.version)

    if args.selfcheck:
        return _run_selfcheck()
    if args.command is None:
        parser.print_help()
        return EXIT_OK

    db_path = Path(args.db) if args.db else None
    container = build_container(lambda: get_connection(db_path))
    try:
        return _COMMANDS[args.command](container, args)
    finally:
        container.close()
