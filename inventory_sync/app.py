# app.py
# Description: Headless entry point: run sync cycles, inspect sync state and manage backups
#
# Imports
import argparse
import asyncio
import json
from dataclasses import asdict
import sys
from pathlib import Path
from typing import Optional, List, Dict, Any
#
# 3rd-Party Imports
from loguru import logger
#
# Local Imports
from inventory_sync.config import load_settings, get_sync_config, get_database_path, CLI_APP_CLIENT_ID
from inventory_sync.DB.Inventory_DB import InventoryDB, InventoryDBError, InputError
from inventory_sync.Logging_Config import configure_logging
from inventory_sync.Sync.Sync_Client import ClientSyncEngine, SyncResult
from inventory_sync.Sync.sync_exceptions import SyncError
#
########################################################################################################################
#
# Functions:

def build_engine(settings: Dict[str, Any], db_path: Optional[str] = None) -> ClientSyncEngine:
    """Opens the local database and creates a sync engine from the [database]/[sync] settings."""
    db = InventoryDB(db_path or get_database_path(settings),
                     client_id=settings.get("database", {}).get("client_id") or CLI_APP_CLIENT_ID)
    sync_section = settings.get("sync", {})
    return ClientSyncEngine(
        db,
        batch_size=int(sync_section.get("batch_size", 100)),
        request_timeout=float(sync_section.get("request_timeout", 30.0)),
    )


async def _prepare(engine: ClientSyncEngine, settings: Dict[str, Any]):
    await engine.initialize()
    file_config = get_sync_config(settings)
    # Settings file (or environment) takes precedence over what was persisted in the database
    if file_config.is_configured:
        await engine.configure(file_config)


def _print_result(result: SyncResult):
    print(json.dumps(result.to_dict(), indent=2, default=str))


async def _run_sync(engine: ClientSyncEngine, settings: Dict[str, Any]) -> int:
    try:
        await _prepare(engine, settings)
        await engine.stop_auto_sync()
        result = await engine.perform_full_sync()
        _print_result(result)
        return 0 if result.success else 1
    finally:
        await engine.close()


async def _run_watch(engine: ClientSyncEngine, settings: Dict[str, Any]) -> int:
    try:
        await _prepare(engine, settings)
        if not engine.session.is_configured:
            logger.error("Sync is not configured; set [sync] api_base_url and api_key.")
            return 2
        if not engine.auto_sync_running:
            engine.start_auto_sync()
        result = await engine.perform_full_sync()
        _print_result(result)
        while True:
            await asyncio.sleep(3600)
    finally:
        await engine.close()


async def _run_status(engine: ClientSyncEngine, settings: Dict[str, Any]) -> int:
    try:
        await _prepare(engine, settings)
        await engine.stop_auto_sync()
        status = engine.get_sync_status()
        print(json.dumps(asdict(status), indent=2, default=str))
        return 0
    finally:
        await engine.close()


async def _run_test_connection(engine: ClientSyncEngine, settings: Dict[str, Any]) -> int:
    try:
        await _prepare(engine, settings)
        await engine.stop_auto_sync()
        ok = await engine.test_connection()
        print("Connection OK" if ok else "Connection failed")
        return 0 if ok else 1
    finally:
        await engine.close()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="inventory-sync",
        description="Offline-first inventory store with remote sync",
    )
    parser.add_argument("--config", help="Path to config.toml (default: ~/.config/inventory_sync/config.toml)")
    parser.add_argument("--db", help="Path to the local SQLite database")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("sync", help="Run one full sync cycle and print the report")
    subparsers.add_parser("watch", help="Sync now, then keep syncing on the configured interval")
    subparsers.add_parser("status", help="Show sync state and record counts")
    subparsers.add_parser("test-connection", help="Check that the remote API is reachable")
    subparsers.add_parser("retry-failed", help="Queue failed records for the next sync")
    subparsers.add_parser("seed-categories", help="Insert the default categories")
    export_parser = subparsers.add_parser("export", help="Write a JSON backup of all records")
    export_parser.add_argument("output", help="Backup file to write")
    import_parser = subparsers.add_parser("import", help="Restore records from a JSON backup")
    import_parser.add_argument("input", help="Backup file to read")
    args = parser.parse_args(argv)

    settings = load_settings(config_path=args.config)
    configure_logging(settings)
    try:
        engine = build_engine(settings, args.db)
    except InventoryDBError as e:
        logger.error(f"Could not open the local database: {e}")
        return 2

    try:
        if args.command == "sync":
            return asyncio.run(_run_sync(engine, settings))
        if args.command == "watch":
            return asyncio.run(_run_watch(engine, settings))
        if args.command == "status":
            return asyncio.run(_run_status(engine, settings))
        if args.command == "test-connection":
            return asyncio.run(_run_test_connection(engine, settings))
        if args.command == "retry-failed":
            print(f"Re-queued {engine.retry_failed()} record(s)")
        elif args.command == "seed-categories":
            print(f"Inserted {engine.db.insert_default_categories()} categor(y/ies)")
        elif args.command == "export":
            Path(args.output).write_text(engine.db.export_data(), encoding="utf-8")
            print(f"Backup written to {args.output}")
        elif args.command == "import":
            count = engine.db.import_data(Path(args.input).read_text(encoding="utf-8"))
            print(f"Imported {count} record(s)")
        return 0
    except KeyboardInterrupt:
        logger.info("Interrupted.")
        return 130
    except (SyncError, InventoryDBError, InputError, OSError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    finally:
        engine.db.close_connection()


if __name__ == "__main__":
    sys.exit(main())

#
# End of app.py
########################################################################################################################
