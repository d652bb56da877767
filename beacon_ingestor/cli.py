import asyncio
import argparse
import signal
from rich.console import Console
from rich.table import Table

from beacon_ingestor.services.beacon_api import BeaconAPI
from beacon_ingestor.services.storage_factory import create_storage
from beacon_ingestor.services.sync_engine import SyncEngine
from beacon_ingestor.utils.logger import setup_logger, logger
from beacon_ingestor.config import config

def create_parser():
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(description="Beacon Chain Ingestor")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Poll the beacon node and sync the store continuously")
    run_parser.add_argument("--poll-interval-ms", type=int, default=config.POLL_INTERVAL_MS,
                            help=f"Cycle period in milliseconds (default: {config.POLL_INTERVAL_MS})")

    subparsers.add_parser("once", help="Run a single sync cycle and exit")
    subparsers.add_parser("cleanup", help="Delete expired rows from every table")
    subparsers.add_parser("init-db", help="Create the entity tables if missing")
    subparsers.add_parser("status", help="Show what the store currently holds")

    return parser

async def main(argv=None):
    """Main CLI entry point."""
    setup_logger()
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return

    try:
        if args.command == "run":
            await handle_run_command(args)
        elif args.command == "once":
            await handle_once_command()
        elif args.command == "cleanup":
            handle_cleanup_command()
        elif args.command == "init-db":
            handle_init_db_command()
        elif args.command == "status":
            handle_status_command()
        else:
            parser.print_help()

    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error("Application error", error=str(e))
        raise

async def handle_run_command(args):
    """Run the sync engine until SIGINT/SIGTERM."""
    logger.info("Starting Beacon Chain Ingestor",
                beacon_node_url=config.BEACON_NODE_URL,
                storage_backend=config.STORAGE_BACKEND,
                poll_interval_ms=args.poll_interval_ms)

    engine = SyncEngine(BeaconAPI(), create_storage(), poll_interval_ms=args.poll_interval_ms)
    stop_requested = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _request_stop, sig, stop_requested)

    await engine.start()
    await stop_requested.wait()
    await engine.stop()

def _request_stop(sig, stop_requested: asyncio.Event):
    logger.info(f"Received {signal.Signals(sig).name}, shutting down gracefully...")
    stop_requested.set()

async def handle_once_command():
    """Run exactly one cycle."""
    store = create_storage()
    store.connect()
    try:
        async with BeaconAPI() as beacon_api:
            engine = SyncEngine(beacon_api, store)
            report = await engine.run_cycle()
    finally:
        store.close()

    if report.aborted:
        print("Cycle aborted: head discovery failed")
        return

    print(f"Head slot:           {report.head_slot}")
    print(f"Slots proposed:      {report.slots_proposed}")
    print(f"Slots missed:        {report.slots_missed}")
    print(f"Slots failed:        {report.slots_failed or '-'}")
    print(f"Validator window:    {report.window_start}-{report.window_end}")
    print(f"Validators written:  {report.validators_written}")
    print(f"Epoch:               {report.epoch}")
    print(f"Rows cleaned:        {report.rows_cleaned}")
    if report.failed_steps:
        print(f"Failed steps:        {', '.join(report.failed_steps)}")

def handle_cleanup_command():
    """Run the expiry sweep once."""
    store = create_storage()
    store.connect()
    try:
        removed = store.cleanup_expired()
    finally:
        store.close()
    logger.info(f"Cleaned up {removed} expired records")

def handle_init_db_command():
    store = create_storage()
    store.connect()
    try:
        store.create_schema()
    finally:
        store.close()

def handle_status_command():
    """Print row counts and the latest slot/epoch held by the store."""
    store = create_storage()
    store.connect()
    try:
        stats = store.get_stats()
    finally:
        store.close()

    table = Table(title=f"Beacon store ({config.STORAGE_BACKEND})")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right", style="green")
    for key, value in stats.items():
        table.add_row(key.replace("_", " "), "-" if value is None else f"{value:,}")

    Console().print(table)
