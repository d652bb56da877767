#!/usr/bin/env python3
"""
Beacon Chain Ingestor
Polls a beacon node and keeps a time-bounded copy of slots, validators and epochs.
"""
import asyncio
from beacon_ingestor.cli import main

def run():
    """Console script entry point."""
    asyncio.run(main())

if __name__ == "__main__":
    run()
