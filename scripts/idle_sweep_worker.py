from __future__ import annotations

import argparse
import asyncio

from agentdesk.core.logging import configure_logging
from agentdesk.services.idle_sweep import run_idle_sweep_loop, sweep_idle_conversations


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Resolve conversations that went idle")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    return parser


async def _main(once: bool) -> None:
    # Dedicated process so API replicas can run with idle_sweep_enabled=false.
    configure_logging()
    if once:
        result = await sweep_idle_conversations()
        print(f"scanned={result.scanned} resolved={len(result.resolved)} skipped={result.skipped} failed={result.failed}")
        return
    await run_idle_sweep_loop()


if __name__ == "__main__":
    asyncio.run(_main(_build_parser().parse_args().once))
