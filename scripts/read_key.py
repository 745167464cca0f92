#!/usr/bin/env python3
"""Read live values through the pytbbind cache.

Binds one device name to an entity id, then reads the given keys the same
way an overlay would. With ``--watch`` the keys stay bound to a printing
sink and are re-rendered on every poll or push invalidation.

Usage
-----
::

    export TB_BASE_URL="https://thingsboard.example.com"
    export TB_TOKEN="eyJhbGciOi..."
    python scripts/read_key.py CTW_TAG 784f394c-42b6-435a-983c-b7beff2784f9 API_BVT01_Flow01 running

Options::

    --scope attribute    Read shared attributes instead of latest telemetry
    --watch SECS         Keep rendering for SECS seconds
    --verbose / -v       Enable debug logging
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

# Allow running from the repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pytbbind import BindingClient, BindingConfig, ReadScope, TbBindError, ViewBinding  # noqa: E402


class _PrintSink:
    def update(self, target: str, value: Any) -> None:
        print(f"[read] {target:<32} {value}")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Read device values through the pytbbind cache.")
    parser.add_argument("device", help="Device display name used for lookups.")
    parser.add_argument("entity_id", help="Backend entity id bound to the device name.")
    parser.add_argument("keys", nargs="+", help="Telemetry or attribute keys to read.")
    parser.add_argument(
        "--scope",
        default="telemetry",
        help="'telemetry' (default) or 'attribute'.",
    )
    parser.add_argument(
        "--watch",
        type=float,
        default=0.0,
        help="Keep re-rendering for this many seconds (0 = read once).",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


async def _run(args: argparse.Namespace) -> int:
    scope = ReadScope.parse(args.scope)
    bindings = [{"entityName": args.device, "entityId": args.entity_id}]
    config = BindingConfig.from_env(device_name=args.device, push_enabled=args.watch > 0)

    if args.watch <= 0:
        async with BindingClient(config, bindings=bindings) as client:
            await client.initialize()
            values = await asyncio.gather(*(client.get(args.device, scope, key) for key in args.keys))
            for key, value in zip(args.keys, values, strict=True):
                print(f"[read] {key:<32} {'--' if value is None else value}")
        return 0 if all(value is not None for value in values) else 1

    views = [ViewBinding(target=key, key=key, scope=scope) for key in args.keys]
    async with BindingClient(config, bindings=bindings, views=views, view_sink=_PrintSink()) as client:
        await client.initialize()
        await asyncio.sleep(args.watch)
    return 0


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_run(args))
    except TbBindError as exc:
        print(f"[read] Failed: {exc}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(_main())
