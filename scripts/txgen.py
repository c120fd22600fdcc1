from __future__ import annotations

import argparse
import asyncio
import json
import logging
import re
import signal
import sys
from pathlib import Path
from typing import Any, List


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from generator.config import load_settings  # noqa: E402
from generator.logs import configure_logging  # noqa: E402
from generator.service import TxGenerator  # noqa: E402

_KEY_RE = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")

log = logging.getLogger("txgen.cli")


def _read_keys(path: Path) -> List[str]:
    """One key per line; for CSV-ish lines the first field that looks like a key wins."""
    keys: List[str] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        for field in re.split(r"[,;\t ]+", line.strip()):
            if _KEY_RE.match(field):
                keys.append(field)
                break
    return keys


def _print(obj: Any) -> None:
    print(json.dumps(obj, indent=2, default=str))


async def _generate(gen: TxGenerator, args: argparse.Namespace) -> int:
    wallets = await gen.generate_wallets(args.count)
    log.info("wallet pool size: %d", len(wallets))
    return 0


async def _import(gen: TxGenerator, args: argparse.Namespace) -> int:
    keys = _read_keys(Path(args.file))
    if not keys:
        log.error("no private keys found in %s", args.file)
        return 1
    log.warning("replacing the wallet pool with %d imported keys", len(keys))
    wallets = await gen.import_wallets(keys)
    log.info("imported %d wallets", len(wallets))
    return 0


async def _check_balances(gen: TxGenerator, args: argparse.Namespace) -> int:
    ok, errors = await gen.refresh_balances()
    for w in await gen.get_all_wallets():
        print(f"{w.index:>4}  {w.address}  {w.public_dict()['balance_fmt']}")
    _print(await gen.ctx.ledger.wallet_stats())
    return 0 if not errors else 2


async def _distribute(gen: TxGenerator, args: argparse.Namespace) -> int:
    result = await gen.distribute(args.amount, args.mode, two_hop=args.two_hop)
    _print(result.to_dict())
    return 0 if result.success else 2


async def _auto_fund(gen: TxGenerator, args: argparse.Namespace) -> int:
    if args.loop:
        if not gen.enable_auto_fund():
            return 1
        await _wait_for_signal()
        await gen.disable_auto_fund()
        return 0
    check = await gen.check_auto_fund_needed()
    log.info(
        "%d/%d wallets low (%.1f%%), needed=%s",
        check.low_balance_count,
        check.total_wallets,
        check.percentage,
        check.needed,
    )
    result = await gen.execute_auto_fund()
    if result is None:
        return 0
    _print(result.to_dict())
    return 0 if result.success else 2


async def _wait_for_signal() -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            pass
    await stop.wait()


async def _supervise(gen: TxGenerator, stats_every_s: float) -> None:
    while True:
        await asyncio.sleep(stats_every_s)
        try:
            await gen.update_daily_stats()
            live = await gen.get_live_stats()
        except Exception as exc:
            log.error("stats update failed: %s", exc)
            continue
        tx = live["transactions"]
        log.info(
            "instances=%d tx total=%d ok=%d failed=%d pending=%d",
            live["instances"]["running"],
            tx["total"],
            tx["successful"],
            tx["failed"],
            tx["pending"],
        )


async def _run(gen: TxGenerator, args: argparse.Namespace) -> int:
    started = await gen.set_instance_count(args.instances)
    log.info("running %d instances (ctrl-c to stop)", started)
    if args.auto_fund:
        gen.enable_auto_fund()
    supervisor = asyncio.create_task(_supervise(gen, args.stats_every))
    try:
        await _wait_for_signal()
    finally:
        supervisor.cancel()
    log.info("shutting down")
    return 0


async def _stats(gen: TxGenerator, args: argparse.Namespace) -> int:
    if args.days:
        _print([d.to_dict() for d in await gen.get_historical_stats(args.days)])
    else:
        _print(await gen.get_live_stats())
    return 0


COMMANDS = {
    "generate-wallets": _generate,
    "import-wallets": _import,
    "check-balances": _check_balances,
    "distribute": _distribute,
    "auto-fund": _auto_fund,
    "run": _run,
    "stats": _stats,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="synthetic transaction generator")
    parser.add_argument("--config", type=str, default="", help="settings JSON (default: $TXGEN_CONFIG)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("generate-wallets", help="top the wallet pool up to COUNT wallets")
    p.add_argument("count", type=int)

    p = sub.add_parser("import-wallets", help="replace the pool with keys from a file")
    p.add_argument("file", type=str)

    sub.add_parser("check-balances", help="refresh cached balances from the chain")

    p = sub.add_parser("distribute", help="fund the pool from the master wallet")
    p.add_argument("amount", type=str, help="total amount in tokens")
    p.add_argument("--mode", default="equal", choices=["equal", "random"])
    p.add_argument("--two-hop", action="store_true", help="route through a random intermediary wallet")

    p = sub.add_parser("auto-fund", help="top up low wallets once, or keep doing it")
    p.add_argument("--loop", action="store_true", help="run the auto-fund loop until ctrl-c")

    p = sub.add_parser("run", help="start N worker instances and supervise them")
    p.add_argument("--instances", type=int, default=1)
    p.add_argument("--auto-fund", action="store_true")
    p.add_argument("--stats-every", type=float, default=60.0, help="seconds between stats updates")

    p = sub.add_parser("stats", help="print live stats, or daily stats with --days")
    p.add_argument("--days", type=int, default=0)
    return parser


async def _main(args: argparse.Namespace) -> int:
    settings = load_settings(args.config or None)
    configure_logging(Path(settings.log_dir), "txgen")
    gen = TxGenerator(settings)
    try:
        return await COMMANDS[args.command](gen, args)
    finally:
        await gen.close()


def main() -> int:
    args = build_parser().parse_args()
    return asyncio.run(_main(args))


if __name__ == "__main__":
    raise SystemExit(main())
