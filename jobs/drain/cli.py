"""CLI de operador: ``python -m jobs.drain <comando>``.

Comandos:
    submit      Envía un batch de mediciones desde una planta
    peek        Lista eventos pendientes (incluye los fallidos)
    ingest      Flush de outboxes + drain hasta vaciar la cola
    run         Loop de servicio (ingest cada N segundos)
    requeue     Devuelve eventos a pendiente
    cleanup     Borra eventos procesados viejos
    summary     Resumen por activo
    top-by-cr   Top de activos por tasa de corrosión
    eval-risk   Evalúa riesgo bajo una política
    plant-cr    Media y P90 de tasas de una planta
    policy-set  Crea/actualiza una política de riesgo
    asset-set   Crea/actualiza un activo
    watch       Escucha un canal de notificaciones durante N segundos
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, List, Optional

from common.config import get_settings
from corrosion_ingest.core.domain.measurement import parse_timestamp
from corrosion_ingest.core.errors import CorrosionError
from corrosion_ingest.core.notifications.channel import EVENTS_INGESTED, Notification
from corrosion_ingest.infrastructure.persistence import StorageRouter
from corrosion_ingest.kernel import CorrosionKernel

from .config import DrainConfig
from .runner import run_forever, run_once

logger = logging.getLogger(__name__)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str, ensure_ascii=False))


def _read_points(value: str) -> str:
    """``@archivo.json`` lee el archivo, ``-`` lee stdin, cualquier otra cosa es JSON literal."""
    if value == "-":
        return sys.stdin.read()
    if value.startswith("@"):
        return Path(value[1:]).read_text(encoding="utf-8")
    return value


def _parse_window(value: Optional[str], default: datetime) -> datetime:
    if not value:
        return default
    try:
        return parse_timestamp(value)
    except ValueError as e:
        raise CorrosionError(str(e)) from e


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="jobs.drain", description="Corrosion ingest operator CLI")
    p.add_argument("--log-level", default="INFO")
    p.add_argument("--migrate", action="store_true", help="apply SQL migrations when opening endpoints")
    sub = p.add_subparsers(dest="command", required=True)

    s = sub.add_parser("submit", help="submit a measurement batch from a plant")
    s.add_argument("--site", required=True)
    s.add_argument("--asset", required=True)
    s.add_argument("--points", required=True, help="JSON array, @file.json or - for stdin")

    s = sub.add_parser("peek", help="list pending events")
    s.add_argument("--limit", type=int, default=20)

    s = sub.add_parser("ingest", help="flush outboxes and drain the central queue")
    s.add_argument("--batch", type=int, default=None)
    s.add_argument("--max-attempts", type=int, default=None)
    s.add_argument("--no-flush", action="store_true")

    s = sub.add_parser("run", help="drain loop service")
    s.add_argument("--batch", type=int, default=None)
    s.add_argument("--sleep-seconds", type=float, default=30.0)

    s = sub.add_parser("requeue", help="move events back to pending")
    s.add_argument("ids", nargs="+", type=int)

    s = sub.add_parser("cleanup", help="delete processed events older than N days")
    s.add_argument("--older-than-days", type=float, default=30.0)

    s = sub.add_parser("summary", help="asset summary JSON")
    s.add_argument("asset")
    s.add_argument("--policy", default=None)

    s = sub.add_parser("top-by-cr", help="assets with the highest corrosion rate")
    s.add_argument("--limit", type=int, default=10)

    s = sub.add_parser("eval-risk", help="evaluate risk under a policy")
    s.add_argument("--asset", default=None)
    s.add_argument("--policy", default=None)

    s = sub.add_parser("plant-cr", help="mean and P90 corrosion rate for a plant")
    s.add_argument("plant")
    s.add_argument("--from", dest="date_from", default=None)
    s.add_argument("--to", dest="date_to", default=None)

    s = sub.add_parser("policy-set", help="create or update a risk policy")
    s.add_argument("name")
    s.add_argument("--low", required=True)
    s.add_argument("--med", required=True)
    s.add_argument("--high", required=True)

    s = sub.add_parser("asset-set", help="create or update an asset")
    s.add_argument("asset")
    s.add_argument("--name", default=None)
    s.add_argument("--type", dest="asset_type", default=None)
    s.add_argument("--plant", default=None)

    s = sub.add_parser("watch", help="print notifications for N seconds")
    s.add_argument("--channel", default=EVENTS_INGESTED)
    s.add_argument("--seconds", type=float, default=60.0)
    return p


async def _watch(kernel: CorrosionKernel, channel: str, seconds: float) -> List[dict]:
    received: List[dict] = []

    def handler(notification: Notification) -> None:
        item = {"channel": notification.channel, "sender": notification.sender, "payload": notification.json()}
        received.append(item)
        _print_json(item)

    await kernel.open()
    if not kernel.settings.notify_via_redis:
        logger.info("[NOTIFY] Redis relay disabled: only in-process messages are visible")

    sub = kernel.notifications.subscribe(channel, handler)
    try:
        await asyncio.sleep(seconds)
    finally:
        kernel.notifications.unsubscribe(sub)
    return received


async def run_command(args: argparse.Namespace, kernel: CorrosionKernel) -> Any:
    """Ejecuta un subcomando y devuelve el resultado serializable."""
    settings = kernel.settings
    cmd = args.command

    if cmd == "submit":
        rows = await kernel.insert_measurement_batch(args.asset, _read_points(args.points), args.site)
        return {"rows": rows}

    if cmd == "peek":
        return [e.to_dict() for e in await kernel.peek(args.limit)]

    if cmd == "ingest":
        cfg = DrainConfig.from_settings(
            settings, batch_size=args.batch, max_attempts=args.max_attempts, flush_sites=not args.no_flush,
        )
        summary = await run_once(kernel, cfg)
        return summary.to_dict()

    if cmd == "run":
        cfg = DrainConfig.from_settings(settings, batch_size=args.batch, sleep_seconds=args.sleep_seconds)
        await run_forever(kernel, cfg)
        return None

    if cmd == "requeue":
        return {"requeued": await kernel.requeue(args.ids)}

    if cmd == "cleanup":
        return {"deleted": await kernel.cleanup(timedelta(days=args.older_than_days))}

    if cmd == "summary":
        summary = await kernel.asset_summary(args.asset, args.policy)
        if summary is None:
            raise CorrosionError(f"asset '{args.asset}' not found")
        return summary

    if cmd == "top-by-cr":
        return [r.to_dict() for r in await kernel.top_assets_by_cr(args.limit)]

    if cmd == "eval-risk":
        return [r.to_dict() for r in await kernel.eval_risk(args.asset, args.policy)]

    if cmd == "plant-cr":
        now = datetime.now(timezone.utc)
        date_to = _parse_window(args.date_to, now)
        date_from = _parse_window(args.date_from, date_to - timedelta(days=365))
        stats = await kernel.plant_cr_stats(args.plant, date_from, date_to)
        return stats.to_dict()

    if cmd == "policy-set":
        policy = await kernel.upsert_policy(args.name, args.low, args.med, args.high)
        return {
            "name": policy.name,
            "threshold_low": float(policy.threshold_low),
            "threshold_med": float(policy.threshold_med),
            "threshold_high": float(policy.threshold_high),
        }

    if cmd == "asset-set":
        asset = await kernel.upsert_asset(args.asset, args.name, args.asset_type, args.plant)
        return {
            "asset_code": asset.asset_code,
            "name": asset.name,
            "type": asset.asset_type,
            "plant_code": asset.plant_code,
        }

    if cmd == "watch":
        return await _watch(kernel, args.channel, args.seconds)

    raise CorrosionError(f"unknown command '{cmd}'")


async def _amain(args: argparse.Namespace) -> Any:
    settings = get_settings()
    kernel = CorrosionKernel(StorageRouter(settings, auto_migrate=args.migrate), settings)
    try:
        return await run_command(args, kernel)
    finally:
        await kernel.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )

    try:
        result = asyncio.run(_amain(args))
    except CorrosionError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrumpido por el usuario")
        return 130

    if result is not None and args.command != "watch":
        _print_json(result)
    return 0
