"""
Command line entry point (`pulseremit`).

    pulseremit tick              run one due-scan against the JSON store
    pulseremit run-scheduler     keep scanning on the configured interval
    pulseremit digest ...        print the typed-data digest for a request
    pulseremit agent-status      show agent ownership and reputation

Connection settings come from PULSE_* environment variables.
"""
import argparse
import json
import logging
import sys
import time
from typing import List, Optional, Tuple

from .config import VaultConfig, store_path_from_env
from .digest import build_digest
from .exceptions import PulseRemitError
from .executor import TransferExecutor
from .gateway import ChainGateway, ChainGatewayError
from .models import TransferRequest
from .reputation import ReputationService
from .scheduler import ScheduleProcessor
from .store import JsonFileStore
from .utils import calculate_deadline, usd_to_wei
from .version import __version__

logger = logging.getLogger(__name__)


def build_services(
    config: VaultConfig,
    store_path: Optional[str] = None
) -> Tuple[ChainGateway, ScheduleProcessor]:
    """Wire gateway, store, executor and processor from one config."""
    gateway = ChainGateway(config)
    store = JsonFileStore(store_path or store_path_from_env())
    executor = TransferExecutor(gateway, store, config)
    return gateway, ScheduleProcessor(executor, store)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_tick(args) -> int:
    _, processor = build_services(VaultConfig.from_env(), args.store)
    report = processor.process_due()
    _print_json({
        "started_at": report.started_at.isoformat(),
        "due": report.due,
        "succeeded": report.succeeded,
        "failed": report.failed,
        "skipped": report.skipped,
    })
    return 0 if report.ok else 1


def cmd_run_scheduler(args) -> int:
    config = VaultConfig.from_env()
    _, processor = build_services(config, args.store)
    if args.interval:
        processor.interval = args.interval

    processor.start()
    try:
        while processor.running:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping scheduler")
    finally:
        processor.stop()
    return 0


def cmd_digest(args) -> int:
    if args.domain_separator:
        domain_separator = args.domain_separator
    else:
        gateway = ChainGateway(VaultConfig.from_env())
        domain_separator = gateway.read_domain_separator()

    amount = args.amount_wei if args.amount_wei is not None else usd_to_wei(args.amount)
    request = TransferRequest(
        recipient=args.recipient,
        amount=amount,
        nonce=args.nonce,
        deadline=args.deadline if args.deadline is not None else calculate_deadline(1),
    )
    digest = build_digest(request, domain_separator)
    _print_json({
        "request": request.model_dump(),
        "digest": "0x" + digest.hex(),
    })
    return 0


def cmd_agent_status(args) -> int:
    config = VaultConfig.from_env()
    gateway = ChainGateway(config)
    agent_id = args.agent_id if args.agent_id is not None else config.agent_id
    _print_json({
        "agent_address": gateway.agent_address,
        "owns_identity": gateway.verify_agent_ownership(agent_id),
        "reputation": ReputationService(gateway).get_reputation(agent_id),
    })
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pulseremit",
        description="PulseRemit vault transfer and schedule tools.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--debug", help="Enable debug output", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=True)

    tick = subparsers.add_parser("tick", help="Run one due-scan of recurring transfers")
    tick.add_argument("--store", help="Path of the JSON store (default: PULSE_STORE_PATH)")
    tick.set_defaults(func=cmd_tick)

    run = subparsers.add_parser("run-scheduler", help="Scan for due transfers on a timer")
    run.add_argument("--store", help="Path of the JSON store (default: PULSE_STORE_PATH)")
    run.add_argument("--interval", type=int, help="Seconds between scans (default: PULSE_SCHEDULER_INTERVAL)")
    run.set_defaults(func=cmd_run_scheduler)

    digest = subparsers.add_parser("digest", help="Print the digest a user signs for a transfer")
    digest.add_argument("--recipient", required=True)
    amount = digest.add_mutually_exclusive_group(required=True)
    amount.add_argument("--amount", help="Decimal token amount, e.g. 12.5")
    amount.add_argument("--amount-wei", type=int, help="Amount in base units")
    digest.add_argument("--nonce", type=int, required=True)
    digest.add_argument("--deadline", type=int, help="Unix timestamp (default: one hour from now)")
    digest.add_argument("--domain-separator", help="32-byte hex (default: read from the vault)")
    digest.set_defaults(func=cmd_digest)

    status = subparsers.add_parser("agent-status", help="Show agent identity ownership and reputation")
    status.add_argument("--agent-id", type=int)
    status.set_defaults(func=cmd_agent_status)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    try:
        return args.func(args)
    except (PulseRemitError, ChainGatewayError, ValueError) as e:
        logger.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
