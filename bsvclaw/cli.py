"""
bsvclaw CLI.

Commands:
  bsvclaw agent     Watch the agent address, answer and settle JOB requests
  bsvclaw web       Operator web surface (optionally running the agent too)
  bsvclaw send-job  Pay an agent to answer a prompt (sender wallet)
  bsvclaw status    Balance and job totals
  bsvclaw wallet    Show (or create) the agent wallet
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from bsvclaw.config import ClawConfig
from bsvclaw.errors import ClawError
from bsvclaw.logging_config import get_logger, setup_logging

logger = get_logger(__name__)


def _banner(config: ClawConfig, address: str) -> None:
    logger.info("=" * 60)
    logger.info("bsvclaw agent")
    logger.info(f"  Address:  {address}")
    logger.info(f"  Network:  {config.network}")
    logger.info(f"  Model:    {config.model} ({config.llm_backend})")
    logger.info(f"  Jobs:     {config.jobs_path}")
    logger.info(f"  Poll:     every {config.poll_interval:.0f}s")
    logger.info("=" * 60)


def agent_command(config: ClawConfig, args: argparse.Namespace) -> None:
    from bsvclaw.service import ClawService

    service = ClawService.from_config(config)
    _banner(config, service.wallet.address)
    try:
        service.run()
    except KeyboardInterrupt:
        logger.info("Stopping agent")


def web_command(config: ClawConfig, args: argparse.Namespace) -> None:
    from bsvclaw.server import serve
    from bsvclaw.service import ClawService

    service = ClawService.from_config(config)
    if args.with_agent:
        _banner(config, service.wallet.address)
    serve(service, port=args.port, start_agent=args.with_agent)


def send_job_command(config: ClawConfig, args: argparse.Namespace) -> None:
    from bsvclaw.bridge import BridgeCorrelator
    from bsvclaw.ledger import LedgerGateway
    from bsvclaw.signer import BsvSigner
    from bsvclaw.store import JobStore
    from bsvclaw.wallet import AgentWallet

    wallet_path = Path(args.wallet).expanduser() if args.wallet else config.sender_wallet_path
    sender = AgentWallet.load(wallet_path)
    bridge = BridgeCorrelator(
        sender_wallet=sender,
        agent_address=args.to,
        ledger=LedgerGateway(base_url=config.network_url, timeout=config.http_timeout),
        signer=BsvSigner(),
        job_store=JobStore(config.jobs_path),
        sats_per_job=config.sats_per_job,
        fee=config.job_fee,
        buffer=config.funding_buffer,
    )
    sats = args.sats if args.sats is not None else config.sats_per_job
    print(f"Sending JOB to {args.to}")
    print(f"  Prompt: {args.prompt}")
    print(f"  Payment: {sats} sats")
    job_txid = bridge.submit_job(args.prompt, sats)
    print(f"JOB TX: {job_txid}")
    print(f"  https://whatsonchain.com/tx/{job_txid}")


def status_command(config: ClawConfig, args: argparse.Namespace) -> None:
    from bsvclaw.service import ClawService

    status = ClawService.from_config(config).status()
    jobs = status["jobs"]
    print(f"Address:  {status['address']} ({status['network']})")
    if status["balance"] is None:
        print("Balance:  unavailable")
    else:
        bal = status["balance"]
        print(f"Balance:  {bal['total']} sats ({bal['confirmed']} confirmed, {bal['unconfirmed']} unconfirmed)")
    print(f"Jobs:     {jobs['total']} ({jobs['settled']} settled, {jobs['failed']} failed)")
    print(f"Received: {jobs['total_received']} sats")
    print(f"Earned:   {jobs['total_earned']} sats")


def wallet_command(config: ClawConfig, args: argparse.Namespace) -> None:
    from bsvclaw.wallet import AgentWallet

    wallet = AgentWallet.load_or_create(config.wallet_path, network=config.network)
    print(f"Address:  {wallet.address}")
    print(f"Created:  {wallet.created_at}")
    print(f"File:     {config.wallet_path}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bsvclaw", description="Pay-per-answer agent on BSV")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("agent", help="Watch for JOB requests and settle them")

    web = sub.add_parser("web", help="Operator web surface")
    web.add_argument("--port", type=int, default=None)
    web.add_argument("--with-agent", action="store_true", help="Also run the poller in this process")

    send = sub.add_parser("send-job", help="Pay an agent to answer a prompt")
    send.add_argument("--to", required=True, help="Agent address")
    send.add_argument("--prompt", required=True)
    send.add_argument("--sats", type=int, default=None)
    send.add_argument("--wallet", default=None, help="Sender wallet file (default: SENDER_WALLET)")

    sub.add_parser("status", help="Balance and job totals")
    sub.add_parser("wallet", help="Show (or create) the agent wallet")
    return parser


COMMANDS = {
    "agent": agent_command,
    "web": web_command,
    "send-job": send_job_command,
    "status": status_command,
    "wallet": wallet_command,
}


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        sys.exit(1)

    config = ClawConfig.from_env()
    setup_logging(config.log_level, config.log_dir)
    try:
        COMMANDS[args.command](config, args)
    except ClawError as e:
        logger.error(str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
