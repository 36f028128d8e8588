"""Agentmarket CLI — command-line interface over a file-backed marketplace.

Usage:
    agentmarket status
    agentmarket register-agent --account agent-a --name "Agent A"
    agentmarket create-job --client alice --title "Audit" --description "..." \
        --deliverable report.md --amount 20000
    agentmarket submit-bid --job-id 1 --agent agent-a --amount 18000 --timeline 604800 \
        --proposal "..."
    agentmarket select-bid --bid-id 1 --caller alice
    agentmarket job-action accept --job-id 1 --caller agent-a
    agentmarket check-invariants

State lives under the data directory (``state.json`` and ``events.jsonl``).
``AGENTMARKET_CONFIG_DIR`` and ``AGENTMARKET_DATA_DIR`` override the default
directories and may be set in a ``.env`` file.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from agentmarket.service import MarketService, ServiceResult


ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG = ROOT / "config"
DEFAULT_DATA = ROOT / "data"

_JOB_ACTIONS = {
    "accept": "accept_job",
    "start": "start_job",
    "approve": "approve_delivery",
    "cancel": "cancel_job",
}


def _make_service(args: argparse.Namespace) -> MarketService:
    """Create a MarketService with durable persistence."""
    return MarketService.open(args.config, args.data)


def _report(result: ServiceResult) -> int:
    if result.success:
        print(json.dumps(result.data, indent=2, sort_keys=True))
        return 0
    print(f"Failed [{result.error_code}]: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args)
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_register_agent(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.register_agent(
        account=args.account,
        name=args.name,
        description=args.description,
        endpoint=args.endpoint,
        capabilities=args.capability or (),
    ))


def cmd_create_job(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.create_job(
        client=args.client,
        title=args.title,
        description=args.description,
        deliverables=args.deliverable,
        amount=args.amount,
        agent=args.agent,
        deadline=args.deadline,
        arbitrator=args.arbitrator,
    ))


def cmd_submit_bid(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.submit_bid(
        job_id=args.job_id,
        agent=args.agent,
        amount=args.amount,
        timeline=args.timeline,
        proposal=args.proposal,
    ))


def cmd_select_bid(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.select_bid(
        bid_id=args.bid_id,
        caller=args.caller,
        fund_amount=args.fund_amount,
    ))


def cmd_fund_job(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.fund_job(args.job_id, args.amount, args.caller))


def cmd_job_action(args: argparse.Namespace) -> int:
    service = _make_service(args)
    action = getattr(service, _JOB_ACTIONS[args.action])
    return _report(action(args.job_id, args.caller))


def cmd_deliver(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.deliver_job(args.job_id, args.caller, args.evidence_uri))


def cmd_dispute(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.raise_dispute(
        job_id=args.job_id,
        caller=args.caller,
        reason=args.reason,
        evidence_uri=args.evidence_uri,
    ))


def cmd_arbitrate(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.arbitrate(
        dispute_id=args.dispute_id,
        caller=args.caller,
        client_percent=args.client_percent,
        notes=args.notes,
    ))


def cmd_trust_score(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.get_trust_score(args.account))


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Check configuration bounds and ledger money conservation."""
    service = _make_service(args)
    result = service.check_invariants()
    if result.success:
        print("Invariant checks passed.")
        return 0
    for err in result.errors:
        print(f"- {err}", file=sys.stderr)
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentmarket",
        description="Agent marketplace — escrow, arbitration and validation CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path(os.environ.get("AGENTMARKET_CONFIG_DIR", DEFAULT_CONFIG)),
        help="Path to config directory (default: $AGENTMARKET_CONFIG_DIR or config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=Path(os.environ.get("AGENTMARKET_DATA_DIR", DEFAULT_DATA)),
        help="Path to data directory (default: $AGENTMARKET_DATA_DIR or data/)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )
    sub = parser.add_subparsers(dest="command")

    # status
    sub.add_parser("status", help="Show marketplace status")

    # register-agent
    p_agent = sub.add_parser("register-agent", help="Register an agent")
    p_agent.add_argument("--account", required=True, help="Agent account")
    p_agent.add_argument("--name", required=True, help="Display name")
    p_agent.add_argument("--description", default="", help="Description")
    p_agent.add_argument("--endpoint", default="", help="Service endpoint")
    p_agent.add_argument("--capability", action="append", help="Capability (repeatable)")

    # create-job
    p_job = sub.add_parser("create-job", help="Create a job")
    p_job.add_argument("--client", required=True, help="Client account")
    p_job.add_argument("--title", required=True, help="Job title")
    p_job.add_argument("--description", required=True, help="Job description")
    p_job.add_argument(
        "--deliverable", action="append", required=True,
        help="Deliverable (repeatable)",
    )
    p_job.add_argument("--amount", type=int, required=True, help="Job amount (minor units)")
    p_job.add_argument("--agent", help="Hire this agent directly (default: open for bids)")
    p_job.add_argument("--deadline", type=int, default=0, help="Deadline (unix seconds, 0 = none)")
    p_job.add_argument("--arbitrator", help="Arbitrator account")

    # submit-bid
    p_bid = sub.add_parser("submit-bid", help="Bid on an open job")
    p_bid.add_argument("--job-id", type=int, required=True, help="Job ID")
    p_bid.add_argument("--agent", required=True, help="Bidding agent")
    p_bid.add_argument("--amount", type=int, required=True, help="Bid amount")
    p_bid.add_argument("--timeline", type=int, required=True, help="Timeline in seconds")
    p_bid.add_argument("--proposal", required=True, help="Proposal text")

    # select-bid
    p_sel = sub.add_parser("select-bid", help="Select a bid and fund the job")
    p_sel.add_argument("--bid-id", type=int, required=True, help="Bid ID")
    p_sel.add_argument("--caller", required=True, help="Client account")
    p_sel.add_argument("--fund-amount", type=int, help="Amount to fund (default: bid amount)")

    # fund-job
    p_fund = sub.add_parser("fund-job", help="Fund an assigned job")
    p_fund.add_argument("--job-id", type=int, required=True, help="Job ID")
    p_fund.add_argument("--amount", type=int, required=True, help="Amount to fund")
    p_fund.add_argument("--caller", required=True, help="Funding account")

    # job-action
    p_act = sub.add_parser("job-action", help="Accept, start, approve or cancel a job")
    p_act.add_argument("action", choices=sorted(_JOB_ACTIONS))
    p_act.add_argument("--job-id", type=int, required=True, help="Job ID")
    p_act.add_argument("--caller", required=True, help="Calling account")

    # deliver
    p_del = sub.add_parser("deliver", help="Deliver work on a job")
    p_del.add_argument("--job-id", type=int, required=True, help="Job ID")
    p_del.add_argument("--caller", required=True, help="Agent account")
    p_del.add_argument("--evidence-uri", required=True, help="Delivery evidence URI")

    # dispute
    p_dis = sub.add_parser("dispute", help="Raise a dispute on a job")
    p_dis.add_argument("--job-id", type=int, required=True, help="Job ID")
    p_dis.add_argument("--caller", required=True, help="Client or agent account")
    p_dis.add_argument("--reason", required=True, help="Reason for the dispute")
    p_dis.add_argument("--evidence-uri", help="Evidence URI")

    # arbitrate
    p_arb = sub.add_parser("arbitrate", help="Resolve a dispute as its arbitrator")
    p_arb.add_argument("--dispute-id", type=int, required=True, help="Dispute ID")
    p_arb.add_argument("--caller", required=True, help="Arbitrator account")
    p_arb.add_argument(
        "--client-percent", type=int, required=True,
        help="Share of the escrow awarded to the client (0-100)",
    )
    p_arb.add_argument("--notes", required=True, help="Resolution notes")

    # trust-score
    p_trust = sub.add_parser("trust-score", help="Show an agent's trust score")
    p_trust.add_argument("--account", required=True, help="Agent account")

    # check-invariants
    sub.add_parser("check-invariants", help="Run configuration and ledger invariant checks")

    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv(ROOT / ".env")
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "register-agent": cmd_register_agent,
        "create-job": cmd_create_job,
        "submit-bid": cmd_submit_bid,
        "select-bid": cmd_select_bid,
        "fund-job": cmd_fund_job,
        "job-action": cmd_job_action,
        "deliver": cmd_deliver,
        "dispute": cmd_dispute,
        "arbitrate": cmd_arbitrate,
        "trust-score": cmd_trust_score,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
