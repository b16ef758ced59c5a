#!/usr/bin/env python3
"""Verifier command line: inspect Cases and sign datacap multisig actions."""

from __future__ import annotations

import argparse
import importlib
import json
import time
from dataclasses import asdict
from typing import Any, Callable, Optional, Sequence

from agents.verifier import VerifierAgent
from casestore.client import CaseStoreClient
from chain.contracts import ContractReader
from chain.gateway import FilecoinGateway
from chain.session import WalletSession
from core import metrics
from core.config import Settings, load_settings
from core.errors import ConfigError, DatacapError, DecodeMismatch
from core.logger import StructuredLogger, make_json_safe
from datacap.actions import decode_any
from datacap.lifecycle import AFFORDANCES

LOGGER = StructuredLogger("cli")

SIGNING_COMMANDS = {"propose", "approve", "change-sps", "approve-sps", "decrease-allowance"}


# ---------------------------------------------------------------------------
def load_signer(settings: Settings) -> Any:
    """Build the Signer named by ``module:attribute`` in ``signer_factory``."""

    spec = settings.signer_factory
    if not spec or ":" not in spec:
        raise ConfigError("DATACAP_SIGNER must name a signer factory as 'module:attribute'")
    module_name, attr = spec.split(":", 1)
    try:
        factory = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as exc:
        raise ConfigError(f"cannot load signer factory {spec!r}: {exc}") from exc
    return factory(settings)


def _print(data: Any) -> None:
    print(json.dumps(make_json_safe(data), indent=2, sort_keys=True))


def _case_summary(case: Any) -> Any:
    if case is None:
        return None
    return {"id": case.id, "state": case.state.value, "active_request_id": case.active_request_id}


def _describe_pending(tx: Any) -> dict:
    entry = {"id": tx.id, "to": tx.to, "method": tx.method, "approved": list(tx.approved)}
    if tx.cap is not None:
        entry.update(action="verify client", client=tx.address, amount=tx.cap)
    elif tx.calldata is not None:
        try:
            action = decode_any(tx.calldata)
        except DecodeMismatch:
            entry["action"] = "unknown"
        else:
            entry["action"] = action.LABEL
            entry["args"] = asdict(action)
    return entry


# ---------------------------------------------------------------------------
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Datacap multisig workflow")
    parser.add_argument("--config", help="YAML settings file")
    parser.add_argument("--github-username", default="")
    parser.add_argument("--account", type=int, default=0, help="signer account index")
    parser.add_argument("--no-delay", action="store_true", help="skip the inter-step delay")
    sub = parser.add_subparsers(dest="command", required=True)

    def case_parser(name: str, help_text: str) -> argparse.ArgumentParser:
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--case", dest="case_id", required=True)
        p.add_argument("--owner", required=True)
        p.add_argument("--repo", required=True)
        return p

    case_parser("refill-amount", "next allocation amount for a case")
    case_parser("allowed-action", "primary verifier action for a case")
    case_parser("client-info", "client contract allowance, SPs and deviation")
    sub.add_parser("pending", help="decoded pending multisig transactions")

    p_prop = case_parser("propose", "propose the active allocation")
    p_prop.add_argument("--amount", help="override the allocation amount, e.g. 5TiB")
    p_prop.add_argument("--confirm-amount", action="store_true")
    case_parser("approve", "approve the proposed allocation")

    p_sps = case_parser("change-sps", "propose an allowed SP change")
    p_sps.add_argument("--add", nargs="*", default=[])
    p_sps.add_argument("--remove", nargs="*", default=[])
    p_sps.add_argument("--max-deviation")
    case_parser("approve-sps", "approve the proposed SP change")

    p_dec = case_parser("decrease-allowance", "decrease the client contract allowance")
    p_dec.add_argument("--amount", required=True)
    return parser


def main(
    argv: Optional[Sequence[str]] = None,
    *,
    gateway: Any = None,
    store: Any = None,
    signer_loader: Callable[[Settings], Any] = load_signer,
) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings(args.config)
        if settings.metrics_port:
            metrics.serve(settings.metrics_port)
        gateway = gateway or FilecoinGateway(
            settings.node_url,
            token=settings.node_token,
            network=settings.address_prefix,
            registry=settings.verified_registry,
            wait_confidence=settings.wait_confidence,
            wait_limit_epochs=settings.wait_limit_epochs,
            wait_retries=settings.wait_retries,
        )
        store = store or CaseStoreClient(
            settings.api_url, token=settings.api_token, github_username=args.github_username
        )

        if args.command == "pending":
            if not settings.multisig_address:
                raise ConfigError("DATACAP_MULTISIG is required to list pending transactions")
            _print([_describe_pending(tx) for tx in gateway.list_pending(settings.multisig_address)])
            return 0

        case = store.get_case(args.case_id, args.owner, args.repo)
        signer = signer_loader(settings) if args.command in SIGNING_COMMANDS else None
        session = WalletSession(
            signer=signer,
            multisig_address=case.multisig_address or settings.multisig_address,
            network=settings.address_prefix,
        )
        if signer is not None:
            session.load_accounts(settings.accounts_page)
            while args.account >= len(session.accounts):
                if not session.load_more_accounts(settings.accounts_page):
                    break
            session.set_active_account(args.account)
        agent = VerifierAgent(
            settings,
            gateway,
            store,
            session,
            sleep=(lambda _s: None) if args.no_delay else time.sleep,
            progress=print,
        )
        _run(args, agent, case, ContractReader(gateway))
    except (DatacapError, ValueError) as exc:
        LOGGER.log(f"{args.command}_fail", case_id=getattr(args, "case_id", ""), error=str(exc))
        raise SystemExit(str(exc))
    return 0


def _run(args: argparse.Namespace, agent: VerifierAgent, case: Any, contracts: ContractReader) -> None:
    command = args.command
    if command == "refill-amount":
        amount = agent.next_refill_amount(case)
        last = case.last_allocation(positive_only=True)
        _print(
            {
                "amount": amount.amount,
                "unit": amount.unit,
                "bytes": amount.amount_bytes,
                "last_amount": last.allocation_amount if last else None,
            }
        )
    elif command == "allowed-action":
        action = agent.allowed_action(case)
        _print({"state": case.state.value, "action": action.value if action else None,
                "label": AFFORDANCES[action] if action else ""})
    elif command == "client-info":
        contract = agent.client_contract(case)
        client = agent.client_address(case)
        _print(
            {
                "allowance": contracts.client_allowance(contract, client),
                "allowed_sps": contracts.client_sps(contract, client),
                "max_deviation": contracts.client_config(contract, client).percentage,
            }
        )
    elif command == "propose":
        _print(_case_summary(agent.propose_allocation(
            case, amount=args.amount, amount_confirmed=args.confirm_amount or bool(args.amount)
        )))
    elif command == "approve":
        _print(_case_summary(agent.approve_allocation(case)))
    elif command == "change-sps":
        _print(_case_summary(agent.propose_sp_change(
            case, added=args.add, removed=args.remove, max_deviation=args.max_deviation
        )))
    elif command == "approve-sps":
        _print(_case_summary(agent.approve_sp_change(case)))
    elif command == "decrease-allowance":
        _print(agent.decrease_allowance(case, args.amount).message_ids)
    LOGGER.log(command, case_id=case.id)


if __name__ == "__main__":  # pragma: no cover - CLI
    raise SystemExit(main())
