"""taskledger CLI — drive a local devnet from the command line.

Usage:
    taskledger init --owner 0xA... --settlement-authority 0xB...
    taskledger app-id --name "Image Resizer"
    taskledger register-app --sender 0xA... --name "Image Resizer"
    taskledger register-operator --key 0x...
    taskledger opt-in --sender 0xC... --app-id 0x...
    taskledger create-task --sender 0xD... --app-id 0x...
    taskledger sign-claim --key 0x... --task-id 0x... --status completed --result 42
    taskledger respond --sender 0xB... --task-id 0x... --status completed --result 42
    taskledger task-status --task-id 0x...
    taskledger check-invariants
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import secrets
import sys
from pathlib import Path

from dotenv import load_dotenv
from eth_account import Account

from taskledger.audit import check_log, read_records
from taskledger.crypto.ids import application_id
from taskledger.crypto.signing import (
    recover_claim_signer,
    sign_claim,
    sign_registration,
    verify_claim,
)
from taskledger.devnet import EVENTS_FILE, Devnet
from taskledger.ledger.errors import LedgerError
from taskledger.models.application import ApplicationMetadata
from taskledger.models.claim import SettlementClaim
from taskledger.models.task import TaskStatus

CONTRACT_CHOICES = {
    "app-registry": "app_registry",
    "operator-directory": "operator_directory",
    "task-registry": "task_registry",
}


def _default_data_dir() -> Path:
    return Path(os.getenv("TASKLEDGER_DATA_DIR", "data"))


def _load(args: argparse.Namespace) -> Devnet:
    return Devnet.load(args.data_dir)


def _fail(message: str) -> int:
    print(f"Failed: {message}", file=sys.stderr)
    return 1


def cmd_init(args: argparse.Namespace) -> int:
    devnet = Devnet.create(args.owner, args.settlement_authority, data_dir=args.data_dir)
    print(json.dumps(devnet.addresses(), indent=2))
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    print(json.dumps(_load(args).status(), indent=2))
    return 0


def cmd_app_id(args: argparse.Namespace) -> int:
    print(application_id(args.name))
    return 0


def cmd_register_app(args: argparse.Namespace) -> int:
    devnet = _load(args)
    app_id = args.app_id or application_id(args.name)
    metadata = ApplicationMetadata(
        name=args.name,
        description=args.description,
        logo_url=args.logo_url,
        package_url=args.package_url,
    )
    devnet.app_registry.register(app_id, metadata, sender=args.sender)
    devnet.save()
    print(f"Registered application: {app_id}")
    return 0


def cmd_register_operator(args: argparse.Namespace) -> int:
    devnet = _load(args)
    operator = Account.from_key(args.key).address
    salt = args.salt or "0x" + secrets.token_hex(32)
    expiry = devnet.ledger.now() + args.expiry_seconds
    proof = sign_registration(args.key, devnet.directory.address, salt, expiry)
    devnet.directory.register_operator(operator, proof, sender=operator)
    devnet.save()
    print(f"Registered operator: {operator}")
    return 0


def cmd_opt_in(args: argparse.Namespace) -> int:
    devnet = _load(args)
    devnet.directory.opt_in(args.app_id, sender=args.sender)
    devnet.save()
    print(f"Opted in: {args.sender} -> {args.app_id}")
    return 0


def cmd_create_task(args: argparse.Namespace) -> int:
    devnet = _load(args)
    tid = devnet.task_registry.create_task(args.app_id, sender=args.sender, salt=args.salt)
    devnet.save()
    print(tid)
    return 0


def cmd_respond(args: argparse.Namespace) -> int:
    devnet = _load(args)
    devnet.task_registry.respond_to_task(
        args.task_id, TaskStatus(args.status), args.result, sender=args.sender,
    )
    devnet.save()
    print(f"Settled {args.task_id}: {args.status} ({args.result})")
    return 0


def cmd_task_status(args: argparse.Namespace) -> int:
    record = _load(args).task_registry.get_task(args.task_id)
    print(json.dumps({
        "task_id": args.task_id,
        "status": record.status.value,
        "result": record.result,
    }, indent=2))
    return 0


def _ownable(args: argparse.Namespace):
    devnet = _load(args)
    return devnet, devnet.contracts()[CONTRACT_CHOICES[args.contract]]


def cmd_transfer_ownership(args: argparse.Namespace) -> int:
    devnet, contract = _ownable(args)
    contract.transfer_ownership(args.to, sender=args.sender)
    devnet.save()
    print(f"Pending owner of {args.contract}: {contract.pending_owner}")
    return 0


def cmd_accept_ownership(args: argparse.Namespace) -> int:
    devnet, contract = _ownable(args)
    contract.accept_ownership(sender=args.sender)
    devnet.save()
    print(f"Owner of {args.contract}: {contract.owner}")
    return 0


def cmd_cancel_transfer(args: argparse.Namespace) -> int:
    devnet, contract = _ownable(args)
    contract.cancel_transfer_ownership(sender=args.sender)
    devnet.save()
    print(f"Transfer of {args.contract} cancelled")
    return 0


def cmd_sign_claim(args: argparse.Namespace) -> int:
    registry = args.task_registry or _load(args).task_registry.address
    claim = sign_claim(args.key, registry, args.task_id, TaskStatus(args.status), args.result)
    print(json.dumps(claim.to_dict(), indent=2))
    return 0


def cmd_verify_claim(args: argparse.Namespace) -> int:
    registry = args.task_registry or _load(args).task_registry.address
    claim = SettlementClaim.from_dict(json.loads(Path(args.claim).read_text(encoding="utf-8")))
    valid = verify_claim(registry, claim)
    try:
        signer = recover_claim_signer(registry, claim)
    except ValueError:
        signer = None
    print(json.dumps({"valid": valid, "operator": claim.operator, "signer": signer}, indent=2))
    return 0 if valid else 1


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Audit the devnet's notification log."""
    path = args.data_dir / EVENTS_FILE
    if not path.exists():
        return _fail(f"No event log at {path}")
    errors = check_log(read_records(path))
    if errors:
        for error in errors:
            print(f"FAIL: {error}", file=sys.stderr)
        return 1
    print("All invariants hold")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="taskledger",
        description="Task ledger — local devnet CLI",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=_default_data_dir(),
        help="Devnet data directory (default: $TASKLEDGER_DATA_DIR or ./data)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    sub = parser.add_subparsers(dest="command")

    # init
    p_init = sub.add_parser("init", help="Deploy a fresh devnet")
    p_init.add_argument("--owner", required=True, help="Owner address of all contracts")
    p_init.add_argument("--settlement-authority", required=True, help="Aggregator address")

    # status
    sub.add_parser("status", help="Show devnet status")

    # app-id
    p_id = sub.add_parser("app-id", help="Derive an application id from its name")
    p_id.add_argument("--name", required=True)

    # register-app
    p_app = sub.add_parser("register-app", help="Register an application (owner only)")
    p_app.add_argument("--sender", required=True)
    p_app.add_argument("--name", required=True)
    p_app.add_argument("--app-id", help="Explicit id (default: keccak256 of the name)")
    p_app.add_argument("--description", default="")
    p_app.add_argument("--logo-url", default="")
    p_app.add_argument("--package-url", default="")

    # register-operator
    p_op = sub.add_parser("register-operator", help="Register an operator key")
    p_op.add_argument("--key", required=True, help="Operator private key")
    p_op.add_argument("--salt", help="Proof salt (default: random)")
    p_op.add_argument("--expiry-seconds", type=int, default=3600)

    # opt-in
    p_opt = sub.add_parser("opt-in", help="Opt an operator in to an application")
    p_opt.add_argument("--sender", required=True)
    p_opt.add_argument("--app-id", required=True)

    # create-task
    p_task = sub.add_parser("create-task", help="Request a task")
    p_task.add_argument("--sender", required=True)
    p_task.add_argument("--app-id", required=True)
    p_task.add_argument("--salt", help="Optional 32-byte salt")

    # respond
    p_resp = sub.add_parser("respond", help="Settle a task (settlement authority only)")
    p_resp.add_argument("--sender", required=True)
    p_resp.add_argument("--task-id", required=True)
    p_resp.add_argument("--status", required=True, choices=["completed", "failed"])
    p_resp.add_argument("--result", type=int, default=0)

    # task-status
    p_ts = sub.add_parser("task-status", help="Show a task's status and result")
    p_ts.add_argument("--task-id", required=True)

    # ownership
    for name, help_text in (
        ("transfer-ownership", "Nominate a new owner"),
        ("accept-ownership", "Accept a pending nomination"),
        ("cancel-transfer", "Cancel a pending nomination"),
    ):
        p_own = sub.add_parser(name, help=help_text)
        p_own.add_argument("--contract", required=True, choices=list(CONTRACT_CHOICES))
        p_own.add_argument("--sender", required=True)
        if name == "transfer-ownership":
            p_own.add_argument("--to", required=True)

    # sign-claim
    p_sign = sub.add_parser("sign-claim", help="Sign a settlement claim")
    p_sign.add_argument("--key", required=True, help="Operator private key")
    p_sign.add_argument("--task-id", required=True)
    p_sign.add_argument("--status", required=True, choices=["completed", "failed"])
    p_sign.add_argument("--result", type=int, default=0)
    p_sign.add_argument("--task-registry", help="Registry address (default: devnet's)")

    # verify-claim
    p_ver = sub.add_parser("verify-claim", help="Verify a signed claim file")
    p_ver.add_argument("--claim", required=True, help="Path to claim JSON")
    p_ver.add_argument("--task-registry", help="Registry address (default: devnet's)")

    # check-invariants
    sub.add_parser("check-invariants", help="Audit the notification log")

    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "init": cmd_init,
        "status": cmd_status,
        "app-id": cmd_app_id,
        "register-app": cmd_register_app,
        "register-operator": cmd_register_operator,
        "opt-in": cmd_opt_in,
        "create-task": cmd_create_task,
        "respond": cmd_respond,
        "task-status": cmd_task_status,
        "transfer-ownership": cmd_transfer_ownership,
        "accept-ownership": cmd_accept_ownership,
        "cancel-transfer": cmd_cancel_transfer,
        "sign-claim": cmd_sign_claim,
        "verify-claim": cmd_verify_claim,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return handler(args)
    except LedgerError as e:
        return _fail(f"{e.code}: {e}")
    except (ValueError, FileNotFoundError, FileExistsError) as e:
        return _fail(str(e))


if __name__ == "__main__":
    raise SystemExit(main())
