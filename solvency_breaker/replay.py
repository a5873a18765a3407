"""
Solvency Breaker - Replay CLI.

============================================================
RESPONSIBILITY
============================================================
Replays a recorded operation sequence through a fresh
SolvencyGuard and prints every decision.

Decisions depend only on the inputs and their timestamps,
so a replay reproduces the original run exactly. Used for
incident review and for trying threshold settings against
a captured sequence.

============================================================
USAGE
============================================================
python -m solvency_breaker.replay operations.yaml
python -m solvency_breaker.replay operations.yaml --severity 10 --json

File format:

    config:                 # optional, same shape as to_dict()
      breaker:
        restriction_severity_pct: 5
    operations:
      - op: enable_window
        category: LiquidityPool
        window_size: 28800
        shift_size: 7200
        starting_balance: 100000
        threshold_pct: 20
        now: 0
      - op: check
        category: LiquidityPool
        account: alice
        proposed_balance: 79000
        now: 60

============================================================
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .config import SolvencyBreakerConfig, configure_logging, load_config_from_dict
from .engine import SolvencyGuard
from .types import MonitoredCategory, SolvencyBreakerError, InvalidConfigurationError


logger = logging.getLogger(__name__)


# ============================================================
# OPERATION DISPATCH
# ============================================================

REQUIRED_FIELDS: Dict[str, Tuple[str, ...]] = {
    "enable_window": ("category", "now"),
    "disable_window": ("category",),
    "check": ("category", "account", "proposed_balance", "now"),
    "withdraw": ("account", "amount", "now"),
    "restrict": ("account",),
    "unrestrict": ("account",),
    "enable_high_risk": (),
    "disable_high_risk": (),
    "configure_pool": ("pool_size", "per_user_limit"),
    "set_severity": ("pct",),
}
"""Fields each operation must carry."""

INTEGER_FIELDS = frozenset({
    "window_size",
    "shift_size",
    "starting_balance",
    "threshold_pct",
    "proposed_balance",
    "amount",
    "pool_size",
    "per_user_limit",
    "pct",
    "now",
})
"""Fields that must be integers when present (None allowed where optional)."""


def parse_category(value: str) -> MonitoredCategory:
    """Accept either the value ("LiquidityPool") or the name ("LIQUIDITY_POOL")."""
    try:
        return MonitoredCategory(value)
    except ValueError:
        pass
    try:
        return MonitoredCategory[str(value).upper()]
    except KeyError:
        raise InvalidConfigurationError(f"Unknown monitored category: {value!r}")


def validate_operation(op: Any) -> str:
    """
    Check an operation entry before it touches the guard.

    Returns:
        The operation name

    Raises:
        InvalidConfigurationError: Not a mapping, unknown op, missing
            or non-integer fields
    """
    if not isinstance(op, dict):
        raise InvalidConfigurationError(f"Operation must be a mapping, got {type(op).__name__}")

    name = op.get("op")
    if not isinstance(name, str) or name not in REQUIRED_FIELDS:
        raise InvalidConfigurationError(f"Unknown operation: {name!r}")

    missing = [key for key in REQUIRED_FIELDS[name] if op.get(key) is None]
    if missing:
        raise InvalidConfigurationError(f"{name}: missing {', '.join(missing)}")

    for key in INTEGER_FIELDS.intersection(op):
        value = op[key]
        if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
            raise InvalidConfigurationError(f"{name}: {key} must be an integer, got {value!r}")

    if "account" in op and not isinstance(op["account"], str):
        raise InvalidConfigurationError(f"{name}: account must be a string, got {op['account']!r}")

    return name


def _apply(guard: SolvencyGuard, op: Dict[str, Any]) -> Any:
    name = validate_operation(op)

    if name == "enable_window":
        config = guard.enable_window(
            parse_category(op["category"]),
            op.get("window_size"),
            op.get("shift_size"),
            op.get("starting_balance"),
            op.get("threshold_pct"),
            now=op["now"],
        )
        return {"interval_count": config.interval_count}
    if name == "disable_window":
        guard.disable_window(parse_category(op["category"]), op.get("now"))
        return {}
    if name == "check":
        result = guard.check_and_enforce(
            parse_category(op["category"]),
            op["account"],
            op["proposed_balance"],
            op["now"],
        )
        outcome = {"permitted": result.permitted, "restricted": result.restricted}
        if result.breach:
            outcome["allowed_floor"] = result.breach.allowed_floor
        return outcome
    if name == "withdraw":
        result = guard.withdraw_high_risk(op["account"], op["amount"], op["now"])
        return {"epoch": result.epoch, "pool_remaining": result.pool_remaining}
    if name == "restrict":
        return {"changed": guard.restrict(op["account"], op.get("now"))}
    if name == "unrestrict":
        return {"changed": guard.unrestrict(op["account"], op.get("now"))}
    if name == "enable_high_risk":
        return {"epoch": guard.enable_high_risk_mode(op.get("now"))}
    if name == "disable_high_risk":
        guard.disable_high_risk_mode(op.get("now"))
        return {}
    if name == "configure_pool":
        guard.configure_high_risk_pool(op["pool_size"], op["per_user_limit"])
        return {}

    guard.set_restriction_severity(op["pct"])
    return {}


def replay_operations(
    guard: SolvencyGuard,
    operations: List[Any],
) -> List[Dict[str, Any]]:
    """
    Apply operations in order.

    A rejected or malformed operation is a recorded outcome,
    not a reason to stop: the ledger would have carried on too.

    Returns:
        One outcome dict per operation
    """
    outcomes = []
    for index, op in enumerate(operations):
        entry = {"index": index, "op": op.get("op") if isinstance(op, dict) else None}
        try:
            entry["result"] = _apply(guard, op)
            entry["ok"] = True
        except SolvencyBreakerError as e:
            entry["ok"] = False
            entry["error"] = type(e).__name__
            entry["message"] = str(e)
        outcomes.append(entry)
    return outcomes


def load_replay_file(path: Path) -> Dict[str, Any]:
    """
    Read a replay file.

    Raises:
        InvalidConfigurationError: Top level is not a mapping, or
            'operations' / 'config' have the wrong shape
    """
    with open(path, "r") as f:
        data = yaml.safe_load(f)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InvalidConfigurationError(f"{path}: top level must be a mapping")
    if not isinstance(data.get("operations"), list):
        raise InvalidConfigurationError(f"{path}: 'operations' must be a list")
    if data.get("config") is not None and not isinstance(data["config"], dict):
        raise InvalidConfigurationError(f"{path}: 'config' must be a mapping")
    return data


# ============================================================
# CLI
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="solvency-replay",
        description="Replay an operation sequence through the solvency breaker",
    )
    parser.add_argument(
        "file",
        type=Path,
        help="YAML file with 'operations' (and optional 'config')",
    )
    parser.add_argument(
        "--severity",
        type=int,
        metavar="PCT",
        help="Override restriction severity percentage",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print outcomes as JSON",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: WARNING)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Replay entry point."""
    args = create_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        data = load_replay_file(args.file)
        config = (
            load_config_from_dict(data["config"])
            if data.get("config") else SolvencyBreakerConfig()
        )
        config.persistence.enabled = False
        if args.severity is not None:
            config.breaker.restriction_severity_pct = args.severity
        guard = SolvencyGuard(config)
    except (OSError, ValueError, TypeError, yaml.YAMLError, SolvencyBreakerError) as e:
        logger.error(f"Cannot start replay: {e}")
        print(f"error: {e}", file=sys.stderr)
        return 2

    outcomes = replay_operations(guard, data["operations"])

    if args.json:
        print(json.dumps({"outcomes": outcomes, "status": guard.get_status()}, indent=2))
    else:
        for entry in outcomes:
            if entry["ok"]:
                print(f"[{entry['index']:>4}] {str(entry['op']):<18} {entry['result']}")
            else:
                print(f"[{entry['index']:>4}] {str(entry['op']):<18} REJECTED {entry['error']}: {entry['message']}")

        stats = guard.get_high_risk_pool_stats()
        print(
            f"\nhigh_risk={stats.is_active} epoch={stats.epoch} "
            f"withdrawn={stats.total_withdrawn}/{stats.pool_size} "
            f"restricted={guard.get_restricted_accounts()}"
        )

    return 0


if __name__ == "__main__":
    sys.exit(main())
