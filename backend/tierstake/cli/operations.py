"""CLI for database setup and the daily maintenance jobs."""
import argparse
import json
import sys
from decimal import Decimal

from tierstake.core.config import GovernanceConfig, get_settings
from tierstake.core.database import get_session_local, init_db
from tierstake.core.logging_config import LoggingConfig
from tierstake.services.account_store import AccountStore
from tierstake.services.daily_jobs import DailyJobRunner
from tierstake.services.decay_scheduler import DecayScheduler
from tierstake.services.parameter_store import ParameterStore

logger = LoggingConfig.get_logger(__name__)


def cmd_init_db(args):
    """Create all tables."""
    init_db()
    print("Tables created")
    return 0


def cmd_seed(args):
    """Create missing default parameters."""
    db = get_session_local()()
    try:
        created = ParameterStore(db).seed_defaults()
    finally:
        db.close()
    print(f"Seeded {created} parameters")
    return 0


def cmd_daily_run(args):
    """Run ranking recalculation, decay and approval expiry once, now."""
    settings = get_settings()
    governance_config = None
    if settings.governance_owner_list:
        governance_config = GovernanceConfig.from_settings(settings)
    runner = DailyJobRunner(get_session_local(), settings=settings, governance_config=governance_config)
    report = runner.run_once()
    print(json.dumps(report.to_dict(), indent=2))
    return 0 if report.succeeded else 1


def cmd_decay(args):
    """Run a single decay pass, using the live total stake unless one is given."""
    db = get_session_local()()
    try:
        total_staked = args.total_staked
        if total_staked is None:
            total_staked = Decimal(str(AccountStore(db).total_staked()))
        scheduler = DecayScheduler.from_settings(ParameterStore(db))
        changes = scheduler.run_decay_pass(total_staked)
    finally:
        db.close()
    print(json.dumps({"total_staked": str(total_staked), "changes": [c.to_dict() for c in changes]}, indent=2))
    return 0


def build_parser():
    p = argparse.ArgumentParser(prog="tierstake")
    sub = p.add_subparsers(dest="cmd")

    sub.add_parser("init-db", help="Create database tables").set_defaults(func=cmd_init_db)
    sub.add_parser("seed", help="Seed default parameters").set_defaults(func=cmd_seed)
    sub.add_parser("daily-run", help="Run the daily jobs once").set_defaults(func=cmd_daily_run)

    decay = sub.add_parser("decay", help="Run one decay pass")
    decay.add_argument("--total-staked", type=Decimal, default=None, help="Override the aggregate stake")
    decay.set_defaults(func=cmd_decay)
    return p


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 2
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
