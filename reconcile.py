import argparse
import logging

from sqlalchemy import select

from balances import BalanceService
from config import get_settings
from database import session_scope
from identity import IdentityContext
from models import Account

logger = logging.getLogger(__name__)


def reconcile_all(repair: bool = False) -> int:
    """Audit every user's account balances; optionally rewrite drifted ones.

    Returns the number of drifted accounts found.
    """
    drifted = 0
    with session_scope() as session:
        user_ids = session.scalars(select(Account.user_id).distinct()).all()
        for user_id in user_ids:
            balances = BalanceService(session, IdentityContext(user_id=user_id))
            for drift in balances.audit():
                drifted += 1
                logger.warning(
                    f"balance_drift: user={user_id} account={drift.account_id} "
                    f"stored={drift.stored} derived={drift.derived}"
                )
                if repair:
                    balances.rebuild(drift.account_id)
    logger.info(f"reconcile_run: drifted={drifted} repaired={repair}")
    return drifted


def main() -> None:
    parser = argparse.ArgumentParser(description="Check stored account balances")
    parser.add_argument(
        "--repair", action="store_true", help="rewrite drifted balances"
    )
    args = parser.parse_args()
    logging.basicConfig(level=get_settings().log_level)
    drifted = reconcile_all(repair=args.repair)
    if drifted and not args.repair:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
