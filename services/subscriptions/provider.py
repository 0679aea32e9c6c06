from typing import List

from sqlalchemy import select

from core.database.connection import DatabaseManager
from core.database.models import BrokerAccount, StrategySubscription
from core.logging import get_database_logger_safe
from core.trading.models import SizingConfig, SubscribedAccount


class DatabaseSubscriptionProvider:
    """Accounts subscribed to a strategy, read from PostgreSQL.

    Only enabled subscriptions on active accounts holding a credentials
    reference are returned. Token expiry is checked at placement time.
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager
        self.logger = get_database_logger_safe("subscriptions")

    async def get_subscribed_accounts(self, strategy: str) -> List[SubscribedAccount]:
        async with self.db_manager.get_session() as session:
            stmt = (
                select(StrategySubscription, BrokerAccount)
                .join(BrokerAccount, BrokerAccount.id == StrategySubscription.account_id)
                .where(
                    StrategySubscription.strategy_name == strategy,
                    StrategySubscription.is_active.is_(True),
                    BrokerAccount.is_active.is_(True),
                    BrokerAccount.credentials_ref.isnot(None),
                )
                .order_by(StrategySubscription.id)
            )
            rows = (await session.execute(stmt)).all()

        accounts = [
            SubscribedAccount(
                account_id=account.id,
                display_name=account.display_name,
                broker=account.broker,
                sizing=SizingConfig(lot_multiplier=subscription.lot_multiplier),
                credentials_ref=account.credentials_ref,
                token_expires_at=account.token_expires_at,
            )
            for subscription, account in rows
        ]
        self.logger.info("Subscribed accounts loaded", strategy=strategy, count=len(accounts))
        return accounts
