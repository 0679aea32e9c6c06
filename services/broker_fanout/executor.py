"""
Fan-out of option legs to every subscribed account.

One placement attempt per (leg, account) pair, never retried. Failures are
isolated per attempt and always produce a failed ExecutionResult, so the
result list has exactly len(legs) * len(accounts) entries, ordered leg-major.
"""

import asyncio
from typing import Dict, List, Mapping, Optional, Sequence

from core.logging import get_trading_logger_safe, bind_account_context
from core.trading.models import ExecutionResult, Leg, LegOrder, SubscribedAccount
from core.utils.exceptions import BrokerExecutionError
from core.utils.ids import generate_order_tag
from core.utils.rate_limiter import RateLimiter
from core.utils.tick_size import round_to_tick
from .registry import BrokerRegistry


class BrokerFanoutExecutor:

    def __init__(
        self,
        registry: BrokerRegistry,
        exchange: str = "NSEFO",
        inter_request_delay: float = 1.0,
        parallel_accounts: bool = False,
        attempt_timeout: float = 30.0,
    ):
        self.registry = registry
        self.exchange = exchange
        self.inter_request_delay = inter_request_delay
        self.parallel_accounts = parallel_accounts
        self.attempt_timeout = attempt_timeout
        self._account_limiters: Dict[str, RateLimiter] = {}
        self.logger = get_trading_logger_safe("broker_fanout")

    def _limiter_for(self, account_id: str) -> RateLimiter:
        limiter = self._account_limiters.get(account_id)
        if limiter is None:
            limiter = RateLimiter(self.inter_request_delay, name=f"account:{account_id}")
            self._account_limiters[account_id] = limiter
        return limiter

    def build_order(self, leg: Leg, quantity: int, tag_prefix: str) -> LegOrder:
        return LegOrder(
            instrument_id=leg.broker_instrument_id,
            exchange=self.exchange,
            side=leg.action,
            quantity=quantity,
            limit_price=round_to_tick(leg.limit_price),
            tag=generate_order_tag(tag_prefix, leg.option_type.value, leg.strike),
        )

    async def _attempt(self, leg_index: int, leg: Leg, account: SubscribedAccount,
                       quantity: Optional[int], tag_prefix: str) -> ExecutionResult:
        log = bind_account_context(self.logger, account.account_id, account.broker)
        base = dict(account_id=account.account_id, display_name=account.display_name,
                    leg_ref=leg.ref, leg_index=leg_index)
        try:
            if not quantity or quantity <= 0:
                raise BrokerExecutionError("No order quantity resolved for account",
                                           broker=account.broker, account_id=account.account_id)
            client = self.registry.get(account.broker)
            order = self.build_order(leg, quantity, tag_prefix)
            await self._limiter_for(account.account_id).wait()
            ack = await asyncio.wait_for(client.place_leg(account, order), timeout=self.attempt_timeout)
        except asyncio.TimeoutError:
            log.warning("Leg placement timed out", leg=leg.ref, timeout=self.attempt_timeout)
            return ExecutionResult(**base, success=False, placed_quantity=quantity,
                                   error=f"Timed out after {self.attempt_timeout:g}s")
        except BrokerExecutionError as e:
            log.warning("Leg placement failed", leg=leg.ref, error=e.message)
            return ExecutionResult(**base, success=False, placed_quantity=quantity,
                                   broker_response=e.api_response, error=e.message)
        except Exception as e:
            log.error("Leg placement raised unexpectedly", leg=leg.ref, error=str(e))
            return ExecutionResult(**base, success=False, placed_quantity=quantity, error=str(e))

        log.info("Leg placed", leg=leg.ref, quantity=quantity, price=order.limit_price,
                 order_id=ack.order_id)
        return ExecutionResult(**base, success=True, placed_quantity=quantity,
                               placed_price=order.limit_price, broker_order_id=ack.order_id,
                               broker_response=ack.raw)

    async def _run_account(self, legs: Sequence[Leg], account: SubscribedAccount,
                           quantity: Optional[int], tag_prefix: str) -> List[ExecutionResult]:
        # Attempts for one account always run one after another
        results = []
        for leg_index, leg in enumerate(legs):
            results.append(await self._attempt(leg_index, leg, account, quantity, tag_prefix))
        return results

    async def execute(
        self,
        legs: Sequence[Leg],
        accounts: Sequence[SubscribedAccount],
        quantities: Mapping[str, int],
        tag_prefix: str = "BBTrap",
    ) -> List[ExecutionResult]:
        """Place every leg for every account.

        Returns one result per (leg, account), ordered leg-major then by the
        order of `accounts`.
        """
        if self.parallel_accounts:
            per_account = await asyncio.gather(*[
                self._run_account(legs, account, quantities.get(account.account_id), tag_prefix)
                for account in accounts
            ])
        else:
            per_account = []
            for account in accounts:
                per_account.append(
                    await self._run_account(legs, account, quantities.get(account.account_id), tag_prefix)
                )

        results = [
            per_account[account_index][leg_index]
            for leg_index in range(len(legs))
            for account_index in range(len(accounts))
        ]
        succeeded = sum(1 for r in results if r.success)
        self.logger.info("Fan-out complete", tag_prefix=tag_prefix, legs=len(legs),
                         accounts=len(accounts), attempts=len(results),
                         succeeded=succeeded, failed=len(results) - succeeded)
        return results
