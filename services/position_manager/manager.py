"""
Signal processing state machine.

Per symbol there is at most one logical ACTIVE trade. Entries open a trade
(after squaring off an opposite-direction one), exits square off the open
trade. Broker outcomes never change the trade lifecycle: once legs are
computed and a trade is opened the signal is reported as processed, even if
every placement failed.
"""

import time
from typing import Dict, List, Optional, Sequence

from core.config.settings import Settings
from core.logging import get_trading_logger_safe, get_audit_logger_safe
from core.trading.interfaces import MarketDataClient, SubscriptionProvider
from core.trading.models import (
    EntrySignal,
    ExecutionResult,
    ExitSignal,
    Leg,
    OptionChain,
    Signal,
    SubscribedAccount,
    Trade,
)
from core.trading.symbols import calculate_quantity, normalize_symbol
from core.monitoring.metrics import RelayMetricsCollector
from core.utils.exceptions import (
    DuplicateEntryError,
    NoActiveTradeError,
    ParseError,
    REQUEST_TERMINAL_ERRORS,
    StrategyCalculationError,
)
from core.utils.scheduler import DeferredActionScheduler
from services.broker_fanout import BrokerFanoutExecutor, build_stop_loss_order
from services.notifications import NotificationSink
from services.signal_parser import SignalParser
from services.strike_selector import StrikeSelector
from services.trade_ledger import TradeLedger
from .locks import NullSymbolLockProvider, SymbolLockProvider
from .models import ExecutionSummary, SignalOutcome, SquareOffOutcome

ENTRY_TAG_PREFIX = "BBTrap"
SQUARE_OFF_TAG_PREFIX = "SquareOff"


class PositionManager:

    def __init__(
        self,
        settings: Settings,
        parser: SignalParser,
        selector: StrikeSelector,
        ledger: TradeLedger,
        executor: BrokerFanoutExecutor,
        notifier: NotificationSink,
        market_data: MarketDataClient,
        subscriptions: SubscriptionProvider,
        scheduler: Optional[DeferredActionScheduler] = None,
        locks: Optional[SymbolLockProvider] = None,
        metrics: Optional[RelayMetricsCollector] = None,
    ):
        self.settings = settings
        self.parser = parser
        self.selector = selector
        self.ledger = ledger
        self.executor = executor
        self.notifier = notifier
        self.market_data = market_data
        self.subscriptions = subscriptions
        self.scheduler = scheduler or DeferredActionScheduler()
        self.locks = locks or NullSymbolLockProvider()
        self.metrics = metrics
        self.logger = get_trading_logger_safe("position_manager")
        self.audit_logger = get_audit_logger_safe("position_manager")

    async def process_alert(self, text: str) -> SignalOutcome:
        """Parse raw alert text and process the resulting signal."""
        try:
            signal = self.parser.parse_or_raise(text)
        except ParseError as e:
            self._record_rejection(e)
            self.audit_logger.warning("Alert rejected", error_type="ParseError",
                                      text_length=len(text or ""))
            raise
        return await self.process_signal(signal)

    async def process_signal(self, signal: Signal) -> SignalOutcome:
        kind = "entry" if isinstance(signal, EntrySignal) else "exit"
        self.audit_logger.info("Signal received", **signal.to_alert_dict())
        started = time.perf_counter()
        try:
            async with self.locks.hold(signal.symbol):
                if isinstance(signal, EntrySignal):
                    outcome = await self._handle_entry(signal)
                else:
                    outcome = await self._handle_exit(signal)
        except REQUEST_TERMINAL_ERRORS as e:
            self._record_rejection(e)
            self.audit_logger.warning("Signal rejected", kind=kind, symbol=signal.symbol,
                                      error_type=type(e).__name__, error=str(e))
            raise

        if self.metrics:
            self.metrics.signals_processed.labels(kind=kind).inc()
            self.metrics.processing_latency.labels(kind=kind).observe(time.perf_counter() - started)
            if not outcome.durable:
                self.metrics.non_durable_writes.inc()
        return outcome

    def _record_rejection(self, error: Exception) -> None:
        if self.metrics:
            self.metrics.signals_rejected.labels(reason=type(error).__name__).inc()

    def _record_attempts(self, accounts: Sequence[SubscribedAccount],
                         results: Sequence[ExecutionResult]) -> None:
        if self.metrics:
            self.metrics.record_order_attempts({a.account_id: a.broker for a in accounts}, results)

    def _record_notification(self, sent: bool) -> None:
        if self.metrics:
            self.metrics.notifications.labels(outcome="sent" if sent else "not_sent").inc()

    # --- Entry ---

    async def _handle_entry(self, signal: EntrySignal) -> SignalOutcome:
        square_off: Optional[SquareOffOutcome] = None
        open_trade = await self.ledger.find_open_trade(signal.symbol)

        if open_trade is not None:
            if open_trade.direction == signal.direction:
                if self.settings.position.same_direction_policy == "reject":
                    raise DuplicateEntryError(
                        f"{signal.direction.value.upper()} trade already open for {open_trade.normalized_symbol}",
                        symbol=open_trade.normalized_symbol,
                        open_trade_id=open_trade.id,
                    )
                self.logger.warning("Same-direction entry while trade is open, opening another",
                                    symbol=open_trade.normalized_symbol, open_trade_id=open_trade.id,
                                    direction=signal.direction.value)
            else:
                self.logger.info("Opposite-direction entry, squaring off open trade first",
                                 symbol=open_trade.normalized_symbol, open_trade_id=open_trade.id,
                                 open_direction=open_trade.direction.value,
                                 new_direction=signal.direction.value)
                square_off = await self._square_off(
                    open_trade, reason=f"Reversal to {signal.direction.value.upper()}"
                )

        legs = await self._compute_entry_legs(signal)
        trade = await self.ledger.open_trade(signal, legs)

        accounts = await self._load_accounts()
        overrides = self.settings.strategy.lot_sizes
        quantities = {
            account.account_id: calculate_quantity(signal.symbol, account.sizing.lot_multiplier, overrides)
            for account in accounts
        }
        results = await self.executor.execute(legs, accounts, quantities, tag_prefix=ENTRY_TAG_PREFIX)
        self._record_attempts(accounts, results)
        attach = await self.ledger.attach_results(trade.id, results)

        scheduled = self._schedule_stop_losses(trade, accounts, results)
        notification = await self.notifier.notify("OPTION TRADE", signal, legs, results)
        self._record_notification(notification.sent)

        outcome = SignalOutcome(
            kind="entry",
            signal=signal.to_alert_dict(),
            trade_id=trade.id,
            legs=legs,
            execution_results=results,
            summary=ExecutionSummary.from_results(results),
            square_off=square_off,
            durable=trade.durable and attach.durable,
            stop_losses_scheduled=scheduled,
            notified=notification.sent,
        )
        self.audit_logger.info("Entry processed", trade_id=trade.id, symbol=trade.normalized_symbol,
                               direction=signal.direction.value,
                               succeeded=outcome.summary.succeeded, failed=outcome.summary.failed,
                               durable=outcome.durable)
        return outcome

    async def _fresh_chain(self, symbol: str) -> OptionChain:
        expiries = await self.market_data.list_expiries(symbol)
        if not expiries:
            raise StrategyCalculationError(f"No expiries available for {normalize_symbol(symbol)}")
        return await self.market_data.fetch_option_chain(symbol, expiries[0])

    async def _compute_entry_legs(self, signal: EntrySignal) -> List[Leg]:
        chain = await self._fresh_chain(signal.symbol)
        selection = self.selector.select(chain, self.settings.strategy.target_delta)
        return self.selector.build_legs(selection, signal.direction)

    async def _load_accounts(self) -> List[SubscribedAccount]:
        try:
            accounts = await self.subscriptions.get_subscribed_accounts(self.settings.strategy.name)
        except Exception as e:
            self.logger.error("Could not load subscribed accounts", strategy=self.settings.strategy.name,
                              error=str(e))
            return []
        if not accounts:
            self.logger.warning("No accounts subscribed", strategy=self.settings.strategy.name)
        return accounts

    def _schedule_stop_losses(self, trade: Trade, accounts: Sequence[SubscribedAccount],
                              results: Sequence[ExecutionResult]) -> int:
        if not self.settings.stop_loss.enabled:
            return 0
        by_id: Dict[str, SubscribedAccount] = {a.account_id: a for a in accounts}
        scheduled = 0
        for result in results:
            account = by_id.get(result.account_id)
            if not result.success or account is None or not result.placed_quantity:
                continue
            leg = trade.legs[result.leg_index]
            order = build_stop_loss_order(leg, result, self.executor.exchange, self.settings.stop_loss)
            self.scheduler.schedule(
                self.settings.stop_loss.delay_seconds,
                self._stop_loss_action(account, order),
                name=f"stop_loss:{account.account_id}:{leg.ref}",
                group=trade.id,
            )
            scheduled += 1
        return scheduled

    def _stop_loss_action(self, account: SubscribedAccount, order):
        async def place():
            client = self.executor.registry.get(account.broker)
            await client.place_leg(account, order)
        return place

    # --- Exit ---

    async def _handle_exit(self, signal: ExitSignal) -> SignalOutcome:
        open_trade = await self.ledger.find_open_trade(signal.symbol)
        if open_trade is None:
            raise NoActiveTradeError(
                f"No active trade to exit for {signal.normalized_symbol}",
                symbol=signal.normalized_symbol,
            )

        square_off = await self._square_off(open_trade, reason=signal.exit_reason, signal=signal)
        self.audit_logger.info("Exit processed", trade_id=open_trade.id,
                               symbol=open_trade.normalized_symbol, reason=signal.exit_reason,
                               succeeded=square_off.summary.succeeded,
                               failed=square_off.summary.failed)
        return SignalOutcome(
            kind="exit",
            signal=signal.to_alert_dict(),
            trade_id=open_trade.id,
            legs=square_off.legs,
            execution_results=square_off.execution_results,
            summary=square_off.summary,
            durable=square_off.completed_durably,
            notified=square_off.notified,
            square_off=square_off,
        )

    # --- Square-off ---

    @staticmethod
    def square_off_price(leg: Leg, chain: Optional[OptionChain]) -> float:
        """Freshest ask (else last price) for the leg's strike, else its recorded price."""
        if chain is not None:
            quotes = chain.strikes.get(float(leg.strike))
            quote = quotes.side(leg.option_type) if quotes else None
            if quote is not None and quote.best_price:
                return quote.best_price
        return leg.limit_price

    def resolve_square_off_quantities(self, trade: Trade, accounts: Sequence[SubscribedAccount]):
        """(quantities by account id, skipped account ids).

        Executed quantity from the original trade wins; otherwise the account's
        lot multiplier times the symbol's lot size; otherwise the account is
        skipped.
        """
        quantities: Dict[str, int] = {}
        skipped: List[str] = []
        for account in accounts:
            quantity = trade.executed_quantity(account.account_id)
            if quantity is None:
                quantity = calculate_quantity(trade.symbol, account.sizing.lot_multiplier,
                                              self.settings.strategy.lot_sizes)
            if quantity:
                quantities[account.account_id] = quantity
            else:
                skipped.append(account.account_id)
                self.logger.warning("No square-off quantity for account, skipping",
                                    trade_id=trade.id, account_id=account.account_id)
        return quantities, skipped

    async def _square_off(self, trade: Trade, reason: str,
                          signal: Optional[ExitSignal] = None) -> SquareOffOutcome:
        cancelled = self.scheduler.cancel_group(trade.id)

        try:
            chain: Optional[OptionChain] = await self._fresh_chain(trade.symbol)
        except Exception as e:
            self.logger.warning("Square-off quotes unavailable, using recorded leg prices",
                                trade_id=trade.id, error=str(e))
            chain = None

        legs = [leg.reversed(price=self.square_off_price(leg, chain)) for leg in trade.legs]
        results: List[ExecutionResult] = []
        skipped: List[str] = []
        try:
            accounts = await self._load_accounts()
            quantities, skipped = self.resolve_square_off_quantities(trade, accounts)
            eligible = [a for a in accounts if a.account_id in quantities]
            results = await self.executor.execute(legs, eligible, quantities,
                                                  tag_prefix=SQUARE_OFF_TAG_PREFIX)
            self._record_attempts(eligible, results)
        finally:
            completion = await self.ledger.complete_trade(trade.id)

        outcome = SquareOffOutcome(
            trade_id=trade.id,
            reason=reason,
            legs=legs,
            execution_results=results,
            summary=ExecutionSummary.from_results(results),
            skipped_accounts=skipped,
            cancelled_stop_losses=cancelled,
            completed_durably=completion.durable,
        )
        notification = await self.notifier.notify("SQUARE-OFF", signal or trade.signal, legs, results)
        outcome.notified = notification.sent
        self._record_notification(notification.sent)
        if self.metrics:
            self.metrics.square_offs.labels(trigger="exit" if signal is not None else "reversal").inc()
        self.logger.info("Square-off complete", trade_id=trade.id, reason=reason,
                         succeeded=outcome.summary.succeeded, failed=outcome.summary.failed,
                         skipped_accounts=len(skipped), notified=notification.sent)
        return outcome
