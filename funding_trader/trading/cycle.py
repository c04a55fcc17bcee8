"""
Funding-rate trading cycle.

Fired at each funding timestamp. For every active, trading-enabled user and
every currency they enabled, opens a 1x position on the side that receives
funding: short when the rate is positive, long when it is negative.
Failures are isolated to the (user, currency) unit.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_FLOOR, Decimal
from enum import Enum
from typing import Dict, List, Optional

import structlog

from funding_trader.core.config import Config
from funding_trader.core.errors import ConfigurationError, FundingTraderError
from funding_trader.credentials.store import CredentialService
from funding_trader.exchanges.base import ExchangeClient
from funding_trader.exchanges.factory import ExchangeFactory
from funding_trader.exchanges.models import ApiResult, MarginType, NormalizedOrderResult, Side
from funding_trader.trading.accounts import UserAccount, UserStore
from funding_trader.utils.precision import ZERO, to_decimal
from funding_trader.utils.state_store import TradeRecorder

logger = structlog.get_logger(__name__)


class UnitOutcome(str, Enum):
    OPENED = "opened"
    SKIPPED_NO_CREDENTIAL = "skipped_no_credential"
    SKIPPED_NO_BALANCE = "skipped_no_balance"
    SKIPPED_SAME_SIDE = "skipped_same_side"
    SKIPPED_TOO_SMALL = "skipped_too_small"
    DRY_RUN = "dry_run"
    FAILED = "failed"


@dataclass
class UnitResult:
    user_id: str
    exchange: str
    coin: str
    outcome: UnitOutcome
    detail: str = ""
    side: Optional[Side] = None
    quantity: Optional[Decimal] = None


@dataclass
class CycleReport:
    started_at: datetime
    finished_at: Optional[datetime] = None
    results: List[UnitResult] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        out: Dict[str, int] = {}
        for r in self.results:
            out[r.outcome.value] = out.get(r.outcome.value, 0) + 1
        return out

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.outcome is UnitOutcome.FAILED)

    @property
    def all_failed(self) -> bool:
        """True when at least one unit ran and every unit failed."""
        return bool(self.results) and self.failed == len(self.results)


def decide_side(funding_rate: Decimal, zero_rate_side: str = "Sell") -> Side:
    """
    Side that collects funding.

    Positive rate: longs pay shorts, so Sell. Negative rate: Buy. A rate of
    exactly zero takes zero_rate_side.
    """
    if funding_rate > 0:
        return Side.SELL
    if funding_rate < 0:
        return Side.BUY
    return Side.parse(zero_rate_side)


def compute_notional(available: Decimal, price: Decimal, margin_type: MarginType = MarginType.INVERSE) -> Decimal:
    """
    Whole-unit quote notional the full available collateral supports at 1x.

    Inverse contracts hold collateral in the coin itself, so it is valued at
    price. Linear contracts hold collateral in the settle coin already.
    """
    if margin_type is MarginType.INVERSE:
        raw = available * price
    else:
        raw = available
    return raw.to_integral_value(rounding=ROUND_FLOOR)


class TradingCycle:
    """
    One scheduled pass over all trading users.

    run() is the scheduler entry point: no arguments, never raises. A double
    firing can at worst place a duplicate order.
    """

    def __init__(
        self,
        user_store: UserStore,
        credentials: CredentialService,
        factory: ExchangeFactory,
        recorder: TradeRecorder,
        config: Config,
    ):
        self.user_store = user_store
        self.credentials = credentials
        self.factory = factory
        self.recorder = recorder
        self.config = config
        self.last_report: Optional[CycleReport] = None

    # ------------------------
    # Scheduler entry points
    # ------------------------
    def run(self) -> None:
        report = CycleReport(started_at=datetime.now(timezone.utc))
        try:
            users = self.user_store.list_trading_users()
        except Exception:
            logger.exception("cycle_user_listing_failed")
            self.recorder.record_log("error", "cycle", "could not list trading users")
            report.finished_at = datetime.now(timezone.utc)
            self.last_report = report
            return

        logger.info("cycle_started", users=len(users), dry_run=self.config.trading.dry_run)
        workers = max(1, self.config.trading.max_workers)
        if workers == 1 or len(users) <= 1:
            for user in users:
                report.results.extend(self._execute_user_safely(user))
        else:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                for results in pool.map(self._execute_user_safely, users):
                    report.results.extend(results)

        report.finished_at = datetime.now(timezone.utc)
        self.last_report = report
        logger.info("cycle_finished", users=len(users), outcomes=report.counts())
        self.recorder.record_log("info", "cycle", "trading cycle finished", outcomes=report.counts())

    def record_asset_snapshots(self) -> None:
        """Hourly balance snapshot for every active user with a valid credential."""
        try:
            users = self.user_store.list_active_users()
        except Exception:
            logger.exception("snapshot_user_listing_failed")
            return

        for user in users:
            try:
                client = self.credentials.client_for(user.user_id, user.exchange)
            except FundingTraderError as exc:
                logger.warning("snapshot_client_failed", user_id=user.user_id, error=exc.message)
                continue
            if client is None:
                continue
            balances = client.get_wallet_balance()
            if not balances.ok:
                logger.warning("snapshot_balance_failed", user_id=user.user_id, error=balances.ret_msg)
                continue
            self.recorder.record_asset_snapshot(
                {
                    "user_id": user.user_id,
                    "exchange": user.exchange,
                    "balances": [
                        {
                            "coin": b.coin,
                            "wallet_balance": b.wallet_balance,
                            "available_balance": b.available_balance,
                            "unrealized_pnl": b.unrealized_pnl,
                            "total_equity": b.total_equity,
                        }
                        for b in balances.result or []
                    ],
                }
            )

    # ------------------------
    # Manual override
    # ------------------------
    def close_all(
        self, user_id: str, exchange: Optional[str] = None, symbol: Optional[str] = None
    ) -> List[ApiResult[NormalizedOrderResult]]:
        """Close every open position of a user on one exchange, regardless of cycle state."""
        user = self.user_store.get(user_id)
        exchange = (exchange or (user.exchange if user else self.config.exchange.default_exchange)).lower()
        client = self.credentials.client_for(user_id, exchange)
        if client is None:
            raise ConfigurationError(f"no valid {exchange} credential for user {user_id}")

        results = client.close_all_positions(symbol)
        for result in results:
            if result.ok:
                self._record_trade(user_id, exchange, symbol or result.result.symbol, "close_all", result.result)
            else:
                self.recorder.record_log(
                    "error", "close_all", result.ret_msg, user_id=user_id, exchange=exchange, code=result.ret_code
                )
        logger.info("close_all_requested", user_id=user_id, exchange=exchange, symbol=symbol, orders=len(results))
        return results

    # ------------------------
    # Per user / per currency
    # ------------------------
    def _execute_user_safely(self, user: UserAccount) -> List[UnitResult]:
        try:
            return self.execute_user(user)
        except Exception as exc:
            logger.exception("user_execution_failed", user_id=user.user_id)
            return [
                UnitResult(user.user_id, user.exchange, coin, UnitOutcome.FAILED, repr(exc))
                for coin in user.enabled_currencies
            ]

    def execute_user(self, user: UserAccount) -> List[UnitResult]:
        log = logger.bind(user_id=user.user_id, exchange=user.exchange)
        coins = user.enabled_currencies
        try:
            client = self.credentials.client_for(user.user_id, user.exchange)
        except FundingTraderError as exc:
            log.error("client_construction_failed", kind=exc.kind, error=exc.message)
            self.recorder.record_log("error", "credential", exc.message, user_id=user.user_id, exchange=user.exchange)
            return [UnitResult(user.user_id, user.exchange, c, UnitOutcome.FAILED, exc.message) for c in coins]

        if client is None:
            log.info("no_valid_credential")
            return [UnitResult(user.user_id, user.exchange, c, UnitOutcome.SKIPPED_NO_CREDENTIAL) for c in coins]

        results = []
        for coin in coins:
            try:
                result = self.execute_currency_trade(client, user, coin)
            except Exception as exc:
                log.exception("unit_failed", coin=coin)
                result = UnitResult(user.user_id, user.exchange, coin, UnitOutcome.FAILED, repr(exc))
            if result.outcome is UnitOutcome.FAILED:
                self.recorder.record_log(
                    "error", "trade", result.detail, user_id=user.user_id, exchange=user.exchange, coin=coin
                )
            results.append(result)
        return results

    def execute_currency_trade(self, client: ExchangeClient, user: UserAccount, coin: str) -> UnitResult:
        """
        Balance, leverage, ticker, sizing, position check, then market order.

        Steps run strictly in order; each reads state fetched by the previous.
        """
        trading = self.config.trading
        log = logger.bind(user_id=user.user_id, exchange=user.exchange, coin=coin)

        def unit(outcome: UnitOutcome, detail: str = "", **kwargs) -> UnitResult:
            return UnitResult(user.user_id, user.exchange, coin, outcome, detail, **kwargs)

        def failed(step: str, result: ApiResult) -> UnitResult:
            log.warning("unit_step_failed", step=step, code=result.ret_code, kind=result.error_kind, error=result.ret_msg)
            return unit(UnitOutcome.FAILED, f"{step}: {result.ret_msg}")

        balance_coin = coin if client.margin_type is MarginType.INVERSE else client.settle_coin
        balances = client.get_wallet_balance(balance_coin)
        if not balances.ok:
            return failed("balance", balances)
        available = next(
            (b.available_balance for b in balances.result or [] if b.coin.upper() == balance_coin.upper()),
            ZERO,
        )
        if available <= 0:
            log.info("no_available_balance", balance_coin=balance_coin)
            return unit(UnitOutcome.SKIPPED_NO_BALANCE, f"{balance_coin} available balance {available}")

        leverage = client.set_leverage(coin, trading.leverage)
        if not leverage.ok:
            log.warning("set_leverage_failed", code=leverage.ret_code, error=leverage.ret_msg)

        ticker = client.get_ticker(coin)
        if not ticker.ok:
            return failed("ticker", ticker)
        price = ticker.result.last_price
        rate = ticker.result.funding_rate
        if rate is None:
            funding = client.get_funding_rate(coin)
            if not funding.ok:
                return failed("funding_rate", funding)
            rate = funding.result.rate

        notional = compute_notional(available, price, client.margin_type)
        if notional < to_decimal(trading.min_order_notional, "min_order_notional"):
            log.info("position_too_small", notional=str(notional))
            return unit(UnitOutcome.SKIPPED_TOO_SMALL, f"notional {notional}")

        side = decide_side(rate, trading.zero_rate_side)
        quantity = client.order_quantity(coin, notional, price)
        if not quantity.ok:
            return failed("order_quantity", quantity)
        qty = quantity.result
        if qty <= 0:
            log.info("quantity_rounds_to_zero", notional=str(notional))
            return unit(UnitOutcome.SKIPPED_TOO_SMALL, f"notional {notional} rounds to zero quantity")

        positions = client.get_positions(coin)
        if not positions.ok:
            return failed("positions", positions)
        held = positions.result or []
        if any(p.side is side.position_side for p in held):
            log.info("same_side_position_held", side=side.value)
            return unit(UnitOutcome.SKIPPED_SAME_SIDE, side=side)
        opposite = [p for p in held if p.side is not side.position_side]

        log = log.bind(side=side.value, qty=str(qty), funding_rate=str(rate), price=str(price))
        if trading.dry_run:
            log.info("dry_run_order", closing=len(opposite))
            return unit(UnitOutcome.DRY_RUN, side=side, quantity=qty)

        for position in opposite:
            closed = client.close_position(position)
            if not closed.ok:
                return failed("close_opposite", closed)
            self._record_trade(user.user_id, user.exchange, coin, "close", closed.result, funding_rate=rate)

        order = client.place_market_order(coin, side, qty)
        if not order.ok:
            return failed("place_order", order)
        self._record_trade(
            user.user_id, user.exchange, coin, "open", order.result, funding_rate=rate, price=price, notional=notional
        )
        log.info("position_opened", order_id=order.result.order_id)
        return unit(UnitOutcome.OPENED, side=side, quantity=qty)

    def _record_trade(self, user_id: str, exchange: str, coin: str, action: str, order: NormalizedOrderResult, **extra):
        self.recorder.record_trade(
            {
                "user_id": user_id,
                "exchange": exchange,
                "coin": coin,
                "action": action,
                **{k: v for k, v in extra.items() if v is not None},
                "order": order.to_record(),
            }
        )
