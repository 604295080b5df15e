"""
Perps engine: the imperative shell around the pure risk core.

For every operation the engine:

1. loads the records the operation touches (creating position / stop-loss
   records on first use),
2. takes ONE validated price snapshot (aggregated index, then mark),
3. settles funding on the market and the position at that snapshot,
4. calls the pure operation with the same snapshot,
5. checks record invariants, writes the records and applies the transfer
   batch as one unit. A failure at any step leaves ledger and balances
   untouched.

Failures that require an emergency pause optionally pause the protocol as a
separate transition before the error is re-raised.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import replace
from typing import Callable, Deque, Dict, List, Optional, Tuple

from ..core.errors import ErrorCode, PerpInvariantError, PerpsError, require
from ..core.oracle import (
    FALLBACK_WINDOW,
    PrimaryOnly,
    PrimaryWithSecondary,
    aggregate,
    emergency_fallback,
    mark_price_fp,
    update_with_circuit_breaker,
)
from ..core.risk import admin, insurance, lifecycle, liquidation
from ..core.risk.admin import MarketParams
from ..core.risk.funding import accrue_market_funding, funding_effect, settle_position_funding
from ..core.risk.guards import guard_admin
from ..core.risk.invariants import (
    OpenInterestReport,
    check_insurance,
    check_market,
    check_position,
    check_stop_loss,
    reconcile_open_interest,
)
from ..core.risk.types import (
    PROGRAM_AUTHORITY,
    Config,
    Effect,
    Event,
    InsuranceFund,
    Market,
    OperationResult,
    OraclePrice,
    PriceFeed,
    UserPosition,
)
from ..core.risk.valuation import PositionValuation, value_position
from ..state.balances import BalanceTable
from ..state.ledger import (
    Ledger,
    config_address,
    insurance_address,
    market_address,
    oracle_address,
)
from .config import EngineConfig

logger = logging.getLogger(__name__)


class PerpsEngine:
    """Public operation surface over a ``Ledger`` and a ``BalanceTable``."""

    def __init__(
        self,
        settings: Optional[EngineConfig] = None,
        *,
        ledger: Optional[Ledger] = None,
        balances: Optional[BalanceTable] = None,
    ) -> None:
        self.settings = settings or EngineConfig()
        self.ledger = ledger or Ledger()
        self.balances = balances or BalanceTable()
        self.events: List[Effect] = []
        self._feeds: Dict[str, PriceFeed] = {}
        self._price_history: Dict[str, Deque[int]] = {}

    # ------------------------------------------------------------------
    # Record access
    # ------------------------------------------------------------------

    def config(self) -> Config:
        cfg = self.ledger.config()
        require(cfg is not None, ErrorCode.INITIALIZATION_FAILED, "config not initialized")
        return cfg

    def market(self, symbol: str) -> Market:
        m = self.ledger.market(symbol)
        require(m is not None, ErrorCode.MARKET_NOT_FOUND, symbol)
        return m

    def insurance_fund(self) -> InsuranceFund:
        fund = self.ledger.insurance_fund()
        require(fund is not None, ErrorCode.INITIALIZATION_FAILED, "insurance fund missing")
        return fund

    def position(self, owner: str, symbol: str) -> UserPosition:
        return self.ledger.position(owner, self.market(symbol))

    def oracle(self, symbol: str) -> OraclePrice:
        o = self.ledger.oracle(symbol)
        require(o is not None, ErrorCode.ORACLE_FEED_NOT_FOUND, symbol)
        return o

    # ------------------------------------------------------------------
    # Commit machinery
    # ------------------------------------------------------------------

    def _check_invariants(self, result: OperationResult) -> None:
        violations: list[str] = []
        if result.position is not None:
            violations += check_position(result.position)
        if result.market is not None:
            violations += check_market(result.market)
        if result.stop_loss is not None:
            violations += check_stop_loss(result.stop_loss)
        if result.insurance_fund is not None:
            violations += check_insurance(result.insurance_fund)
        if violations:
            raise PerpInvariantError(violations)

    def _commit(self, result: OperationResult) -> OperationResult:
        self._check_invariants(result)
        snapshot = self.ledger.snapshot()
        self._write_records(result)
        if result.transfers:
            try:
                self.balances.apply_batch(result.transfers, self.config().quote_mint)
            except PerpsError:
                self.ledger.restore(snapshot)
                raise

        for effect in (result.effect, *result.extra_effects):
            self.events.append(effect)
            logger.info("%s %s", effect.event.value, dict(effect.data))
        return result

    def _write_records(self, result: OperationResult) -> None:
        if result.config is not None:
            self.ledger.put(config_address(), result.config)
        if result.market is not None:
            self.ledger.put(market_address(result.market.symbol), result.market)
        if result.position is not None:
            self.ledger.put(result.position.address, result.position)
        if result.stop_loss is not None:
            self.ledger.put(result.stop_loss.address, result.stop_loss)
        if result.insurance_fund is not None:
            self.ledger.put(insurance_address(), result.insurance_fund)
        if result.oracle is not None:
            self.ledger.put(oracle_address(result.oracle.symbol), result.oracle)

    def _run(self, op: str, now: int, fn: Callable[[], OperationResult]) -> OperationResult:
        try:
            return self._commit(fn())
        except PerpsError as exc:
            logger.debug("%s rejected: %s", op, exc)
            if exc.requires_emergency_pause and self.settings.auto_pause_on_emergency:
                self._emergency_pause(op, exc, now)
            raise

    def _emergency_pause(self, op: str, exc: PerpsError, now: int) -> None:
        cfg = self.ledger.config()
        if cfg is None or cfg.paused:
            return
        logger.error("emergency pause after %s failed with %s", op, exc.code.name)
        self._commit(OperationResult(
            effect=Effect(Event.EMERGENCY_PAUSE, {
                "reason": exc.code.name,
                "operation": op,
                "timestamp": now,
            }),
            config=replace(cfg, paused=True),
        ))

    # ------------------------------------------------------------------
    # Price snapshot + funding
    # ------------------------------------------------------------------

    def _price_snapshot(self, market: Market, now: int) -> Tuple[OraclePrice, int]:
        """Validated mark price used for the whole operation."""
        primary = self.oracle(market.oracle_symbol)
        if market.secondary_feed is not None:
            source = PrimaryWithSecondary(primary, self._feeds.get(market.secondary_feed))
        else:
            source = PrimaryOnly(primary)
        index_fp = aggregate(source, now, self.settings.oracle)
        return primary, mark_price_fp(market, index_fp)

    def _settled(
        self, market: Market, position: UserPosition, price_fp: int, now: int,
    ) -> Tuple[Market, UserPosition, int]:
        """Market accrued to *now* and position funding folded in at *price_fp*."""
        if not self.settings.settle_funding_on_operations:
            return market, position, 0
        market = accrue_market_funding(market, now)
        if not position.is_open:
            return market, position, 0
        position, payment = settle_position_funding(position, market, price_fp, now)
        return market, position, payment

    def _position_op(
        self,
        op: str,
        owner: str,
        symbol: str,
        now: int,
        body: Callable[[Config, Market, UserPosition, OraclePrice, int], OperationResult],
    ) -> OperationResult:
        def build() -> OperationResult:
            config = self.config()
            market = self.market(symbol)
            oracle, price_fp = self._price_snapshot(market, now)
            market, position, payment = self._settled(
                market, self.position(owner, symbol), price_fp, now,
            )
            result = body(config, market, position, oracle, price_fp)
            extra = result.extra_effects
            if payment != 0:
                extra = (funding_effect(position, market, payment), *extra)
            # Funding settlement is committed even when the op leaves the record alone.
            return replace(
                result,
                market=result.market if result.market is not None else market,
                position=result.position if result.position is not None else position,
                extra_effects=extra,
            )
        return self._run(op, now, build)

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    def initialize_config(
        self,
        *,
        admin_key: str,
        quote_mint: str,
        fee_destination: str,
        vault: str,
        insurance_vault: str,
        fee_bps: int,
        liq_fee_bps: int,
        now: int = 0,
    ) -> OperationResult:
        def build() -> OperationResult:
            result = admin.initialize_config(
                self.ledger.config(),
                admin=admin_key,
                quote_mint=quote_mint,
                fee_destination=fee_destination,
                vault=vault,
                insurance_vault=insurance_vault,
                fee_bps=fee_bps,
                liq_fee_bps=liq_fee_bps,
            )
            return replace(result, insurance_fund=InsuranceFund(vault=insurance_vault))

        result = self._run("initialize_config", now, build)
        self.balances.set_owner(vault, PROGRAM_AUTHORITY)
        self.balances.set_owner(insurance_vault, PROGRAM_AUTHORITY)
        return result

    def set_fee_destination(self, *, signer: str, fee_destination: str, now: int = 0) -> OperationResult:
        return self._run("set_fee_destination", now, lambda: admin.set_fee_destination(
            self.config(), signer=signer, fee_destination=fee_destination,
        ))

    def pause(self, *, signer: str, paused: bool, now: int = 0) -> OperationResult:
        return self._run("pause", now, lambda: admin.pause(self.config(), signer=signer, paused=paused))

    def update_risk_parameters(
        self,
        *,
        signer: str,
        max_positions_per_user: Optional[int] = None,
        max_total_positions: Optional[int] = None,
        circuit_breaker_threshold_bps: Optional[int] = None,
        now: int = 0,
    ) -> OperationResult:
        return self._run("update_risk_parameters", now, lambda: admin.update_risk_parameters(
            self.config(),
            signer=signer,
            max_positions_per_user=max_positions_per_user,
            max_total_positions=max_total_positions,
            circuit_breaker_threshold_bps=circuit_breaker_threshold_bps,
        ))

    def create_market(self, params: MarketParams, *, signer: str, now: int = 0) -> OperationResult:
        return self._run("create_market", now, lambda: admin.create_market(
            self.config(),
            self.ledger.market(params.symbol),
            params,
            signer=signer,
            address=market_address(params.symbol),
            now=now,
        ))

    def edit_max_position(
        self, symbol: str, *, signer: str, new_max_base: int, now: int = 0,
    ) -> OperationResult:
        return self._run("edit_max_position", now, lambda: admin.edit_max_position(
            self.config(), self.market(symbol), signer=signer, new_max_base=new_max_base,
        ))

    def pause_market(self, symbol: str, *, signer: str, paused: bool, now: int = 0) -> OperationResult:
        return self._run("pause_market", now, lambda: admin.pause_market(
            self.config(), self.market(symbol), signer=signer, paused=paused,
        ))

    # ------------------------------------------------------------------
    # Oracle writes
    # ------------------------------------------------------------------

    def update_oracle(
        self,
        symbol: str,
        price_fp: int,
        now: int,
        *,
        signer: str,
        confidence_fp: int = 0,
        num_publishers: int = 0,
    ) -> OperationResult:
        """Publish a canonical price through the circuit breaker."""
        def build() -> OperationResult:
            config = self.config()
            guard_admin(config, signer)
            current = self.ledger.oracle(symbol) or OraclePrice(symbol=symbol)
            updated = update_with_circuit_breaker(
                current, price_fp, config.circuit_breaker_threshold_bps, now,
                confidence_fp=confidence_fp, num_publishers=num_publishers,
            )
            return OperationResult(
                effect=Effect(Event.ORACLE_UPDATED, {
                    "oracle": symbol,
                    "old_price_fp": current.price_fp,
                    "new_price_fp": price_fp,
                    "confidence_fp": confidence_fp,
                }),
                oracle=updated,
            )

        result = self._run("update_oracle", now, build)
        self._price_history.setdefault(symbol, deque(maxlen=FALLBACK_WINDOW)).append(price_fp)
        return result

    def ingest_feed(self, feed_id: str, feed: PriceFeed) -> None:
        """Store the latest raw external record; it is validated when read."""
        self._feeds[feed_id] = feed

    def fallback_price(self, symbol: str) -> int:
        """Moving-average price from recent canonical updates."""
        return emergency_fallback(tuple(self._price_history.get(symbol, ())))

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    def open_position(
        self, owner: str, symbol: str, *, is_long: bool, quote_to_spend: int, leverage_x: int, now: int,
    ) -> OperationResult:
        user_open = self.ledger.open_positions_of(owner)
        total_open = self.ledger.open_position_count()
        return self._position_op(
            "open_position", owner, symbol, now,
            lambda config, market, position, oracle, price_fp: lifecycle.open_position(
                config, market, position, price_fp, now,
                is_long=is_long,
                quote_to_spend=quote_to_spend,
                leverage_x=leverage_x,
                user_open_positions=user_open,
                total_open_positions=total_open,
            ),
        )

    def close_position(self, owner: str, symbol: str, *, now: int) -> OperationResult:
        order = self.ledger.stop_loss(owner, self.market(symbol))
        return self._position_op(
            "close_position", owner, symbol, now,
            lambda config, market, position, oracle, price_fp: lifecycle.close_position(
                config, market, position, price_fp, now,
                stop_loss=order,
            ),
        )

    def partial_close_position(
        self, owner: str, symbol: str, *, close_percentage: int, now: int,
    ) -> OperationResult:
        return self._position_op(
            "partial_close_position", owner, symbol, now,
            lambda config, market, position, oracle, price_fp: lifecycle.partial_close_position(
                config, market, position, oracle, price_fp, now,
                close_percentage=close_percentage,
            ),
        )

    def modify_position_margin(
        self, owner: str, symbol: str, *, margin_change: int, now: int,
    ) -> OperationResult:
        return self._position_op(
            "modify_position_margin", owner, symbol, now,
            lambda config, market, position, oracle, price_fp: lifecycle.modify_position_margin(
                config, market, position, oracle, price_fp, now,
                margin_change=margin_change,
            ),
        )

    def set_stop_loss(
        self, owner: str, symbol: str, *, trigger_price_fp: int, close_percentage: int, now: int,
    ) -> OperationResult:
        order = self.ledger.stop_loss(owner, self.market(symbol))
        return self._position_op(
            "set_stop_loss", owner, symbol, now,
            lambda config, market, position, oracle, price_fp: lifecycle.set_stop_loss(
                position, order, price_fp, now,
                trigger_price_fp=trigger_price_fp,
                close_percentage=close_percentage,
            ),
        )

    def execute_stop_loss(self, owner: str, symbol: str, *, executor: str, now: int) -> OperationResult:
        order = self.ledger.stop_loss(owner, self.market(symbol))
        return self._position_op(
            "execute_stop_loss", owner, symbol, now,
            lambda config, market, position, oracle, price_fp: lifecycle.execute_stop_loss(
                config, market, position, order, price_fp, now,
                executor=executor,
            ),
        )

    # ------------------------------------------------------------------
    # Liquidation + insurance
    # ------------------------------------------------------------------

    def enhanced_liquidate(
        self, owner: str, symbol: str, *, liquidator: str, max_liquidation_percentage: int, now: int,
    ) -> OperationResult:
        order = self.ledger.stop_loss(owner, self.market(symbol))
        result = self._position_op(
            "liquidate", owner, symbol, now,
            lambda config, market, position, oracle, price_fp: liquidation.liquidate(
                config, market, position, self.insurance_fund(), price_fp, now,
                liquidator=liquidator,
                max_liquidation_percentage=max_liquidation_percentage,
                stop_loss=order,
            ),
        )
        fund = self.insurance_fund()
        if not fund.is_healthy():
            logger.warning("insurance fund ratio %d bps below healthy threshold", fund.fund_ratio_bps())
        return result

    def liquidate(self, owner: str, symbol: str, *, liquidator: str, now: int) -> OperationResult:
        return self.enhanced_liquidate(
            owner, symbol, liquidator=liquidator,
            max_liquidation_percentage=liquidation.FULL_LIQUIDATION_PCT, now=now,
        )

    def deposit_insurance_fund(self, depositor: str, amount: int, *, now: int = 0) -> OperationResult:
        return self._run("deposit_insurance_fund", now, lambda: insurance.deposit(
            self.insurance_fund(), depositor=depositor, amount=amount,
        ))

    def withdraw_insurance_fund(
        self, *, signer: str, recipient: str, amount: int, reason: str, now: int = 0,
    ) -> OperationResult:
        return self._run("withdraw_insurance_fund", now, lambda: insurance.withdraw(
            self.config(), self.insurance_fund(),
            signer=signer, recipient=recipient, amount=amount, reason=reason,
        ))

    # ------------------------------------------------------------------
    # Funding
    # ------------------------------------------------------------------

    def settle_funding(self, owner: str, symbol: str, *, now: int) -> OperationResult:
        def build() -> OperationResult:
            market = self.market(symbol)
            position = self.position(owner, symbol)
            price_fp = self._price_snapshot(market, now)[1] if position.is_open else 0
            market = accrue_market_funding(market, now)
            settled, payment = settle_position_funding(position, market, price_fp, now)
            return OperationResult(
                effect=funding_effect(settled, market, payment),
                market=market,
                position=settled,
            )
        return self._run("settle_funding", now, build)

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    def valuation(self, owner: str, symbol: str, *, now: int) -> PositionValuation:
        market = self.market(symbol)
        _, price_fp = self._price_snapshot(market, now)
        return value_position(self.position(owner, symbol), market, price_fp)

    def reconcile(self, symbol: str) -> OpenInterestReport:
        return reconcile_open_interest(self.market(symbol), self.ledger.positions())
