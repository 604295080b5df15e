"""
Keyed record store.

Every record lives at an address derived from stable identifiers:

- config / insurance fund: fixed singleton seeds,
- market: market symbol,
- oracle: oracle symbol,
- position / stop-loss: owner + market address.

``snapshot()`` / ``restore()`` let the engine discard a failed transition.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterator, Optional

from ..core.risk.state import record_kind
from ..core.risk.types import (
    Config,
    InsuranceFund,
    Market,
    OraclePrice,
    StopLossOrder,
    UserPosition,
)
from .canonical import derive_address

CONFIG_SEED = "config"
INSURANCE_SEED = "insurance_fund"
MARKET_SEED = "market"
ORACLE_SEED = "oracle"
POSITION_SEED = "position"
STOP_LOSS_SEED = "stop_loss"


def config_address() -> str:
    return derive_address(CONFIG_SEED)


def insurance_address() -> str:
    return derive_address(INSURANCE_SEED)


def market_address(symbol: str) -> str:
    return derive_address(MARKET_SEED, symbol)


def oracle_address(symbol: str) -> str:
    return derive_address(ORACLE_SEED, symbol)


def position_address(owner: str, market: str) -> str:
    return derive_address(POSITION_SEED, owner, market)


def stop_loss_address(owner: str, market: str) -> str:
    return derive_address(STOP_LOSS_SEED, owner, market)


class Ledger:
    """In-memory ledger mapping address -> record."""

    def __init__(self) -> None:
        self._records: Dict[str, Any] = {}

    def get(self, address: str) -> Optional[Any]:
        return self._records.get(address)

    def put(self, address: str, record: Any) -> None:
        record_kind(record)  # rejects non-records
        self._records[address] = record

    def get_or_create(self, address: str, factory: Callable[[], Any]) -> Any:
        """Return the record at *address*, creating it with *factory* if absent.

        Creation is not persisted until the caller ``put``s the record.
        """
        existing = self._records.get(address)
        return existing if existing is not None else factory()

    # -- typed accessors -----------------------------------------------------

    def config(self) -> Optional[Config]:
        return self.get(config_address())

    def insurance_fund(self) -> Optional[InsuranceFund]:
        return self.get(insurance_address())

    def market(self, symbol: str) -> Optional[Market]:
        return self.get(market_address(symbol))

    def oracle(self, symbol: str) -> Optional[OraclePrice]:
        return self.get(oracle_address(symbol))

    def position(self, owner: str, market: Market) -> UserPosition:
        addr = position_address(owner, market.address)
        return self.get_or_create(
            addr, lambda: UserPosition(owner=owner, market=market.address, address=addr),
        )

    def stop_loss(self, owner: str, market: Market) -> StopLossOrder:
        addr = stop_loss_address(owner, market.address)
        return self.get_or_create(
            addr,
            lambda: StopLossOrder(
                owner=owner,
                market=market.address,
                position_address=position_address(owner, market.address),
                address=addr,
            ),
        )

    def positions(self) -> Iterator[UserPosition]:
        return (r for r in self._records.values() if isinstance(r, UserPosition))

    def open_positions_of(self, owner: str) -> int:
        return sum(1 for p in self.positions() if p.owner == owner and p.is_open)

    def open_position_count(self) -> int:
        return sum(1 for p in self.positions() if p.is_open)

    # -- transactions --------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        return dict(self._records)

    def restore(self, snapshot: Dict[str, Any]) -> None:
        self._records = dict(snapshot)

    def __len__(self) -> int:
        return len(self._records)
