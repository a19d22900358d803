"""Coin catalog gateway.

The catalog is owned by another service; the trade engine only needs to know
who owns a coin and whether it is open to trade.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from sqlalchemy.orm import Session

from coinswap import models


@dataclass(frozen=True)
class CoinInfo:
    id: str
    owner_id: str
    trade_eligible: bool
    title: str


class CoinCatalog(Protocol):
    def get_coin(self, coin_id: str) -> Optional[CoinInfo]: ...


class SqlCoinCatalog:
    """Catalog backed by the local read replica of the `coins` table."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def get_coin(self, coin_id: str) -> Optional[CoinInfo]:
        coin = self.db.get(models.Coin, str(coin_id))
        if coin is None:
            return None
        return CoinInfo(
            id=coin.id,
            owner_id=coin.owner_id,
            trade_eligible=coin.trade_status == models.CoinTradeStatus.open_to_trade,
            title=coin.title,
        )
