from coinswap.models.domain import (  # noqa: F401
    LIVE_TRADE_STATUSES,
    AuditLog,
    Coin,
    CoinTradeStatus,
    OfferStatus,
    ReportStatus,
    Trade,
    TradeMessage,
    TradeOffer,
    TradeRating,
    TradeReport,
    TradeShipping,
    TradeStatus,
    User,
    UserRole,
)
