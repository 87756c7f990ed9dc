# promo_engine/models/types.py
from sqlalchemy.types import TypeDecorator, BigInteger

from promo_engine.money import Money


class MoneyType(TypeDecorator):
    """Stores Money as a BIGINT number of cents."""
    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, Money):
            return value.cents
        raise TypeError(f"MoneyType expects Money, got {type(value).__name__}")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Money(int(value))
