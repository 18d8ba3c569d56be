"""
코인 가격 계산

모든 계산은 정수 센트 단위로 수행합니다 (부동소수점 오차 방지).

- 가격 → 필요 코인: 올림 (플랫폼이 손해 보지 않음)
- 캐시백: 내림 (플랫폼이 과다 지급하지 않음)

예) 1 코인 = 0.50 EUR, 캐시백 5%
    9.99 EUR → 999센트 → ceil(999 / 50) = 20 코인
    9.99 EUR 캐시백 → floor(999 * 5 / (100 * 50)) = 0 코인
    20.00 EUR 캐시백 → floor(2000 * 5 / 5000) = 2 코인
"""

from decimal import Decimal, InvalidOperation
from typing import Dict, List, NamedTuple, Optional

from dancecoin.config import Settings
from dancecoin.schemas.coins import CoinPackageResponse


class CoinPackage(NamedTuple):
    id: str
    coins: int
    price_eur: Decimal
    bonus_coins: int
    store_product_id: str

    @property
    def total_coins(self) -> int:
        return self.coins + self.bonus_coins


COIN_PACKAGES: List[CoinPackage] = [
    CoinPackage("coins_10", 10, Decimal("4.99"), 0, "com.tanzen.coins.coins_10"),
    CoinPackage("coins_24", 24, Decimal("11.99"), 2, "com.tanzen.coins.coins_25"),
    CoinPackage("coins_60", 60, Decimal("29.99"), 10, "com.tanzen.coins.coins_50"),
    CoinPackage("coins_100", 100, Decimal("49.99"), 10, "com.tanzen.coins.coins_100"),
    CoinPackage("coins_160", 160, Decimal("79.99"), 30, "com.tanzen.coins.coins_160"),
    CoinPackage("coins_200", 200, Decimal("99.99"), 50, "com.tanzen.coins.coins_250"),
]

_PACKAGES_BY_ID: Dict[str, CoinPackage] = {p.id: p for p in COIN_PACKAGES}


# 단일 강좌/견적 가격 상한
MAX_PRICE_EUR = Decimal("100000.00")


class InvalidPriceError(ValueError):
    """음수, 상한 초과, 또는 소수점 2자리를 넘는 EUR 금액"""


def eur_to_cents(price_eur) -> int:
    """
    EUR 금액을 정수 센트로 변환

    Raises:
        InvalidPriceError: 음수, 숫자가 아님, MAX_PRICE_EUR 초과, 또는 센트 이하 단위가 있는 경우
    """
    try:
        value = Decimal(str(price_eur))
    except (InvalidOperation, ValueError):
        raise InvalidPriceError(f"Invalid price: {price_eur}")

    if not value.is_finite() or value < 0:
        raise InvalidPriceError(f"Invalid price: {price_eur}")
    if value > MAX_PRICE_EUR:
        raise InvalidPriceError(f"Price exceeds {MAX_PRICE_EUR} EUR: {price_eur}")

    cents = value * 100
    if cents != cents.to_integral_value():
        raise InvalidPriceError(f"Price has more than 2 decimal places: {price_eur}")
    return int(cents)


def cents_to_eur(cents: int) -> Decimal:
    return (Decimal(cents) / Decimal(100)).quantize(Decimal("0.01"))


def coins_for_price(price_eur, settings: Settings) -> int:
    cents = eur_to_cents(price_eur)
    return -(-cents // settings.COIN_VALUE_CENTS)


def cashback_coins(price_eur, settings: Settings) -> int:
    cents = eur_to_cents(price_eur)
    return (cents * settings.CASHBACK_PERCENT) // (100 * settings.COIN_VALUE_CENTS)


def coins_to_eur(coins: int, settings: Settings) -> Decimal:
    return cents_to_eur(coins * settings.COIN_VALUE_CENTS)


def get_package(package_id: str) -> Optional[CoinPackage]:
    return _PACKAGES_BY_ID.get(package_id)


def package_responses() -> List[CoinPackageResponse]:
    return [
        CoinPackageResponse(
            id=p.id,
            coins=p.coins,
            bonus_coins=p.bonus_coins,
            total_coins=p.total_coins,
            price_eur=p.price_eur,
            store_product_id=p.store_product_id,
        )
        for p in COIN_PACKAGES
    ]
