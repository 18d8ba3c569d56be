from decimal import Decimal

import pytest

from dancecoin.config import Settings
from dancecoin.services.pricing import (
    COIN_PACKAGES,
    InvalidPriceError,
    cashback_coins,
    coins_for_price,
    coins_to_eur,
    eur_to_cents,
    get_package,
)


@pytest.fixture
def settings():
    return Settings(_env_file=None, COIN_VALUE_CENTS=50, CASHBACK_PERCENT=5)


class TestPricing:
    """코인 가격 계산 테스트"""

    def test_coins_for_price_rounds_up(self, settings):
        assert coins_for_price(Decimal("9.99"), settings) == 20
        assert coins_for_price(Decimal("10.00"), settings) == 20
        assert coins_for_price(Decimal("10.01"), settings) == 21
        assert coins_for_price(Decimal("0.01"), settings) == 1
        assert coins_for_price(Decimal("0"), settings) == 0

    def test_cashback_rounds_down(self, settings):
        assert cashback_coins(Decimal("9.99"), settings) == 0
        assert cashback_coins(Decimal("10.00"), settings) == 1
        assert cashback_coins(Decimal("19.99"), settings) == 1
        assert cashback_coins(Decimal("20.00"), settings) == 2

    def test_rounding_is_asymmetric(self, settings):
        assert coins_for_price(Decimal("4.99"), settings) == 10
        assert cashback_coins(Decimal("4.99"), settings) == 0
        assert coins_for_price(Decimal("49.99"), settings) == 100
        assert cashback_coins(Decimal("49.99"), settings) == 4

    def test_rounding_never_favours_the_buyer(self, settings):
        for cents in range(0, 5001, 7):
            price = Decimal(cents) / 100
            coins = coins_for_price(price, settings)
            assert coins * settings.COIN_VALUE_CENTS >= cents
            cashback = cashback_coins(price, settings)
            assert cashback * settings.COIN_VALUE_CENTS * 100 <= cents * settings.CASHBACK_PERCENT

    def test_accepts_strings_and_floats_with_two_decimals(self, settings):
        assert eur_to_cents("4.99") == 499
        assert eur_to_cents(4.99) == 499
        assert coins_for_price("49.99", settings) == 100

    @pytest.mark.parametrize(
        "price", ["9.999", "-1", "abc", "NaN", "1e400", "Infinity", "100000.01"]
    )
    def test_rejects_invalid_prices(self, price, settings):
        with pytest.raises(InvalidPriceError):
            coins_for_price(price, settings)

    def test_coins_to_eur(self, settings):
        assert coins_to_eur(7, settings) == Decimal("3.50")

    def test_packages_catalogue(self):
        assert [p.id for p in COIN_PACKAGES] == [
            "coins_10", "coins_24", "coins_60", "coins_100", "coins_160", "coins_200",
        ]
        package = get_package("coins_60")
        assert package.total_coins == 70
        assert package.price_eur == Decimal("29.99")
        assert package.store_product_id == "com.tanzen.coins.coins_50"
        assert get_package("coins_999") is None
