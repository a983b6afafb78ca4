"""
Tests for core.models module.
"""
import pytest
from datetime import datetime, timezone

from core.exceptions import ExchangeDataError
from core.models import Bucket, Stock, Shareholder, StockDetail


class TestBucket:
    """Frequency keyword parsing."""

    @pytest.mark.parametrize("keyword,expected", [
        ("raw", Bucket.RAW),
        ("minutely", Bucket.RAW),
        ("hour", Bucket.HOUR),
        ("hourly", Bucket.HOUR),
        ("DAILY", Bucket.DAY),
        ("week", Bucket.WEEK),
        ("weekly", Bucket.WEEK),
        (" monthly ", Bucket.MONTH),
    ])
    def test_parse(self, keyword, expected):
        """Bucket names and the legacy aliases both resolve."""
        assert Bucket.parse(keyword) is expected

    def test_parse_unknown_lists_options(self):
        with pytest.raises(ValueError, match="Valid options are: raw, hour"):
            Bucket.parse("yearly")

    def test_parse_empty(self):
        with pytest.raises(ValueError):
            Bucket.parse("")

    def test_is_date_only(self):
        assert Bucket.DAY.is_date_only
        assert Bucket.MONTH.is_date_only
        assert not Bucket.HOUR.is_date_only
        assert not Bucket.RAW.is_date_only


class TestStock:
    """Stock.from_api parsing."""

    def test_from_api(self, sample_stock_payload):
        stock = Stock.from_api(sample_stock_payload)
        assert stock.id == 1
        assert stock.ticker == "ABC"
        assert stock.company_name == "Alphabet Blocks Co"
        assert stock.share_price == 10.5
        assert stock.dividend_per_share == 0.25
        assert stock.book_value == 250000
        assert stock.created_at == datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    def test_numeric_share_price(self, sample_stock_payload):
        """sharePrice may arrive as a number or a numeric string."""
        stock = Stock.from_api({**sample_stock_payload, "sharePrice": 12})
        assert stock.share_price == 12.0

    def test_missing_required_field(self, sample_stock_payload):
        payload = dict(sample_stock_payload)
        del payload["ticker"]
        with pytest.raises(ExchangeDataError, match="ticker"):
            Stock.from_api(payload)

    def test_non_numeric_price(self, sample_stock_payload):
        with pytest.raises(ExchangeDataError, match="sharePrice"):
            Stock.from_api({**sample_stock_payload, "sharePrice": "n/a"})

    def test_optional_fields_default(self):
        stock = Stock.from_api({"id": "5", "ticker": "ZZZ", "sharePrice": "1"})
        assert stock.id == 5
        assert stock.logo is None
        assert stock.outstanding_shares == 0
        assert stock.frozen is False
        assert stock.created_at is None

    def test_not_an_object(self):
        with pytest.raises(ExchangeDataError):
            Stock.from_api(["ABC"])


class TestStockDetail:

    def test_from_api(self, sample_detail_payload):
        detail = StockDetail.from_api(sample_detail_payload)
        assert detail.ticker == "ABC"
        assert detail.shareholders == [
            Shareholder(account_id=7, username="alice", shares=600),
            Shareholder(account_id=9, username="bob", shares=400),
        ]

    def test_no_shareholders(self, sample_stock_payload):
        assert StockDetail.from_api(sample_stock_payload).shareholders == []

    def test_shareholders_not_a_list(self, sample_stock_payload):
        with pytest.raises(ExchangeDataError, match="shareholders"):
            StockDetail.from_api({**sample_stock_payload, "shareholders": {"accountId": 1}})

    def test_bad_shareholder_entry(self, sample_stock_payload):
        with pytest.raises(ExchangeDataError):
            StockDetail.from_api({**sample_stock_payload, "shareholders": [{"username": "x"}]})
