from decimal import Decimal

import pytest

from fund_watchlist.directory import parse_directory_payload
from fund_watchlist.errors import ParseError
from fund_watchlist.models import FundQuote
from fund_watchlist.quotes import parse_quote_payload, sort_by_change

SAMPLE_QUOTE = (
    'jsonpgz({"fundcode":"000001","name":"X","jzrq":"2024-01-01","dwjz":"1.2340",'
    '"gsz":"1.2500","gszzl":"1.30","gztime":"2024-01-02 15:00"});'
)


def test_parse_quote_payload():
    q = parse_quote_payload(SAMPLE_QUOTE, "000001")
    assert q.code == "000001"
    assert q.name == "X"
    assert q.net_asset_value == Decimal("1.2340")
    assert q.estimated_value == Decimal("1.2500")
    assert q.estimated_change_percent == Decimal("1.30")
    assert q.valuation_date == "2024-01-01"
    assert q.estimation_time == "2024-01-02 15:00"


def test_parse_quote_payload_keeps_partial_data():
    text = 'jsonpgz({"fundcode":"000002","name":"Y","dwjz":"1.1","gsz":"","gszzl":"abc"});'
    q = parse_quote_payload(text, "000002")
    assert q.net_asset_value == Decimal("1.1")
    assert q.estimated_value is None
    assert q.estimated_change_percent is None
    assert q.valuation_date == ""


def test_parse_quote_payload_falls_back_to_requested_code():
    q = parse_quote_payload('jsonpgz({"name":"Z"});', "000009")
    assert q.code == "000009"


@pytest.mark.parametrize("text", ["jsonpgz();", "<html>502</html>", "jsonpgz({bad json});"])
def test_parse_quote_payload_rejects_malformed(text):
    with pytest.raises(ParseError):
        parse_quote_payload(text, "000001")


def test_parse_directory_payload():
    text = (
        'var r = [["000001","HXCZHH","华夏成长混合","混合型-偏股","HUAXIACHENGZHANGHUNHE"],'
        '["000003","ZHKZZZQA","中海可转债债券A","债券型-混合二级","ZHONGHAIKEZHUANZHAIZHAIQUANA"],'
        '["bad"]];'
    )
    entries = parse_directory_payload(text)
    assert [e.code for e in entries] == ["000001", "000003"]
    first = entries[0]
    assert first.name == "华夏成长混合"
    assert first.abbreviation == "HXCZHH"
    assert first.category == "混合型-偏股"
    assert first.pinyin == "HUAXIACHENGZHANGHUNHE"


def test_parse_directory_payload_without_array():
    with pytest.raises(ParseError):
        parse_directory_payload("var x = 1;")


def _q(code: str, change: str | None) -> FundQuote:
    return FundQuote(
        code=code,
        name=code,
        net_asset_value=Decimal("1"),
        estimated_value=Decimal("1"),
        estimated_change_percent=None if change is None else Decimal(change),
        valuation_date="",
        estimation_time="",
    )


def test_sort_by_change_descending_with_missing_as_zero():
    quotes = [_q("a", "-1.5"), _q("b", None), _q("c", "2.0")]
    assert [q.code for q in sort_by_change(quotes)] == ["c", "b", "a"]
