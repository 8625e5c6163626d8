import threading
from http.client import IncompleteRead
from typing import Callable
from urllib.parse import unquote

import pytest

from fund_watchlist.data_sources import HttpClient, HttpResponse, RelayChain
from fund_watchlist.errors import DataSourceError, NotAvailableError, RelayExhaustedError
from fund_watchlist.quotes import QuoteClient

PRIMARY = "https://relay.example.workers.dev/"
FALLBACK = "https://fallback.example/?"


class FakeTransport:
    def __init__(self, handler: Callable[[str], HttpResponse]) -> None:
        self.handler = handler
        self.urls: list[str] = []
        self._lock = threading.Lock()

    def request(self, method, url, headers=None, body=None):
        with self._lock:
            self.urls.append(url)
        return self.handler(url)


def _payload(code: str) -> str:
    return (
        f'jsonpgz({{"fundcode":"{code}","name":"F{code}","dwjz":"1.0000",'
        f'"gsz":"1.0100","gszzl":"1.00","jzrq":"2024-01-01","gztime":"2024-01-02 15:00"}});'
    )


def _code_of(url: str) -> str:
    target = unquote(url.split("url=")[-1].split("?")[-1])
    return target.split("/js/")[1].split(".js")[0]


def test_relay_endpoints_order_and_encoding():
    chain = RelayChain(FakeTransport(lambda url: HttpResponse(200, "")), PRIMARY, (FALLBACK,))
    target = "https://fund.eastmoney.com/js/fundcode_search.js"
    encoded = "https%3A%2F%2Ffund.eastmoney.com%2Fjs%2Ffundcode_search.js"
    assert chain.endpoints(target) == [f"{PRIMARY}?url={encoded}", f"{FALLBACK}{encoded}"]


def test_relay_chain_skips_blank_primary_and_supports_direct_fetch():
    chain = RelayChain(FakeTransport(lambda url: HttpResponse(200, "")), "", (FALLBACK,), direct_fetch=True)
    urls = chain.endpoints("https://x.example/a.js")
    assert urls[0] == "https://x.example/a.js"
    assert len(urls) == 2


def test_fetch_quote_falls_back_when_primary_relay_fails():
    def handler(url: str) -> HttpResponse:
        if url.startswith(PRIMARY):
            return HttpResponse(502, "bad gateway")
        return HttpResponse(200, _payload("000001"))

    transport = FakeTransport(handler)
    client = QuoteClient(RelayChain(transport, PRIMARY, (FALLBACK,)))
    q = client.fetch_quote("000001")
    assert q.code == "000001"
    assert len(transport.urls) == 2
    assert transport.urls[1].startswith(FALLBACK)


def test_transport_error_moves_to_next_relay():
    def handler(url: str) -> HttpResponse:
        if url.startswith(PRIMARY):
            raise DataSourceError("connection refused")
        return HttpResponse(200, _payload("000001"))

    client = QuoteClient(RelayChain(FakeTransport(handler), PRIMARY, (FALLBACK,)))
    assert client.fetch_quote("000001").name == "F000001"


def test_fetch_quote_relay_exhausted_is_not_available():
    client = QuoteClient(RelayChain(FakeTransport(lambda url: HttpResponse(500, "")), PRIMARY, (FALLBACK,)))
    with pytest.raises(RelayExhaustedError):
        client.fetch_quote("000001")
    with pytest.raises(NotAvailableError):
        client.fetch_quote("000001")


def test_fetch_quote_parse_failure_is_not_available():
    client = QuoteClient(RelayChain(FakeTransport(lambda url: HttpResponse(200, "jsonpgz();")), PRIMARY))
    with pytest.raises(NotAvailableError):
        client.fetch_quote("999999")


def test_quote_url_carries_cache_buster():
    client = QuoteClient(RelayChain(FakeTransport(lambda url: HttpResponse(200, ""))), quote_host="https://q.example/")
    url = client.quote_url("000001")
    assert url.startswith("https://q.example/js/000001.js?rt=")
    assert url.split("rt=")[1].isdigit()


def test_fetch_multiple_drops_failures():
    failing = {"000002", "000004"}

    def handler(url: str) -> HttpResponse:
        code = _code_of(url)
        if code in failing:
            return HttpResponse(404, "")
        return HttpResponse(200, _payload(code))

    client = QuoteClient(RelayChain(FakeTransport(handler), PRIMARY), max_workers=3)
    codes = ["000001", "000002", "000003", "000004", "000005"]
    quotes = client.fetch_multiple(codes)
    assert len(quotes) == 3
    assert {q.code for q in quotes} == {"000001", "000003", "000005"}


def test_fetch_multiple_empty_input_skips_network():
    transport = FakeTransport(lambda url: HttpResponse(200, ""))
    assert QuoteClient(RelayChain(transport, PRIMARY)).fetch_multiple([]) == []
    assert transport.urls == []


def test_malformed_relay_url_is_a_data_source_error():
    with pytest.raises(DataSourceError):
        HttpClient().request("GET", "worker.example.dev?url=https%3A%2F%2Ffundgz.example")


def test_protocol_error_while_reading_is_a_data_source_error():
    class BrokenOpener:
        def open(self, req, **kwargs):
            raise IncompleteRead(b"jsonpgz({")

    client = HttpClient()
    client._opener = BrokenOpener()
    with pytest.raises(DataSourceError):
        client.request("GET", "https://relay.example/?url=x")


def test_malformed_primary_relay_falls_through_to_fallback():
    http = HttpClient()

    def handler(url: str) -> HttpResponse:
        if url.startswith("worker.example.dev"):
            return http.request("GET", url)
        return HttpResponse(200, _payload("000001"))

    transport = FakeTransport(handler)
    client = QuoteClient(RelayChain(transport, "worker.example.dev", (FALLBACK,)))
    quotes = client.fetch_multiple(["000001"])
    assert [q.code for q in quotes] == ["000001"]
    assert transport.urls[1].startswith(FALLBACK)


def test_fetch_multiple_with_only_malformed_relay_returns_nothing():
    http = HttpClient()
    client = QuoteClient(RelayChain(FakeTransport(lambda url: http.request("GET", url)), "worker.example.dev"))
    assert client.fetch_multiple(["000001"]) == []
