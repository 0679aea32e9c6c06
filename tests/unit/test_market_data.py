from unittest.mock import AsyncMock

import pytest

from core.config.settings import MarketDataSettings
from core.trading.models import OptionType
from core.utils.exceptions import ConfigurationError, MarketDataError
from services.market_data import DhanMarketDataClient, InstrumentMaster, parse_option_chain


CHAIN_PAYLOAD = {
    "status": "success",
    "data": {
        "last_price": 25012.35,
        "oc": {
            "25000.000000": {
                "ce": {"greeks": {"delta": 0.53}, "top_ask_price": 120.5, "last_price": 119.0,
                       "security_id": 43210},
                "pe": {"greeks": {"delta": -0.47}, "top_ask_price": 0, "last_price": 101.2},
            },
            "25050.000000": {
                "ce": {"greeks": {"delta": 0.45}, "top_ask_price": 95.0, "last_price": 94.0},
            },
        },
    },
}


def test_parse_option_chain_converts_strike_keys_and_greeks():
    chain = parse_option_chain("NIFTY1!", "2026-10-29", CHAIN_PAYLOAD)
    assert chain.symbol == "NIFTY"
    assert chain.underlying_price == 25012.35
    assert sorted(chain.strikes) == [25000.0, 25050.0]

    atm = chain.strikes[25000.0]
    assert atm.ce.delta == 0.53
    assert atm.ce.security_id == "43210"
    assert atm.ce.best_price == 120.5
    # A zero ask means no offer; the last traded price is used instead
    assert atm.pe.ask_price is None
    assert atm.pe.best_price == 101.2
    assert chain.strikes[25050.0].pe is None


def test_parse_option_chain_without_strike_data_fails():
    with pytest.raises(MarketDataError):
        parse_option_chain("NIFTY", "2026-10-29", {"data": {}})


async def test_list_expiries_sorted_nearest_first():
    client = DhanMarketDataClient(MarketDataSettings(min_request_interval_seconds=0))
    client._post = AsyncMock(return_value={"data": ["2026-11-05", "2026-10-29"]})
    assert await client.list_expiries("BANKNIFTY") == ["2026-10-29", "2026-11-05"]
    path, body = client._post.call_args.args[:2]
    assert path == "/optionchain/expirylist"
    assert body == {"UnderlyingScrip": 25, "UnderlyingSeg": "IDX_I"}


async def test_list_expiries_empty_fails():
    client = DhanMarketDataClient(MarketDataSettings(min_request_interval_seconds=0))
    client._post = AsyncMock(return_value={"data": []})
    with pytest.raises(MarketDataError):
        await client.list_expiries("NIFTY")


async def test_unconfigured_underlying_fails():
    client = DhanMarketDataClient(MarketDataSettings(min_request_interval_seconds=0))
    with pytest.raises(MarketDataError):
        await client.list_expiries("SENSEX")


async def test_fetch_option_chain_sends_expiry():
    client = DhanMarketDataClient(MarketDataSettings(min_request_interval_seconds=0))
    client._post = AsyncMock(return_value=CHAIN_PAYLOAD)
    chain = await client.fetch_option_chain("NIFTY", "2026-10-29")
    assert chain.expiry == "2026-10-29"
    _, body = client._post.call_args.args[:2]
    assert body["Expiry"] == "2026-10-29"
    assert body["UnderlyingScrip"] == 13


async def test_missing_credentials_fail_before_any_request():
    client = DhanMarketDataClient(MarketDataSettings(min_request_interval_seconds=0))
    with pytest.raises(ConfigurationError) as exc_info:
        await client.fetch_option_chain("NIFTY", "2026-10-29")
    assert exc_info.value.config_field == "market_data.access_token"
    assert client._session is None


def test_instrument_master_loads_scrip_master_csv(tmp_path):
    csv_path = tmp_path / "scrip_master.csv"
    csv_path.write_text(
        "SECURITY_ID,STRIKE_PRICE,OPTION_TYPE,SYMBOL_NAME\n"
        "43210,25000.00,CE,NIFTY-Oct2026-25000-CE\n"
        "43211,25000.00,PE,NIFTY-Oct2026-25000-PE\n"
        "13,0,XX,NIFTY\n"
        "43212,bad,CE,NIFTY-Oct2026-bad-CE\n"
    )
    master = InstrumentMaster(str(csv_path))
    assert len(master) == 2
    assert master.security_id(25000, OptionType.CE) == "43210"
    assert master.security_id(25000.0, OptionType.PE) == "43211"
    assert master.security_id(25050, OptionType.CE) is None


def test_instrument_master_requires_columns(tmp_path):
    csv_path = tmp_path / "scrip_master.csv"
    csv_path.write_text("ID,STRIKE\n1,2\n")
    with pytest.raises(ValueError):
        InstrumentMaster(str(csv_path))


def test_instrument_master_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        InstrumentMaster(str(tmp_path / "missing.csv"))
