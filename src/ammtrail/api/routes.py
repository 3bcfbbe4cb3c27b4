"""JSON API endpoints: pair history, reverse quotes, account swap groups, cache upkeep."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ammtrail.exceptions import HistoryUnavailableError
from ammtrail.models import Asset, SwapRecord, TimeRange, TradingPair
from ammtrail.pnl.arbitrage import find_arbitrage_chains
from ammtrail.pnl.positions import SwapGroup, realized_balances
from ammtrail.pnl.quote import FeeProfile

log = structlog.get_logger(__name__)

router = APIRouter()


def _error(message: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse(content={"error": message}, status_code=status_code)


async def _read_body(request: Request) -> dict | None:
    try:
        body = await request.json()
    except Exception:
        return None
    return body if isinstance(body, dict) else None


def _parse_pair(payload: Any) -> TradingPair:
    if not isinstance(payload, dict):
        raise ValueError("pair must be an object")
    for field in ("currency1", "currency2"):
        if not payload.get(field):
            raise ValueError(f"Missing required field: pair.{field}")
    return TradingPair(
        currency1=payload["currency1"],
        issuer1=payload.get("issuer1"),
        currency2=payload["currency2"],
        issuer2=payload.get("issuer2"),
    )


def _parse_asset(payload: Any, name: str) -> Asset:
    if not isinstance(payload, dict) or not payload.get("currency"):
        raise ValueError(f"Missing required field: {name}.currency")
    return Asset(payload["currency"], payload.get("issuer"))


def _parse_swap(payload: Any) -> SwapRecord:
    if not isinstance(payload, dict):
        raise ValueError("swap must be an object")
    try:
        return SwapRecord(
            c1=payload["c1"],
            i1=payload.get("i1"),
            v1=Decimal(str(payload["v1"])),
            c2=payload["c2"],
            i2=payload.get("i2"),
            v2=Decimal(str(payload["v2"])),
            date=int(payload.get("date", 0)),
            hash=payload.get("hash"),
        )
    except KeyError as e:
        raise ValueError(f"Missing required field: swap.{e.args[0]}") from e
    except (InvalidOperation, TypeError) as e:
        raise ValueError("swap amounts must be numeric") from e


def _parse_prices(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValueError("prices must be an object")
    return payload


def _parse_hidden_pairs(payload: Any) -> set[str]:
    if payload is None:
        return set()
    if not isinstance(payload, list) or not all(isinstance(k, str) for k in payload):
        raise ValueError("hidden_pairs must be a list of pair keys")
    return set(payload)


@router.post("/pairs/history")
async def post_pair_history(request: Request) -> JSONResponse:
    """Aggregated price series and stats for a trading pair.

    Expects JSON body with: pair {currency1, issuer1, currency2, issuer2},
    optional range (1H, 6H, 24H, 7D, 30D, ALL) and prices.
    """
    body = await _read_body(request)
    if body is None:
        return _error("Invalid JSON body")

    try:
        pair = _parse_pair(body.get("pair"))
        prices = _parse_prices(body.get("prices"))
    except ValueError as e:
        return _error(str(e))

    time_range = TimeRange.parse(body.get("range"))
    service = request.app.state.history_service
    history = await service.load_pair_history(pair, time_range, prices)

    payload = history.to_dict()
    payload["range"] = time_range.value
    return JSONResponse(content=payload)


@router.post("/quotes/swap")
async def post_swap_quote(request: Request) -> JSONResponse:
    """Reverse quote for a single swap under a named fee profile."""
    body = await _read_body(request)
    if body is None:
        return _error("Invalid JSON body")

    try:
        swap = _parse_swap(body.get("swap"))
        prices = _parse_prices(body.get("prices"))
        profile = FeeProfile(body.get("profile", FeeProfile.SINGLE_SWAP.value))
    except ValueError as e:
        return _error(str(e))

    quote = request.app.state.quote_engine.reverse_quote(swap, prices, profile)
    return JSONResponse(content={"quote": quote.to_dict() if quote else None})


@router.post("/quotes/position")
async def post_position_quote(request: Request) -> JSONResponse:
    """Reverse quote for the open position at the head of a swap list."""
    body = await _read_body(request)
    if body is None:
        return _error("Invalid JSON body")

    try:
        group = SwapGroup(
            asset1=_parse_asset(body.get("asset1"), "asset1"),
            asset2=_parse_asset(body.get("asset2"), "asset2"),
            swaps=[_parse_swap(s) for s in body.get("swaps") or []],
        )
        prices = _parse_prices(body.get("prices"))
    except ValueError as e:
        return _error(str(e))

    quote = request.app.state.quote_engine.position_quote(group, prices)
    return JSONResponse(content={"quote": quote.to_dict() if quote else None})


@router.get("/accounts/{address}/swap-groups")
async def get_swap_groups(request: Request, address: str) -> JSONResponse:
    """Account swaps grouped by pair, newest first."""
    service = request.app.state.history_service
    try:
        groups = await service.load_swap_groups(address)
    except ValueError as e:
        return _error(str(e))
    except HistoryUnavailableError as e:
        return _error(str(e), status_code=503)

    return JSONResponse(content={"groups": [g.to_dict() for g in groups]})


@router.post("/accounts/{address}/analysis")
async def post_account_analysis(request: Request, address: str) -> JSONResponse:
    """Position quotes, realized balances and arbitrage chains for an account.

    Expects JSON body with: prices and optional hidden_pairs list.
    """
    body = await _read_body(request)
    if body is None:
        return _error("Invalid JSON body")

    try:
        prices = _parse_prices(body.get("prices"))
        hidden_pairs = _parse_hidden_pairs(body.get("hidden_pairs"))
    except ValueError as e:
        return _error(str(e))

    service = request.app.state.history_service
    engine = request.app.state.quote_engine
    try:
        groups = await service.load_swap_groups(address)
    except ValueError as e:
        return _error(str(e))
    except HistoryUnavailableError as e:
        return _error(str(e), status_code=503)

    visible = [g for g in groups if g.pair_key not in hidden_pairs]
    quotes = {}
    for group in visible:
        quote = engine.position_quote(group, prices)
        if quote is not None:
            quotes[group.pair_key] = quote

    swaps = [s for g in visible for s in g.swaps]
    chains = find_arbitrage_chains(visible, quotes, hidden_pairs)

    log.info(
        "account_analysis",
        account=address,
        groups=len(visible),
        quotes=len(quotes),
        chains=len(chains),
    )
    return JSONResponse(
        content={
            "positions": {key: q.to_dict() for key, q in quotes.items()},
            "balances": realized_balances(swaps, hidden_pairs).to_dict(),
            "chains": [c.to_dict() for c in chains],
        }
    )


@router.post("/cache/evict")
async def post_cache_evict(request: Request) -> JSONResponse:
    """Run the cache sweep now."""
    removed = await request.app.state.cache.evict()
    return JSONResponse(content={"removed": removed})
