"""
FINRA bond trade search pipeline.

Builds one search request per target, sends it through the worker's
authenticated client, decodes the (possibly gzip-encoded) body and turns it
into ``TradeRecord`` values.

The endpoint has two quirks the parser has to live with:
- the top level key is sent unquoted (``{T:{...}}``), so the first such key
  is repaired before JSON decoding;
- an expired session is answered with a body that has no trade table at all
  (typically ``{}``), which is reported as ``session_expired`` rather than as
  an error so the caller can log in again.
"""

from __future__ import annotations

import gzip
import json
import re
import zlib
from decimal import Decimal
from urllib.parse import quote_plus, urlencode

import httpx
from pydantic import ValidationError

from finra_tracer.crawler.models import FetchOutcome, ParsedTrades, Target, TradeResponse
from finra_tracer.utils.config import Settings
from finra_tracer.utils.logger import get_logger

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# 모듈 레벨 상수
# ---------------------------------------------------------------------------

_TRADE_MARKER = b'"T":'

# Unquoted ``T`` key directly after an object/member boundary.
_MALFORMED_KEY = re.compile(rb"(?<=[{,])(\s*)T(\s*):")


class FetchError(Exception):
    """Search fetch failure."""


class FetchRequestError(FetchError):
    """The search request failed at the network/HTTP level."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FetchDecodeError(FetchError):
    """The response declared a content encoding but the data is corrupt."""


class FetchPayloadError(FetchError):
    """The repaired body is not valid JSON or not shaped like a trade table."""


def repair_payload(body: bytes) -> bytes:
    """Quote the first unquoted ``T`` key. Already repaired input is unchanged."""
    return _MALFORMED_KEY.sub(rb'\1"T"\2:', body, count=1)


def decode_body(raw: bytes, content_encoding: str | None) -> bytes:
    """Undo the response's content encoding.

    Raises:
        FetchDecodeError: Malformed gzip/deflate data.
    """
    encoding = (content_encoding or "").strip().lower()
    try:
        if encoding == "gzip":
            return gzip.decompress(raw)
        if encoding == "deflate":
            try:
                return zlib.decompress(raw)
            except zlib.error:
                # raw deflate stream without zlib header
                return zlib.decompress(raw, -zlib.MAX_WBITS)
    except (OSError, EOFError, zlib.error) as exc:
        raise FetchDecodeError(f"Error decoding {encoding} trade response: {exc}") from exc
    return raw


def parse_trades(body: bytes) -> ParsedTrades:
    """Repair and decode a search response body.

    Returns:
        ``ParsedTrades`` with ``session_expired=True`` when the body carries
        no trade table.

    Raises:
        FetchPayloadError: The body has a trade table that cannot be decoded.
    """
    repaired = repair_payload(body)
    if _TRADE_MARKER not in repaired:
        return ParsedTrades(session_expired=True)

    try:
        data = json.loads(repaired, parse_float=Decimal)
        response = TradeResponse.model_validate(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise FetchPayloadError(f"Error unmarshaling trades: {exc}") from exc
    except ValidationError as exc:
        raise FetchPayloadError(f"Unexpected trade payload shape: {exc}") from exc

    trades = tuple(column.to_record() for column in response.T.Columns)
    return ParsedTrades(trades=trades, rows=response.T.Rows)


class FetchPipeline:
    """Search request builder and response handler for one worker.

    Attributes:
        headers_base: Browser XHR headers shared by every search request.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: Settings,
        user_agent: str,
        label: str = "",
    ) -> None:
        self._client = client
        self._settings = settings
        self._label = label or "fetch"
        self.headers_base = {
            "host": settings.finra_host,
            "user-agent": user_agent,
            "accept": "text/plain, */*; q=0.01",
            "accept-language": "en-US,en;q=0.5",
            "accept-encoding": "gzip, deflate",
            "content-type": "application/x-www-form-urlencoded",
            "x-requested-with": "XMLHttpRequest",
            "cache-control": "no-cache,no-cache",
            "connection": "keep-alive",
        }

    def build_search_payload(self, target: Target) -> dict[str, str]:
        """Form fields for a search on ``target``.

        The query itself is compact JSON, URL-escaped once here and once more
        by the form encoding, which is what the search page sends.
        """
        query = {
            "Keywords": [
                {"Name": "securityId", "Value": target.instrument_id},
                {
                    "Name": "tradeDate",
                    "minValue": target.start_date,
                    "maxValue": target.end_date,
                },
            ]
        }
        encoded = json.dumps(query, separators=(",", ":"), sort_keys=True)
        return {
            "count": str(self._settings.search_page_size),
            "sortfield": "tradeDate",
            "sorttype": "2",
            "start": "0",
            "searchtype": "T",
            "query": quote_plus(encoded),
        }

    def build_referer(self, target: Target) -> str:
        """Result page URL matching the payload; the endpoint checks the two agree."""
        params = urlencode(
            sorted(
                {
                    "ticker": target.instrument_id,
                    "startdate": target.start_date,
                    "enddate": target.end_date,
                }.items()
            )
        )
        return f"{self._settings.referer_base}?{quote_plus(params)}"

    def build_request(self, target: Target) -> httpx.Request:
        """POST request for ``target`` with the session's cookies attached."""
        headers = dict(self.headers_base)
        headers["referer"] = self.build_referer(target)
        return self._client.build_request(
            "POST",
            self._settings.finra_search_url,
            data=self.build_search_payload(target),
            headers=headers,
        )

    async def fetch(self, target: Target) -> FetchOutcome:
        """Run one search for ``target``.

        Raises:
            FetchRequestError: Network failure or HTTP error status.
            FetchDecodeError: Corrupt compressed body.
            FetchPayloadError: Undecodable trade table.
        """
        request = self.build_request(target)
        try:
            resp = await self._client.send(request, stream=True)
            try:
                if resp.is_error:
                    raise FetchRequestError(
                        f"Search for {target.instrument_id} returned HTTP {resp.status_code}",
                        status_code=resp.status_code,
                    )
                if resp.is_stream_consumed:
                    # 이미 메모리에 올라온 본문은 httpx가 content-encoding을 풀어 둔 상태다
                    body = resp.content
                else:
                    raw = b"".join([chunk async for chunk in resp.aiter_raw()])
                    body = decode_body(raw, resp.headers.get("content-encoding"))
            finally:
                await resp.aclose()
        except httpx.HTTPError as exc:
            raise FetchRequestError(f"Error with fetch request: {exc}") from exc

        parsed = parse_trades(body)
        if parsed.session_expired:
            logger.debug("[%s] Received empty trade response for %s", self._label, target)
            return FetchOutcome(target=target, session_expired=True)

        logger.debug(
            "[%s] %s: %d trades (rows=%d)",
            self._label, target, len(parsed.trades), parsed.rows,
        )
        return FetchOutcome(target=target, trades=parsed.trades)
