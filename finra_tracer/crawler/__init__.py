"""
Crawler subsystem for finra-tracer.

Search target registry, the FINRA bond trade search pipeline (request
building, decoding, parsing) and the sinks decoded trades are pushed to.
"""

from finra_tracer.crawler.fetch_pipeline import (
    FetchDecodeError,
    FetchError,
    FetchPayloadError,
    FetchPipeline,
    FetchRequestError,
    parse_trades,
)
from finra_tracer.crawler.models import FetchOutcome, ParsedTrades, Target, TradeRecord
from finra_tracer.crawler.sink import DedupSink, LogSink, QueueSink, TradeSink
from finra_tracer.crawler.targets import TargetRegistry

__all__ = [
    "DedupSink",
    "FetchDecodeError",
    "FetchError",
    "FetchOutcome",
    "FetchPayloadError",
    "FetchPipeline",
    "FetchRequestError",
    "LogSink",
    "ParsedTrades",
    "QueueSink",
    "Target",
    "TargetRegistry",
    "TradeRecord",
    "TradeSink",
    "parse_trades",
]
