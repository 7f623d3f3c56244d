"""FINRA 채권 체결 내역 Tor 경유 크롤러."""

__version__ = "0.1.0"
