"""
프로젝트 설정 관리
.env 파일에서 환경변수를 로드하여 타입-안전한 설정 객체 제공
"""
from pydantic import BaseModel, Field, computed_field
from pydantic_settings import BaseSettings


class TargetConfig(BaseModel):
    """검색 대상 하나(종목 식별자 + 조회 기간)의 설정 값."""

    instrument_id: str
    start_date: str  # MM/DD/YYYY
    end_date: str  # MM/DD/YYYY


def _default_targets() -> list[TargetConfig]:
    return [
        TargetConfig(instrument_id="C765371", start_date="05/29/2018", end_date="05/29/2019"),
        TargetConfig(instrument_id="C577245", start_date="05/29/2018", end_date="05/29/2019"),
    ]


class Settings(BaseSettings):
    """크롤러 전체 설정을 관리하는 클래스."""

    # 실행 모드
    debug: bool = False
    log_level: str = "INFO"
    log_dir: str = ""  # 비어 있으면 파일 로깅 비활성화

    # Worker / 재시도
    workers: int = 1
    max_login_attempts: int = 5
    login_backoff_seconds: float = 0.0  # 0이면 즉시 재시도
    login_backoff_max_seconds: float = 30.0
    max_fetch_failures: int = 5
    max_session_expiries: int = 5  # 정상 응답 없이 연속으로 세션이 만료된 횟수 상한
    poll_interval_seconds: float = 10.0

    # Tor
    tor_base_port: int = 9050
    tor_binary: str = "tor"
    tor_data_dir: str = ".tor"
    circuit_setup_delay_seconds: float = 5.0
    circuit_timeout_seconds: float = 5.0
    circuit_probe_interval_seconds: float = 0.5
    circuit_check_url: str = "https://check.torproject.org"
    circuit_check_marker: str = "Congratulations"

    # FINRA / Morningstar
    finra_host: str = "finra-markets.morningstar.com"
    finra_login_url: str = "http://finra-markets.morningstar.com/finralogin.jsp"
    finra_search_url: str = "http://finra-markets.morningstar.com/bondSearch.jsp"
    search_page_size: int = 20
    http_timeout_seconds: float = 10.0
    user_agent: str = ""  # 비어 있으면 worker마다 무작위 UA를 뽑는다

    # 검색 대상 (JSON 배열로 TARGETS 환경변수에서 덮어쓸 수 있다)
    targets: list[TargetConfig] = Field(default_factory=_default_targets)

    # 재인증 후 중복 체결 제거
    dedup_trades: bool = False

    @computed_field
    @property
    def effective_log_level(self) -> str:
        """debug 플래그가 켜져 있으면 DEBUG, 아니면 log_level을 반환한다."""
        if self.debug:
            return "DEBUG"
        return self.log_level.upper()

    @property
    def referer_base(self) -> str:
        """검색 결과 페이지 referer의 기본 URL."""
        return f"http://{self.finra_host}/BondCenter/BondTradeActivitySearchResult.jsp"

    def socks_proxy_url(self, port: int) -> str:
        """Tor SOCKS5 프록시 URL을 반환한다."""
        return f"socks5://127.0.0.1:{port}"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


_settings: Settings | None = None


def get_settings() -> Settings:
    """Settings 싱글톤 인스턴스를 반환한다."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
