from typing import List
from pydantic_settings import BaseSettings
import os

class Settings(BaseSettings):
    # LINE Messaging API
    line_channel_secret: str = ""
    line_channel_token: str = ""
    line_api_base_url: str = "https://api.line.me"

    # Auction site
    auction_base_url: str = "https://auction.example.jp/"
    auction_login_url: str = "https://auction.example.jp/login"
    auction_post_login_url: str = "**/member/**"  # glob matched against page.url after login
    auction_username: str = ""
    auction_password: str = ""

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 3000

    # Browser Configuration
    headless: bool = True
    browser_executable_path: str = ""
    browser_timeout: int = 30000

    # Selector resolution (milliseconds)
    resolve_timeout_ms: int = 8000
    resolve_poll_interval_ms: int = 250
    login_confirm_timeout_ms: int = 15000

    # Search behaviour
    venue_categories: List[str] = ["オークション", "入札会", "ワンプラ"]
    status_filters: List[str] = ["出品中"]
    conversation_slots: List[str] = ["maker", "model", "budget", "mileage"]
    result_page_size: int = 50
    top_n: int = 10

    # Lifecycle
    job_timeout_seconds: float = 180.0
    session_ttl_seconds: float = 1800.0
    event_dedup_ttl_seconds: float = 600.0

    # Logging Configuration
    log_level: str = "INFO"
    log_file: str = "logs/app.log"

    class Config:
        env_file = ".env"
        case_sensitive = False

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # The LINE console calls the token a "channel access token"
        if not self.line_channel_token:
            self.line_channel_token = os.getenv("LINE_CHANNEL_ACCESS_TOKEN", "")

    @property
    def has_auction_credentials(self) -> bool:
        return bool(self.auction_username and self.auction_password)

settings = Settings()
