"""Pytest configuration and fixtures."""

import os

# Set test environment variables before the settings singleton is created
os.environ["LOG_LEVEL"] = "ERROR"  # Reduce log noise during tests
os.environ["LOG_FILE"] = ""
os.environ["HEADLESS"] = "true"  # Always run headless in tests
os.environ["LINE_CHANNEL_SECRET"] = ""
os.environ["LINE_CHANNEL_TOKEN"] = "test-token"

import pytest

from auction_bot.core.config import Settings

@pytest.fixture
def fast_settings():
    """Settings with credentials and millisecond-scale waits."""
    return Settings(
        auction_username="dealer01",
        auction_password="secret-pass",
        auction_base_url="https://auction.test/",
        auction_login_url="https://auction.test/login",
        auction_post_login_url="**/member/**",
        resolve_timeout_ms=60,
        resolve_poll_interval_ms=10,
        login_confirm_timeout_ms=80,
        venue_categories=["オークション"],
        status_filters=["出品中"],
        result_page_size=50,
        top_n=10,
        job_timeout_seconds=5.0,
    )
