import shutil
from pathlib import Path

import pytest

from backend import storage

TEST_DATA_DIR = Path("data-tests")


@pytest.fixture(autouse=True)
def clean_test_data(monkeypatch):
    """Wipe and re-init data-tests/ before every test."""
    for var in ("LLM_PROVIDER", "LLM_FALLBACK_PROVIDER", "OPENAI_API_KEY", "CLAUDE_API_KEY",
                "GEMINI_API_KEY", "KOBOLDCPP_URL", "LLM_MAX_RETRIES", "LLM_TIMEOUT_MS",
                "LLM_MAX_TOKENS", "LLM_TEMPERATURE", "DATABASE_URL",
                "NARRATION_WORKER"):
        monkeypatch.delenv(var, raising=False)
    if TEST_DATA_DIR.exists():
        shutil.rmtree(TEST_DATA_DIR)
    storage.init_storage(TEST_DATA_DIR)
    yield
    # leave data-tests around after tests for inspection; CI can ignore it
