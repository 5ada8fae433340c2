"""
Runtime configuration for the claw agent, its bridge and its web surface.

Built once at startup with ClawConfig.from_env() (reads .env via python-dotenv,
never overriding variables already exported) and passed to every component.
"""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

WOC_API_URL = "https://api.whatsonchain.com/v1/bsv"


def _load_dotenv() -> None:
    """Load .env from cwd so agent/web/send-job pick it up without manual exports."""
    load_dotenv(Path.cwd() / ".env", override=False)


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if raw.lstrip("-").isdigit():
        return int(raw)
    return default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


class ClawConfig(BaseModel):
    """Everything the agent needs to know, in one place."""

    home: Path = Field(default_factory=Path.cwd, description="Base directory for state files")
    wallet_path: Optional[Path] = None
    jobs_path: Optional[Path] = None
    conversations_dir: Optional[Path] = None
    sender_wallet_path: Optional[Path] = Field(None, description="Funder wallet used by the bridge")
    agent_address: Optional[str] = Field(None, description="Override: agent address the bridge pays")

    network: str = "main"
    api_url: str = WOC_API_URL
    http_timeout: float = 30.0

    poll_interval: float = 15.0
    settle_delay: float = 2.0
    reorg_margin: int = 6
    skip_backlog: bool = True

    settlement_fee: int = 300
    job_fee: int = 500
    funding_buffer: int = 1000
    sats_per_job: int = 3000
    reservation_ttl: float = 600.0

    llm_backend: str = "ollama"
    ollama_url: str = "http://localhost:11434"
    model: str = "qwen3:8b"
    openai_base_url: str = "https://api.openai.com/v1"
    openai_api_key: Optional[str] = None
    system_prompt: str = ""
    inference_timeout: float = 120.0

    poll_timeout: float = 120.0
    poll_retry: float = 5.0
    scan_depth: int = 20
    context_limit: int = 5
    conversation_salt: str = ""
    chat_mode: str = "bridge"

    web_port: int = 3009
    log_level: str = "INFO"
    log_dir: Optional[Path] = None

    def model_post_init(self, __context) -> None:
        if self.wallet_path is None:
            self.wallet_path = self.home / "wallet.json"
        if self.jobs_path is None:
            self.jobs_path = self.home / "jobs.json"
        if self.conversations_dir is None:
            self.conversations_dir = self.home / "conversations"

    @classmethod
    def from_env(cls) -> "ClawConfig":
        _load_dotenv()
        home = Path(os.getenv("CLAW_HOME") or Path.cwd()).expanduser()

        def _path(name: str) -> Optional[Path]:
            raw = (os.getenv(name) or "").strip()
            return Path(raw).expanduser() if raw else None

        return cls(
            home=home,
            wallet_path=_path("CLAW_WALLET"),
            jobs_path=_path("CLAW_JOBS"),
            conversations_dir=_path("CLAW_CONVERSATIONS"),
            sender_wallet_path=_path("SENDER_WALLET") or home.parent / "bsv-wallet.json",
            agent_address=(os.getenv("AGENT_ADDRESS") or "").strip() or None,
            network=(os.getenv("CLAW_NETWORK") or "main").strip(),
            api_url=(os.getenv("WOC_API_URL") or WOC_API_URL).strip().rstrip("/"),
            # POLL_INTERVAL is milliseconds in older deployments; anything above an hour is treated as ms
            poll_interval=_poll_interval_seconds(_env_float("POLL_INTERVAL", 15.0)),
            settle_delay=_env_float("CLAW_SETTLE_DELAY", 2.0),
            reorg_margin=_env_int("CLAW_REORG_MARGIN", 6),
            skip_backlog=_env_bool("CLAW_SKIP_BACKLOG", True),
            settlement_fee=_env_int("CLAW_FEE", 300),
            job_fee=_env_int("CLAW_JOB_FEE", 500),
            funding_buffer=_env_int("CLAW_FUNDING_BUFFER", 1000),
            sats_per_job=_env_int("SATS_PER_JOB", 3000),
            llm_backend=(os.getenv("CLAW_LLM_BACKEND") or "ollama").strip().lower(),
            ollama_url=(os.getenv("OLLAMA_URL") or "http://localhost:11434").strip().rstrip("/"),
            model=(os.getenv("MODEL") or "qwen3:8b").strip(),
            openai_base_url=(os.getenv("OPENAI_BASE_URL") or "https://api.openai.com/v1").strip().rstrip("/"),
            openai_api_key=(os.getenv("OPENAI_API_KEY") or "").strip() or None,
            system_prompt=os.getenv("CLAW_SYSTEM_PROMPT") or "",
            inference_timeout=_env_float("CLAW_INFERENCE_TIMEOUT", 120.0),
            poll_timeout=_env_float("CLAW_POLL_TIMEOUT", 120.0),
            poll_retry=_env_float("CLAW_POLL_RETRY", 5.0),
            context_limit=_env_int("CLAW_CONTEXT_LIMIT", 5),
            conversation_salt=os.getenv("CLAW_CONVERSATION_SALT") or "",
            chat_mode=(os.getenv("CLAW_CHAT_MODE") or "bridge").strip().lower(),
            web_port=_env_int("WEB_PORT", 3009),
            log_level=(os.getenv("CLAW_LOG_LEVEL") or "INFO").strip().upper(),
            log_dir=_path("CLAW_LOG_DIR"),
        )

    @property
    def network_url(self) -> str:
        return f"{self.api_url}/{self.network}"


def _poll_interval_seconds(value: float) -> float:
    if value > 3600:
        return value / 1000.0
    return value
