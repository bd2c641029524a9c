"""Configuration management using TOML + environment variables."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[no-redef]

import tomli_w

CONFIG_DIR = Path.home() / ".linechat"
CONFIG_FILE = CONFIG_DIR / "config.toml"
PID_FILE = CONFIG_DIR / "server.pid"
LOG_FILE = CONFIG_DIR / "server.log"

DEFAULT_PORT = 4000
DEFAULT_TIMEOUT = 30
DEFAULT_MAX_LINE = 1024


@dataclass
class ServerConfig:
    host: str = ""
    port: int = DEFAULT_PORT
    timeout: int = DEFAULT_TIMEOUT
    max_line: int = DEFAULT_MAX_LINE
    close_grace: int = 2


@dataclass
class TranscriptConfig:
    directory: str = "~/.linechat/transcripts"


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: str = "~/.linechat/server.log"


@dataclass
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    transcript: TranscriptConfig = field(default_factory=TranscriptConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def ensure_config_dir() -> None:
    """Create config directory with secure permissions."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    os.chmod(CONFIG_DIR, 0o700)


def load_config() -> AppConfig:
    """Load configuration from TOML file with env var overrides."""
    config = AppConfig()

    if CONFIG_FILE.exists():
        with open(CONFIG_FILE, "rb") as f:
            data = tomllib.load(f)

        server = data.get("server", {})
        config.server.host = server.get("host", config.server.host)
        config.server.port = server.get("port", config.server.port)
        config.server.timeout = server.get("timeout", config.server.timeout)
        config.server.max_line = server.get("max_line", config.server.max_line)
        config.server.close_grace = server.get("close_grace", config.server.close_grace)

        transcript = data.get("transcript", {})
        config.transcript.directory = transcript.get("directory", config.transcript.directory)

        logging_cfg = data.get("logging", {})
        config.logging.level = logging_cfg.get("level", config.logging.level)
        config.logging.file = logging_cfg.get("file", config.logging.file)

    # Environment variable overrides
    if env_host := os.environ.get("LINECHAT_HOST"):
        config.server.host = env_host
    if env_port := os.environ.get("LINECHAT_PORT"):
        config.server.port = int(env_port)
    if env_timeout := os.environ.get("LINECHAT_TIMEOUT"):
        config.server.timeout = int(env_timeout)
    if env_max_line := os.environ.get("LINECHAT_MAX_LINE"):
        config.server.max_line = int(env_max_line)
    if env_dir := os.environ.get("LINECHAT_TRANSCRIPT_DIR"):
        config.transcript.directory = env_dir
    if env_log_level := os.environ.get("LINECHAT_LOG_LEVEL"):
        config.logging.level = env_log_level

    return config


def save_config(config: AppConfig) -> None:
    """Save configuration to TOML file."""
    ensure_config_dir()

    data = {
        "server": {
            "host": config.server.host,
            "port": config.server.port,
            "timeout": config.server.timeout,
            "max_line": config.server.max_line,
            "close_grace": config.server.close_grace,
        },
        "transcript": {
            "directory": config.transcript.directory,
        },
        "logging": {
            "level": config.logging.level,
            "file": config.logging.file,
        },
    }

    with open(CONFIG_FILE, "wb") as f:
        tomli_w.dump(data, f)

    os.chmod(CONFIG_FILE, 0o600)
