"""
This module provides configuration and logging setup for the ComfyUI firewall toggle. It defines the `FirewallConfig` data class holding the container and firewall identifiers, along with utility functions to configure the logging system and load and validate environment-based configuration.
"""

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

LOGGER_NAME = "comfyui_firewall"


@dataclass
class FirewallConfig:
    container_name: str = "comfyui-secure"
    tag: str = "comfyui-no-internet"
    chain: str = "DOCKER-USER"
    iptables_binary: str = "iptables"
    probe_url: str = "https://example.com"
    probe_timeout: int = 3
    probe_attempts: int = 2
    probe_retry_interval: int = 2
    ui_url: str = "http://127.0.0.1:8188"
    log_level: str = "ERROR"


def configure_logging(level: str | int = logging.WARNING) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    if not logger.handlers:
        console_handler = logging.StreamHandler()
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    for handler in logger.handlers:
        handler.setLevel(level)

    return logger


def _int_setting(name: str, default: int, errors: list[str]) -> int:
    raw = os.getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        errors.append(f"{name} must be an integer (got {raw!r})")
        return default
    if value <= 0:
        errors.append(f"{name} must be positive (got {value})")
    return value


def load_and_validate_config() -> FirewallConfig:
    load_dotenv()

    errors: list[str] = []
    defaults = FirewallConfig()

    config = FirewallConfig(
        container_name=os.getenv("COMFYUI_CONTAINER_NAME", defaults.container_name),
        tag=os.getenv("FIREWALL_TAG", defaults.tag),
        chain=os.getenv("FIREWALL_CHAIN", defaults.chain),
        iptables_binary=os.getenv("IPTABLES_BINARY", defaults.iptables_binary),
        probe_url=os.getenv("PROBE_URL", defaults.probe_url),
        probe_timeout=_int_setting("PROBE_TIMEOUT", defaults.probe_timeout, errors),
        probe_attempts=_int_setting("PROBE_ATTEMPTS", defaults.probe_attempts, errors),
        probe_retry_interval=_int_setting("PROBE_RETRY_INTERVAL", defaults.probe_retry_interval, errors),
        ui_url=os.getenv("COMFYUI_UI_URL", defaults.ui_url),
        log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
    )

    required_settings = {
        "COMFYUI_CONTAINER_NAME": config.container_name,
        "FIREWALL_TAG": config.tag,
        "FIREWALL_CHAIN": config.chain,
        "IPTABLES_BINARY": config.iptables_binary,
    }
    errors.extend(f"{name} must not be empty" for name, value in required_settings.items() if not value.strip())

    if config.log_level not in logging.getLevelNamesMapping():
        errors.append(f"LOG_LEVEL must be a logging level name (got {config.log_level!r})")

    if errors:
        raise ValueError(f"Invalid configuration: {'; '.join(errors)}")

    return config
