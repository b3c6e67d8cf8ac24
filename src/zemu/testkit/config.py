"""
Zemu Testing Framework - Configuration
======================================

Harness-wide settings (timing, image, host, pools) and the per-session
configuration record. Harness settings come from:
- Default values (defined here)
- Pytest configuration
- Environment variables

All timing values are in seconds.

Copyright (c) 2025-2026 Hugo José Pinto & Contributors
"""

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Optional
import os

from zemu.emulator.buttons import ButtonKind
from zemu.emulator.instance import DEFAULT_EMU_IMAGE
from zemu.errors import ConfigurationError
from zemu.models import DEFAULT_MODEL, get_model


def parse_pool_spec(text: str) -> Dict[str, int]:
    """
    Parse a pool size specification such as ``"nanos=2,stax=1"``.

    Raises:
        ConfigurationError: If an entry is malformed
    """
    counts: Dict[str, int] = {}
    for entry in text.split(","):
        entry = entry.strip()
        if not entry:
            continue
        name, sep, count = entry.partition("=")
        if not sep:
            raise ConfigurationError(f"invalid pool entry {entry!r} (expected model=count)")
        try:
            counts[name.strip().lower()] = int(count)
        except ValueError:
            raise ConfigurationError(f"invalid pool count in {entry!r}") from None
    return counts


def parse_path_map(text: str) -> Dict[str, Path]:
    """Parse ``"nanos=bin/app_s.elf,stax=bin/app_stax.elf"`` into a model -> path map."""
    paths: Dict[str, Path] = {}
    for entry in text.split(","):
        name, sep, path = entry.strip().partition("=")
        if sep and name.strip():
            paths[name.strip().lower()] = Path(path.strip())
    return paths


@dataclass
class HarnessConfig:
    """
    Process-wide harness configuration.

    Attributes:
        image: Emulator image reference
        host: Host the emulator ports are published on
        poll_interval: Delay between polls of every wait (default: 0.25s)
        key_delay: Minimum delay after an action when not waiting for the screen
        start_delay: How long a session may take to open its transport (default: 20s)
        start_timeout: How long the start text may take to appear (default: 30s)
        method_timeout: Per-step timeout of text-driven navigation (default: 15s)
        wait_timeout: Timeout of screen waits (default: 45s)
        kill_timeout: Budget for stopping every emulator (default: 5s)
        readiness_poll: Delay between readiness checks of a new instance
        reset_settle_delay: Delay after a pooled instance reset
        snapshots_root: Directory holding snapshots/ and snapshots-tmp/
        pool_sizes: Instances to pool per model
        pool_elfs: Application each pooled model boots with
        max_action_log_size: Actions kept for failure reports
    """

    # ═══════════════════════════════════════════════════════════════════════════
    # EMULATOR
    # ═══════════════════════════════════════════════════════════════════════════

    image: str = DEFAULT_EMU_IMAGE
    host: str = "127.0.0.1"

    # ═══════════════════════════════════════════════════════════════════════════
    # TIMING DEFAULTS (all in seconds)
    # ═══════════════════════════════════════════════════════════════════════════

    poll_interval: float = 0.25
    key_delay: float = 0.25
    start_delay: float = 20.0
    start_timeout: float = 30.0
    method_timeout: float = 15.0
    wait_timeout: float = 45.0
    kill_timeout: float = 5.0
    readiness_poll: float = 0.5
    reset_settle_delay: float = 1.0

    # ═══════════════════════════════════════════════════════════════════════════
    # PATHS AND POOLS
    # ═══════════════════════════════════════════════════════════════════════════

    snapshots_root: Path = field(default_factory=lambda: Path("."))
    pool_sizes: Dict[str, int] = field(default_factory=dict)
    pool_elfs: Dict[str, Path] = field(default_factory=dict)

    # ═══════════════════════════════════════════════════════════════════════════
    # DIAGNOSTICS
    # ═══════════════════════════════════════════════════════════════════════════

    max_action_log_size: int = 100

    # ═══════════════════════════════════════════════════════════════════════════
    # FACTORY METHODS
    # ═══════════════════════════════════════════════════════════════════════════

    @classmethod
    def from_env(cls) -> "HarnessConfig":
        """
        Create HarnessConfig from environment variables.

        Environment variables (all optional):
            ZEMU_IMAGE: Emulator image
            ZEMU_HOST: Emulator host
            ZEMU_POLL_INTERVAL: Poll interval in seconds
            ZEMU_METHOD_TIMEOUT: Navigation step timeout in seconds
            ZEMU_START_TIMEOUT: Start text timeout in seconds
            ZEMU_POOL: Pool sizes, e.g. "nanos=2,stax=1"
            ZEMU_POOL_ELF: Pool boot applications, e.g. "nanos=bin/app_s.elf"
            ZEMU_SNAPSHOTS: Snapshot root directory

        Returns:
            HarnessConfig with values from environment variables
        """
        config = cls()

        if image := os.environ.get("ZEMU_IMAGE"):
            config.image = image

        if host := os.environ.get("ZEMU_HOST"):
            config.host = host

        for var, attr in (
            ("ZEMU_POLL_INTERVAL", "poll_interval"),
            ("ZEMU_METHOD_TIMEOUT", "method_timeout"),
            ("ZEMU_START_TIMEOUT", "start_timeout"),
        ):
            if value := os.environ.get(var):
                try:
                    setattr(config, attr, float(value))
                except ValueError:
                    pass  # Ignore invalid values

        if pool := os.environ.get("ZEMU_POOL"):
            config.pool_sizes = parse_pool_spec(pool)

        if pool_elfs := os.environ.get("ZEMU_POOL_ELF"):
            config.pool_elfs = parse_path_map(pool_elfs)

        if snapshots := os.environ.get("ZEMU_SNAPSHOTS"):
            config.snapshots_root = Path(snapshots)

        return config

    @classmethod
    def from_pytest_config(cls, pytest_config) -> "HarnessConfig":
        """
        Create HarnessConfig from pytest configuration.

        Starts from the environment and applies the ini options on top:
            zemu_image = "zondax/builder-zemu:..."
            zemu_host = "127.0.0.1"
            zemu_pool = "nanos=2,stax=1"
            zemu_pool_elf = "nanos=bin/app_s.elf"

        Args:
            pytest_config: Pytest Config object

        Returns:
            HarnessConfig with values from pytest configuration
        """
        config = cls.from_env()

        if hasattr(pytest_config, "getini"):
            if image := pytest_config.getini("zemu_image"):
                config.image = image

            if host := pytest_config.getini("zemu_host"):
                config.host = host

            if pool := pytest_config.getini("zemu_pool"):
                config.pool_sizes = parse_pool_spec(pool)

            if pool_elfs := pytest_config.getini("zemu_pool_elf"):
                config.pool_elfs = parse_path_map(pool_elfs)

        return config


# ═══════════════════════════════════════════════════════════════════════════════
# SESSION CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SessionConfig:
    """
    Immutable configuration of one test session.

    Empty text fields mean "use the model default"; call ``resolved()`` to
    fill them in. Timeouts left as None fall back to the HarnessConfig.

    Attributes:
        model: Device model tag
        start_text: Text whose appearance means the app finished booting
        approve_keyword: Text of the approval screen
        reject_keyword: Text of the rejection screen
        approve_action: Touch button confirming an approval (touch models)
        case_sensitive: Whether start_text matching is case sensitive
        start_timeout: Seconds to wait for start_text
        start_delay: Seconds to wait for the transport to open
        custom: Free-form extra emulator flags
        sdk: SDK version passed to the emulator
        use_pool: Take an instance from the pool when one is available
        logging: Log progress at INFO and forward emulator output
    """
    model: str = DEFAULT_MODEL
    start_text: str = ""
    approve_keyword: str = ""
    reject_keyword: str = ""
    approve_action: ButtonKind = ButtonKind.APPROVE_HOLD
    case_sensitive: bool = False
    start_timeout: Optional[float] = None
    start_delay: Optional[float] = None
    custom: str = ""
    sdk: str = ""
    use_pool: bool = True
    logging: bool = False

    def resolved(self, harness: Optional[HarnessConfig] = None) -> "SessionConfig":
        """
        Copy with model defaults filled in for empty texts and unset timeouts.

        Raises:
            ConfigurationError: If the model is not recognized
        """
        harness = harness or get_default_config()
        model = get_model(self.model)
        return replace(
            self,
            model=model.name,
            start_text=self.start_text or model.default_start_text,
            approve_keyword=self.approve_keyword or model.default_approve_keyword,
            reject_keyword=self.reject_keyword or model.default_reject_keyword,
            start_timeout=harness.start_timeout if self.start_timeout is None else self.start_timeout,
            start_delay=harness.start_delay if self.start_delay is None else self.start_delay,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# DEFAULT CONFIGURATION INSTANCE
# ═══════════════════════════════════════════════════════════════════════════════

# Global default configuration (can be overridden in tests)
_default_config: Optional[HarnessConfig] = None


def get_default_config() -> HarnessConfig:
    """
    Get the default harness configuration.

    Creates from environment variables on first access.
    Can be overridden by calling set_default_config().

    Returns:
        Default HarnessConfig instance
    """
    global _default_config
    if _default_config is None:
        _default_config = HarnessConfig.from_env()
    return _default_config


def set_default_config(config: Optional[HarnessConfig]) -> None:
    """
    Set the default harness configuration.

    Use this in conftest.py to customize configuration for all tests.
    Passing None makes the next access re-read the environment.

    Args:
        config: Configuration to use as default
    """
    global _default_config
    _default_config = config
