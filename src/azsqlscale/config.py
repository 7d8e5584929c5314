"""Configuration management module.

Configuration is an immutable ScalerConfig value built once per invocation
and passed explicitly to the orchestrator. Sources, lowest precedence first:

1. Built-in defaults
2. TOML file (~/.azsqlscale/config.toml, or $AZSQLSCALE_CONFIG)
3. Environment variables (AZSQLSCALE_*)
4. CLI overrides

Security:
- Config file permissions: 0600 (owner read/write only)
- Path validation
- Webhook URL is masked whenever config is displayed
"""

import logging
import os
import tempfile
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any

try:
    import tomli  # type: ignore[import]
except ImportError:
    # Fallback for Python versions that ship tomllib
    try:
        import tomllib as tomli  # type: ignore[import,no-redef]
    except ImportError as e:
        raise ImportError("toml library not available. Install with: pip install tomli") from e

try:
    import tomlkit
except ImportError as e:
    raise ImportError("tomlkit library not available. Install with: pip install tomlkit") from e

from azsqlscale.models import ScaleDirection
from azsqlscale.window_gate import DEFAULT_ALLOWED_HOURS, WindowGatePolicy, parse_hours

logger = logging.getLogger(__name__)

BACKENDS = ("cli", "sdk")
CONVERGENCE_STRATEGIES = ("poll", "fixed")


class ConfigError(Exception):
    """Raised when configuration operations fail."""

    pass


@dataclass(frozen=True)
class ScalerConfig:
    """Scaler configuration data."""

    slack_webhook_url: str | None = None
    notification_username: str | None = "azsqlscale"
    allowed_hours: frozenset[int] = DEFAULT_ALLOWED_HOURS
    timezone_offset_hours: int = 0
    supported_skus: frozenset[str] = frozenset({"GP_Gen5"})
    gated_directions: frozenset[ScaleDirection] = frozenset({ScaleDirection.UP})

    # Convergence after a capacity change
    settle_seconds_up: float = 30.0
    settle_seconds_down: float = 120.0  # scale-down takes longer to settle
    convergence: str = "poll"
    convergence_timeout_seconds: float = 600.0
    poll_interval_seconds: float = 15.0
    max_poll_interval_seconds: float = 60.0

    # Control plane
    backend: str = "cli"
    az_timeout_seconds: int = 900
    az_max_attempts: int = 3

    # Webhook delivery
    webhook_timeout_seconds: float = 10.0
    webhook_max_attempts: int = 3

    def __post_init__(self):
        """Validate configuration."""
        if any(h < 0 or h > 23 for h in self.allowed_hours):
            raise ValueError("allowed_hours must be within 0-23")

        if not -23 <= self.timezone_offset_hours <= 23:
            raise ValueError("timezone_offset_hours must be within -23..23")

        if not self.supported_skus:
            raise ValueError("supported_skus cannot be empty")

        if self.backend not in BACKENDS:
            raise ValueError(f"backend must be one of {BACKENDS}, got {self.backend!r}")

        if self.convergence not in CONVERGENCE_STRATEGIES:
            raise ValueError(
                f"convergence must be one of {CONVERGENCE_STRATEGIES}, got {self.convergence!r}"
            )

        for name in ("settle_seconds_up", "settle_seconds_down", "convergence_timeout_seconds"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")

        if self.poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")

        if self.az_max_attempts < 1 or self.webhook_max_attempts < 1:
            raise ValueError("max attempts must be at least 1")

    @property
    def gate_policy(self) -> WindowGatePolicy:
        return WindowGatePolicy(gated_directions=self.gated_directions)

    def settle_seconds(self, direction: ScaleDirection) -> float:
        if direction == ScaleDirection.UP:
            return self.settle_seconds_up
        return self.settle_seconds_down

    def to_dict(self) -> dict[str, Any]:
        """Convert to a TOML-friendly dictionary, excluding None values."""
        data = asdict(self)
        data["allowed_hours"] = sorted(self.allowed_hours)
        data["supported_skus"] = sorted(self.supported_skus)
        data["gated_directions"] = sorted(d.value for d in self.gated_directions)
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScalerConfig":
        """Create from a dictionary of raw (file, env or CLI) values.

        Unknown keys are ignored with a warning.

        Raises:
            ConfigError: If a value cannot be coerced or fails validation
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(sorted(unknown))}")

        kwargs = {}
        try:
            for key, value in data.items():
                if key in known and value is not None:
                    kwargs[key] = _coerce(key, value)
            return cls(**kwargs)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration: {e}") from e


def _coerce(key: str, value: Any) -> Any:
    """Convert a raw config value to the field's type."""
    if key == "allowed_hours":
        if isinstance(value, str):
            return parse_hours(value)
        return frozenset(int(h) for h in value)

    if key == "supported_skus":
        if isinstance(value, str):
            value = value.split(",")
        return frozenset(s.strip() for s in value if s.strip())

    if key == "gated_directions":
        if isinstance(value, str):
            value = value.split(",")
        return frozenset(ScaleDirection(d.strip().lower()) for d in value if d.strip())

    if key in ("timezone_offset_hours", "az_timeout_seconds", "az_max_attempts",
               "webhook_max_attempts"):
        return int(value)

    if key.endswith("_seconds"):
        return float(value)

    return value


# Environment variable -> config key
ENV_VARS: dict[str, str] = {
    "AZSQLSCALE_SLACK_WEBHOOK_URL": "slack_webhook_url",
    "AZSQLSCALE_NOTIFICATION_USERNAME": "notification_username",
    "AZSQLSCALE_ALLOWED_HOURS": "allowed_hours",
    "AZSQLSCALE_TIMEZONE_OFFSET": "timezone_offset_hours",
    "AZSQLSCALE_SUPPORTED_SKUS": "supported_skus",
    "AZSQLSCALE_GATED_DIRECTIONS": "gated_directions",
    "AZSQLSCALE_CONVERGENCE": "convergence",
    "AZSQLSCALE_CONVERGENCE_TIMEOUT": "convergence_timeout_seconds",
    "AZSQLSCALE_BACKEND": "backend",
}


class ConfigManager:
    """Load and initialise the azsqlscale configuration file.

    Configuration is stored at ~/.azsqlscale/config.toml with secure permissions.
    """

    DEFAULT_CONFIG_DIR = Path.home() / ".azsqlscale"
    DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.toml"

    @classmethod
    def _validate_config_path(cls, path: Path) -> Path:
        """Validate configuration file path for security.

        Allowed locations: ~/.azsqlscale/, the current working directory and the
        system temporary directory.

        Raises:
            ConfigError: If path is outside allowed directories
        """
        resolved_path = path.resolve()

        allowed_dirs = [
            cls.DEFAULT_CONFIG_DIR.resolve(),
            Path.cwd().resolve(),
            Path(tempfile.gettempdir()).resolve(),
        ]

        for allowed_dir in allowed_dirs:
            try:
                resolved_path.relative_to(allowed_dir)
                return resolved_path
            except ValueError:
                continue

        raise ConfigError(
            f"Config path outside allowed directories: {resolved_path}\n"
            f"Allowed directories:\n"
            f"  - {cls.DEFAULT_CONFIG_DIR}\n"
            f"  - {Path.cwd()}"
        )

    @classmethod
    def get_config_path(cls, custom_path: str | None = None) -> Path:
        """Resolve the config file path.

        Precedence: custom_path, $AZSQLSCALE_CONFIG, default location.

        Raises:
            ConfigError: If an explicit path is invalid or missing
        """
        explicit = custom_path or os.getenv("AZSQLSCALE_CONFIG")
        if explicit:
            path = cls._validate_config_path(Path(explicit).expanduser())
            if not path.exists():
                raise ConfigError(f"Config file not found: {path}")
            return path

        return cls.DEFAULT_CONFIG_FILE

    @classmethod
    def read_file(cls, config_path: Path) -> dict[str, Any]:
        """Read raw values from a TOML config file.

        Returns an empty dict when the file does not exist.
        """
        if not config_path.exists():
            logger.debug("Config file not found, using defaults")
            return {}

        try:
            mode = config_path.stat().st_mode & 0o777
            if mode & 0o077:
                logger.warning(
                    f"Config file has insecure permissions: {oct(mode)}. Fixing to 0600..."
                )
                os.chmod(config_path, 0o600)

            with open(config_path, "rb") as f:
                data = tomli.load(f)  # type: ignore[attr-defined]

        except Exception as e:
            raise ConfigError(f"Failed to load config: {e}") from e

        logger.debug(f"Loaded config from: {config_path}")
        return dict(data)

    @staticmethod
    def read_environment() -> dict[str, Any]:
        """Collect config values from AZSQLSCALE_* environment variables."""
        return {key: os.environ[env] for env, key in ENV_VARS.items() if os.environ.get(env)}

    @classmethod
    def load_config(
        cls, custom_path: str | None = None, overrides: dict[str, Any] | None = None
    ) -> ScalerConfig:
        """Build the effective configuration.

        Args:
            custom_path: Custom config file path (optional)
            overrides: Highest-precedence values, typically from CLI options

        Returns:
            ScalerConfig

        Raises:
            ConfigError: If loading or validation fails
        """
        data = cls.read_file(cls.get_config_path(custom_path))
        data.update(cls.read_environment())
        data.update({k: v for k, v in (overrides or {}).items() if v is not None})
        return ScalerConfig.from_dict(data)

    @classmethod
    def write_default_config(cls, custom_path: str | None = None, force: bool = False) -> Path:
        """Write a commented default config file.

        Args:
            custom_path: Target path (default: ~/.azsqlscale/config.toml)
            force: Overwrite an existing file

        Returns:
            Path written

        Raises:
            ConfigError: If the file exists (without force) or writing fails
        """
        if custom_path:
            config_path = cls._validate_config_path(Path(custom_path).expanduser())
        else:
            config_path = cls.DEFAULT_CONFIG_FILE

        if config_path.exists() and not force:
            raise ConfigError(f"Config file already exists: {config_path} (use --force)")

        defaults = ScalerConfig()
        doc = tomlkit.document()
        doc.add(tomlkit.comment("azsqlscale configuration"))
        doc.add(tomlkit.comment("Overridden by AZSQLSCALE_* env vars and CLI options"))
        doc.add(tomlkit.nl())
        doc.add(tomlkit.comment('slack_webhook_url = "https://hooks.slack.com/services/..."'))
        for key, value in defaults.to_dict().items():
            doc[key] = value
        doc["settle_seconds_down"].comment("scale-down takes longer to reach a consistent state")
        doc["convergence"].comment('"poll" (re-check until timeout) or "fixed" (single check)')
        doc["backend"].comment('"cli" (az CLI) or "sdk" (azure-mgmt-sql)')

        temp_path = config_path.with_suffix(".tmp")
        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w") as f:
                tomlkit.dump(doc, f)
            os.chmod(temp_path, 0o600)
            temp_path.replace(config_path)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise ConfigError(f"Failed to write config: {e}") from e

        logger.info(f"Wrote default config to: {config_path}")
        return config_path


def with_overrides(config: ScalerConfig, **changes: Any) -> ScalerConfig:
    """Return a copy of config with the given (already typed) fields replaced."""
    return replace(config, **{k: v for k, v in changes.items() if v is not None})


__all__ = ["ConfigError", "ConfigManager", "ScalerConfig", "with_overrides"]
