"""YAML configuration with environment variable overlay."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from gridloss.errors import ConfigError

logger = logging.getLogger(__name__)

ENV_VAR_PREFIX = "FLISR_"

DEFAULT_QUEUE_LENGTH = 1000
DEFAULT_TIMEOUT_S = 60.0


@dataclass
class ConfigApi:
    """Configuration API endpoints and stored credentials."""
    url: List[str] = field(default_factory=list)
    hostname: str = ""
    username: str = ""
    password: str = ""


@dataclass
class Rtdb:
    """Message bus endpoints."""
    input_bus: str = ""   # publisher: service -> bus
    output_bus: str = ""  # subscriber: bus -> service


@dataclass
class LossModel:
    """Point ids feeding the loss model of one equipment."""
    equipment: int
    voltage_ac: int = 0
    current_a: int = 0
    cos_phi: int = 0
    state: int = 0


@dataclass
class GridLossesConfig:
    log: str = "info"
    queue: int = DEFAULT_QUEUE_LENGTH
    api_prefix: str = ""
    losses: List[LossModel] = field(default_factory=list)
    timeout: float = DEFAULT_TIMEOUT_S
    include_protection: bool = False
    emit_types: List[int] = field(default_factory=lambda: [8])
    power_types: List[int] = field(default_factory=lambda: [1])
    ground_types: List[int] = field(default_factory=lambda: [2])
    flisr_graph: bool = True
    strict_cache: bool = True
    http: str = ""


@dataclass
class Configuration:
    config_api: ConfigApi = field(default_factory=ConfigApi)
    rtdb: Rtdb = field(default_factory=Rtdb)
    grid_losses: GridLossesConfig = field(default_factory=GridLossesConfig)

    @classmethod
    def load_from_file(cls, path: str, environ: Optional[Mapping[str, str]] = None) -> "Configuration":
        """
        Load configuration from a YAML file and overlay environment variables.

        Args:
            path: Path to the YAML configuration file
            environ: Environment mapping (defaults to os.environ)

        Returns:
            Validated Configuration

        Raises:
            ConfigError: If the file cannot be read or holds invalid values
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigError(f"cannot read {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"cannot parse {path}: {e}") from e

        config = cls.from_dict(data or {})
        config.read_from_env(os.environ if environ is None else environ)
        config.validate()
        return config

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Configuration":
        if not isinstance(data, dict):
            raise ConfigError("configuration root must be a mapping")

        api = _section(data, "config_api")
        rtdb = _section(data, "rtdb")
        gl = _section(data, "grid_losses")
        defaults = GridLossesConfig()

        return cls(
            config_api=ConfigApi(
                url=_as_str_list(api.get("url", []), "config_api.url"),
                hostname=_as_str(api.get("hostname", ""), "config_api.hostname"),
                username=_as_str(api.get("username", ""), "config_api.username"),
                password=_as_str(api.get("password", ""), "config_api.password"),
            ),
            rtdb=Rtdb(
                input_bus=_as_str(rtdb.get("input_bus", ""), "rtdb.input_bus"),
                output_bus=_as_str(rtdb.get("output_bus", ""), "rtdb.output_bus"),
            ),
            grid_losses=GridLossesConfig(
                log=_as_str(gl.get("log", defaults.log), "grid_losses.log"),
                queue=_as_int(gl.get("queue", defaults.queue), "grid_losses.queue"),
                api_prefix=_as_str(gl.get("api_prefix", ""), "grid_losses.api_prefix"),
                losses=[_loss_model(item, i) for i, item in enumerate(gl.get("losses") or [])],
                timeout=_as_float(gl.get("timeout", defaults.timeout), "grid_losses.timeout"),
                include_protection=_as_bool(gl.get("include_protection", False), "grid_losses.include_protection"),
                emit_types=_as_int_list(gl.get("emit_types", defaults.emit_types), "grid_losses.emit_types"),
                power_types=_as_int_list(gl.get("power_types", defaults.power_types), "grid_losses.power_types"),
                ground_types=_as_int_list(gl.get("ground_types", defaults.ground_types), "grid_losses.ground_types"),
                flisr_graph=_as_bool(gl.get("flisr_graph", True), "grid_losses.flisr_graph"),
                strict_cache=_as_bool(gl.get("strict_cache", True), "grid_losses.strict_cache"),
                http=_as_str(gl.get("http", ""), "grid_losses.http"),
            ),
        )

    def validate(self) -> None:
        """Reject values that would break the runtime guarantees."""
        if self.grid_losses.queue <= 0:
            raise ConfigError(
                f"grid_losses.queue must be a positive integer, got {self.grid_losses.queue}"
            )
        if self.grid_losses.timeout <= 0:
            raise ConfigError(
                f"grid_losses.timeout must be positive, got {self.grid_losses.timeout}"
            )
        if self.grid_losses.http:
            parse_address(self.grid_losses.http)

    def read_from_env(self, environ: Mapping[str, str]) -> None:
        """Apply every registered environment override that has a non-empty value."""
        for env_field in ENV_FIELDS:
            env_field.apply(self, environ)

    @staticmethod
    def list_env() -> List[str]:
        return [env_field.env_name for env_field in ENV_FIELDS]


# ----------------------------- env overlay -----------------------------

@dataclass(frozen=True)
class EnvField:
    """An environment-overridable leaf, addressed by its YAML section and key."""
    section: str
    name: str
    kind: str  # str | int | bool | list

    @property
    def env_name(self) -> str:
        return f"{ENV_VAR_PREFIX}{self.section}_{self.name}".upper()

    def apply(self, config: Configuration, environ: Mapping[str, str]) -> bool:
        raw = environ.get(self.env_name, "")
        if raw == "":
            return False

        target = getattr(config, self.section)
        if self.kind == "str":
            value: Any = raw
        elif self.kind == "int":
            try:
                value = int(raw, 10)
            except ValueError as e:
                raise ConfigError(f"{self.env_name}: {e}") from e
        elif self.kind == "bool":
            value = raw.strip().upper() in ("TRUE", "Y", "1")
        elif self.kind == "list":
            value = [item for item in raw.split(",") if item != ""]
        else:
            raise ConfigError(f"{self.env_name}: unsupported type '{self.kind}'")

        setattr(target, self.name, value)
        logger.debug(f"Configuration {self.section}.{self.name} overridden by {self.env_name}")
        return True


ENV_FIELDS = (
    EnvField("config_api", "url", "list"),
    EnvField("config_api", "hostname", "str"),
    EnvField("config_api", "username", "str"),
    EnvField("config_api", "password", "str"),
    EnvField("grid_losses", "log", "str"),
)


# ----------------------------- helpers -----------------------------

def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"{name} must be a mapping")
    return value


def _as_str(value: Any, where: str) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        raise ConfigError(f"{where} must be a string")
    return str(value)


def _as_int(value: Any, where: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{where} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{where} must be an integer, got {value!r}") from e


def _as_float(value: Any, where: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{where} must be a number, got {value!r}") from e


def _as_bool(value: Any, where: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ConfigError(f"{where} must be a boolean, got {value!r}")


def _as_str_list(value: Any, where: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ConfigError(f"{where} must be a list of strings")
    return [_as_str(item, where) for item in value]


def _as_int_list(value: Any, where: str) -> List[int]:
    if not isinstance(value, list):
        raise ConfigError(f"{where} must be a list of integers")
    return [_as_int(item, where) for item in value]


def _loss_model(item: Any, index: int) -> LossModel:
    where = f"grid_losses.losses[{index}]"
    if not isinstance(item, dict) or "equipment" not in item:
        raise ConfigError(f"{where} must be a mapping with an 'equipment' key")
    return LossModel(
        equipment=_as_int(item["equipment"], f"{where}.equipment"),
        voltage_ac=_as_int(item.get("voltage_ac", 0), f"{where}.voltage_ac"),
        current_a=_as_int(item.get("current_a", 0), f"{where}.current_a"),
        cos_phi=_as_int(item.get("cos_phi", 0), f"{where}.cos_phi"),
        state=_as_int(item.get("state", 0), f"{where}.state"),
    )


def parse_address(address: str) -> Tuple[str, int]:
    """
    Split a ``host:port`` listen address; an empty host means all interfaces.

    Raises:
        ConfigError: If the port is missing or out of range
    """
    host, sep, port = address.strip().rpartition(":")
    if not sep or not port.isdigit() or not 0 <= int(port) <= 65535:
        raise ConfigError(f"grid_losses.http must be host:port, got {address!r}")
    return host or "0.0.0.0", int(port)
