from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .services import transport as transport_svc
from .services.classifier import ResponsePolicy
from .services.errors import TransportError
from .services.scheduler import RX_BUFFER_SIZE
from .services.session import SessionSettings, run_session
from .services.source import CommandSource

# -----------------------------------------------------------------------------
# App metadata / logging
# -----------------------------------------------------------------------------
APP_NAME = "grblstream"
APP_VERSION = "0.1.0"

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

log = logging.getLogger(APP_NAME)

# Rates the termios layer on the host can be asked for.
SUPPORTED_BAUDRATES = (
    50, 75, 110, 134, 150, 200, 300, 600, 1200, 1800, 2400, 4800,
    9600, 19200, 38400, 57600, 115200, 230400,
)


class ConfigError(RuntimeError):
    pass


# -----------------------------------------------------------------------------
# Config models
# -----------------------------------------------------------------------------
class SerialConfig(BaseModel):
    port: Optional[str] = None
    baud: int = 115200
    write_timeout_s: Optional[float] = None

    @field_validator("baud")
    @classmethod
    def _check_baud(cls, v: int) -> int:
        if v not in SUPPORTED_BAUDRATES:
            raise ValueError(f"Unsupported baudrate: {v}")
        return v


class StreamConfig(BaseModel):
    rx_buffer_size: int = Field(default=RX_BUFFER_SIZE, ge=2)
    settle_s: float = Field(default=2.0, ge=0.0)
    read_banner: bool = True
    banner_timeout_s: float = Field(default=1.0, ge=0.0)
    ok_tokens: List[str] = ["ok"]
    info_tokens: List[str] = []   # empty: any non-ok reply halts the stream


class LoggingConfig(BaseModel):
    level: str = "INFO"


class AppConfig(BaseSettings):
    serial: SerialConfig = Field(default_factory=SerialConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="GRBLSTREAM_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    def session_settings(self) -> SessionSettings:
        return SessionSettings(
            rx_buffer_size=self.stream.rx_buffer_size,
            settle_s=self.stream.settle_s,
            read_banner=self.stream.read_banner,
            banner_timeout_s=self.stream.banner_timeout_s,
            policy=ResponsePolicy(
                ok_tokens=list(self.stream.ok_tokens),
                info_tokens=list(self.stream.info_tokens),
            ),
        )


# -----------------------------------------------------------------------------
# Load config.yaml
# -----------------------------------------------------------------------------
def load_config(path: Optional[Path] = None, overrides: Optional[dict] = None) -> AppConfig:
    """
    Read YAML (if present), merge CLI overrides section by section, validate.
    """
    raw: dict = {}
    if path is not None:
        if not path.exists():
            log.warning("config file not found at %s; using defaults", path)
        else:
            with path.open("r", encoding="utf-8") as f:
                try:
                    raw = yaml.safe_load(f) or {}
                except yaml.YAMLError as e:
                    raise ConfigError(f"Invalid config file {path}: {e}") from e
            if not isinstance(raw, dict):
                raise ConfigError(f"Invalid config file {path}: top level must be a mapping")

    for section, body in raw.items():
        if body is not None and not isinstance(body, dict):
            raise ConfigError(f"Invalid config section {section!r}: expected a mapping")

    for section, values in (overrides or {}).items():
        merged = dict(raw.get(section) or {})
        merged.update({k: v for k, v in values.items() if v is not None})
        raw[section] = merged

    try:
        return AppConfig(**raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


# -----------------------------------------------------------------------------
# CLI
# -----------------------------------------------------------------------------
def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Stream a G-code file to a GRBL controller with character-counting flow control.",
        epilog=f"Example: {APP_NAME} -S /dev/ttyUSB0 -f example.gcode -b 115200 -v",
    )
    p.add_argument("-S", "--serial", help="Serial device (e.g., /dev/ttyUSB0)")
    p.add_argument("-f", "--file", help="G-code file to stream")
    p.add_argument("-b", "--baud", type=int, default=None, help="Baudrate (default: 115200)")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")
    p.add_argument("-c", "--config", type=Path, default=Path("config.yaml"),
                   help="YAML config file (default: ./config.yaml)")
    p.add_argument("--list-ports", action="store_true", help="List serial ports and exit")
    p.add_argument("--version", action="version", version=f"%(prog)s {APP_VERSION}")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    if argv is None:
        argv = sys.argv[1:]
    if not argv:
        parser.print_help()
        return 0
    args = parser.parse_args(argv)

    try:
        cfg = load_config(args.config, {"serial": {"port": args.serial, "baud": args.baud}})
    except ConfigError as e:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
        log.error("%s", e)
        return 1

    level = logging.DEBUG if args.verbose else getattr(logging, cfg.logging.level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)

    if args.list_ports:
        for port in transport_svc.list_ports():
            print(f"{port['device']}\t{port['by_id'] or '-'}\t{port['description']}")
        return 0

    if not cfg.serial.port or not args.file:
        log.error("Serial device and G-code file are required.")
        parser.print_help()
        return 1

    gcode_path = Path(args.file)
    if not gcode_path.is_file():
        log.error("Error opening G-code file: %s", gcode_path)
        return 1

    try:
        ser = transport_svc.open_serial(cfg.serial.port, cfg.serial.baud, cfg.serial.write_timeout_s)
    except TransportError as e:
        log.error("%s", e)
        return 1

    try:
        with CommandSource.from_path(gcode_path) as source:
            outcome = run_session(
                source,
                transport_svc.SerialTransport(ser),
                cfg.session_settings(),
            )
    finally:
        ser.close()

    if outcome.ok:
        log.info("Streaming completed successfully.")
    else:
        log.error("Streaming halted due to error: %s (%d line(s) abandoned)", outcome.reason, outcome.abandoned)
    return outcome.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
