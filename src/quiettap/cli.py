import binascii
import json
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import click

from quiettap.config import CONFIG_FILE, Config, _config_to_dict, load_config, save_config
from quiettap.formatter import QuietTextFormatter

logger = logging.getLogger("quiettap.cli")


def _setup_logging(verbose: bool) -> None:
    """Configure root logger. Diagnostics go to stderr so stdout stays clean."""
    log_level = logging.DEBUG if verbose else logging.WARNING
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(
        logging.Formatter("%(asctime)s [%(name)s] %(levelname)s %(message)s")
    )
    logging.basicConfig(level=log_level, handlers=[stream_handler], force=True)


def _setup_line_log(log_path: Path, max_bytes: int) -> logging.Logger:
    """Return the logger that copies rendered lines to a rotating file."""
    line_logger = logging.getLogger("quiettap.lines")
    line_logger.setLevel(logging.INFO)
    line_logger.propagate = False
    # Replace the handler when the path changes between invocations
    for handler in list(line_logger.handlers):
        if getattr(handler, "baseFilename", None) == os.path.abspath(log_path):
            return line_logger
        line_logger.removeHandler(handler)
        handler.close()
    handler = RotatingFileHandler(log_path, maxBytes=max_bytes, backupCount=3)
    handler.setFormatter(logging.Formatter("%(message)s"))
    line_logger.addHandler(handler)
    return line_logger


def _emit(ctx, data, human_lines):
    """Output JSON or human-readable text based on mode."""
    if ctx.obj.get("json"):
        click.echo(json.dumps(data))
    else:
        for line in human_lines:
            click.echo(line)


def _fail(ctx, msg):
    if ctx.obj.get("json"):
        click.echo(json.dumps({"status": "error", "message": msg}))
    else:
        click.echo(f"Error: {msg}", err=True)
    ctx.exit(1)


def _read_payload(source, hex_input: bool) -> bytes:
    data = source.read()
    if not hex_input:
        return data
    try:
        return binascii.unhexlify(b"".join(data.split()))
    except (binascii.Error, ValueError) as e:
        raise click.BadParameter(f"not valid hex: {e}", param_hint="FILE") from e


@click.group()
@click.version_option(package_name="quiettap")
@click.option("--json", "json_mode", is_flag=True, help="Output in JSON format")
@click.option("--verbose", "-v", is_flag=True, help="Log decoder diagnostics to stderr")
@click.pass_context
def main(ctx, json_mode, verbose):
    """Quiettap - one-line text rendering of dnstap messages."""
    ctx.ensure_object(dict)
    ctx.obj["json"] = json_mode
    _setup_logging(verbose)


@main.command()
@click.argument("source", type=click.File("rb"), default="-", metavar="FILE")
@click.option("--hex", "hex_input", is_flag=True, help="Input is hex text instead of raw bytes")
@click.option("--tz", "time_zone", default=None, help="Reference time zone (default from config, UTC)")
@click.option(
    "--suppress-failed-names",
    is_flag=True,
    help='Print only "X" for undecodable query names',
)
@click.pass_context
def convert(ctx, source, hex_input, time_zone, suppress_failed_names):
    """Render one encoded dnstap payload as a text line."""
    config = load_config()
    if time_zone is not None:
        config.time_zone = time_zone
    if suppress_failed_names:
        config.suppress_failed_names = True

    try:
        tz = config.tzinfo()
    except ValueError as e:
        _fail(ctx, str(e))

    payload = _read_payload(source, hex_input)
    formatter = QuietTextFormatter(tz, config.suppress_failed_names)
    line, ok = formatter.convert(payload)
    if not ok:
        logger.info("Rejected %d byte payload", len(payload))
        _fail(ctx, "could not decode dnstap payload")

    if config.line_log and line:
        _setup_line_log(
            Path(config.line_log).expanduser(),
            max_bytes=config.log_max_size_mb * 1024 * 1024,
        ).info("%s", line.decode().rstrip("\n"))

    if ctx.obj.get("json"):
        click.echo(json.dumps({"status": "ok", "line": line.decode().rstrip("\n")}))
    elif line:
        click.echo(line.decode(), nl=False)


@main.command("config")
@click.option("--init", is_flag=True, help="Write the default configuration file")
@click.pass_context
def config_cmd(ctx, init):
    """Show the effective configuration."""
    if init:
        if CONFIG_FILE.exists():
            _fail(ctx, f"{CONFIG_FILE} already exists")
        save_config(Config())
        logger.info("Wrote default config to %s", CONFIG_FILE)

    config = load_config()
    data = _config_to_dict(config)
    found = "" if CONFIG_FILE.exists() else " (not found, using defaults)"
    names = "suppressed" if config.suppress_failed_names else "shown as X \"\""
    _emit(
        ctx,
        {"path": str(CONFIG_FILE), **data},
        [
            f"Config file:   {CONFIG_FILE}{found}",
            f"Time zone:     {config.time_zone}",
            f"Failed names:  {names}",
            f"Line log:      {config.line_log or '(disabled)'}",
            f"Log max size:  {config.log_max_size_mb} MB",
        ],
    )
