"""Entry point for the habitrack MCP server.

``main()`` resolves the configuration (CLI > TOML file > defaults), then
``CoreServer`` builds the document store, clock and habit repository and
serves the habit tools over stdio. Logging goes to stderr only, since stdout
carries the MCP JSON-RPC stream.

Exit codes: 0 on normal shutdown, 1 on configuration failures (unreadable or
invalid TOML, unknown keys, validation errors, missing explicit config file)
and on unhandled exceptions.
"""

import argparse
import logging
import os
import signal
import sys
import tomllib
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastmcp import Context, FastMCP

from habitrack import __version__
from habitrack.config import ServerConfig
from habitrack.core.clock import ZoneClock
from habitrack.core.repository import HabitRepository
from habitrack.store.firestore import FirestoreDocumentStore
from habitrack.store.memory import InMemoryDocumentStore
from habitrack.store.protocols import DocumentStore
from habitrack.tools.habits import HabitTools

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "./config.toml"

# CLI option dest -> ServerConfig field
_CLI_FIELD_MAP = {
    "log_level": "log_level",
    "user_id": "user_id",
    "store_backend": "store_backend",
    "project_id": "firestore_project_id",
    "token": "store_token",
    "timezone": "timezone",
}


class CoreServer:
    """Owns the FastMCP app and the habit repository it serves.

    The store and repository are created lazily and cached, so tools and
    tests share a single instance of each.
    """

    def __init__(self, config: ServerConfig) -> None:
        self.config = config
        self._store: DocumentStore | None = None
        self._repository: HabitRepository | None = None
        self._sigint_count = 0

        self._setup_logging()
        self.app = FastMCP(name="habitrack", version=__version__, lifespan=self._lifespan)
        self.app.tool(self.ping_tool, name="ping")
        HabitTools(self.app, self.get_repository())
        signal.signal(signal.SIGINT, self._handle_signal)
        signal.signal(signal.SIGTERM, self._handle_signal)

    def _setup_logging(self) -> None:
        """Send every log record to stderr at the configured level."""
        logging.basicConfig(
            level=getattr(logging, self.config.log_level),
            format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
            stream=sys.stderr,
        )

    def _handle_signal(self, signum: int, _frame: object | None) -> None:
        # os._exit skips interpreter teardown, which could write to stdout.
        if signum != signal.SIGINT:
            logger.info("Received signal %d, shutting down", signum)
            os._exit(0)
        self._sigint_count += 1
        if self._sigint_count > 1:
            logger.warning("Second SIGINT received; forcing immediate exit")
            os._exit(1)
        logger.info("Received SIGINT, shutting down")
        os._exit(0)

    def get_store(self) -> DocumentStore:
        """Return the configured document store, creating it on first use."""
        if self._store is None:
            if self.config.store_backend == "firestore":
                self._store = FirestoreDocumentStore(self.config)
            else:
                self._store = InMemoryDocumentStore()
            logger.info("Using %s document store", self.config.store_backend)
        return self._store

    def get_repository(self) -> HabitRepository:
        """Return the habit repository, creating it on first use."""
        if self._repository is None:
            self._repository = HabitRepository(
                self.get_store(),
                self.config.user_id,
                clock=ZoneClock(self.config.timezone),
                default_target_completions=self.config.default_target_completions,
            )
        return self._repository

    @asynccontextmanager
    async def _lifespan(self, _app: FastMCP) -> AsyncIterator[None]:
        # Teardown runs on the server's own event loop, before it closes.
        try:
            yield
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        """Stop store subscriptions and close its connections."""
        if self._store is not None:
            logger.info("Closing %s document store", self.config.store_backend)
            await self._store.aclose()

    async def ping_tool(self, ctx: Context) -> str:
        """Health check returning ``pong``."""
        await ctx.info("Ping received")
        return "pong"

    def run(self) -> None:
        """Serve MCP over stdio until the client disconnects.

        The server lifespan closes the document store on the way out.
        """
        logger.info("Starting habitrack %s for user %s", __version__, self.config.user_id)
        try:
            self.app.run(transport="stdio")
        except KeyboardInterrupt:
            logger.info("Server shutdown requested via KeyboardInterrupt")
            raise
        except Exception:
            logger.exception("Server stopped by an unhandled exception")
            raise


def _read_config_file(path: Path) -> dict[str, Any]:
    """Read a TOML config file, exiting with status 1 on any problem.

    A missing file yields an empty mapping.
    """
    if not path.exists():
        return {}
    try:
        with path.open("rb") as handle:
            data = tomllib.load(handle)
    except tomllib.TOMLDecodeError:
        logger.exception("Invalid TOML in %s", path)
        sys.exit(1)
    except OSError:
        logger.exception("Cannot read %s", path)
        sys.exit(1)

    unknown = sorted(set(data) - set(ServerConfig.model_fields))
    if unknown:
        logger.error("Unknown configuration keys in %s: %s", path, ", ".join(unknown))
        sys.exit(1)
    logger.info("Loaded configuration from %s", path)
    return data


def load_configuration(args: argparse.Namespace) -> ServerConfig:
    """Merge defaults, the TOML file and CLI options into a ServerConfig.

    CLI options override file values, which override field defaults.

    Raises:
        SystemExit: When the explicit config file is missing, the file is
            invalid, or the merged values fail validation.
    """
    path = Path(args.config_file or DEFAULT_CONFIG_FILE)
    if args.config_file and not path.exists():
        logger.error("Configuration file not found: %s", path)
        sys.exit(1)

    values = _read_config_file(path)
    for option, field in _CLI_FIELD_MAP.items():
        override = getattr(args, option, None)
        if override is not None:
            values[field] = override
    values["config_file"] = str(path) if args.config_file else DEFAULT_CONFIG_FILE

    try:
        config = ServerConfig(**values)
    except ValueError:
        logger.exception("Invalid configuration")
        sys.exit(1)
    logger.info("Effective configuration: %s", config.to_redacted_dict())
    return config


def parse_cli_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line options; unset options are None."""
    parser = argparse.ArgumentParser(description="habitrack MCP server")
    parser.add_argument("--config-file", help=f"TOML config file (default: {DEFAULT_CONFIG_FILE})")
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    )
    parser.add_argument("--user-id", help="user whose habits collection is served")
    parser.add_argument("--store-backend", choices=["memory", "firestore"])
    parser.add_argument("--project-id", help="Firestore project (firestore backend only)")
    parser.add_argument("--token", help="bearer token for the Firestore REST API")
    parser.add_argument("--timezone", help="IANA timezone defining 'today' (default: UTC)")
    return parser.parse_args(argv)


def main() -> None:
    """Console entry point."""
    try:
        server = CoreServer(load_configuration(parse_cli_args()))
        server.run()
    except KeyboardInterrupt:
        logger.info("Server shutdown requested via KeyboardInterrupt")
    except Exception:
        logger.exception("Unhandled exception in server")
        sys.exit(1)
    finally:
        logger.info("Server shutdown complete")


if __name__ == "__main__":
    main()
