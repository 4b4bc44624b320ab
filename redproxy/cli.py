"""Command-line interface for ad-hoc upstream fetches."""

import asyncio
import logging
import logging.config
import sys
from pathlib import Path
from typing import Awaitable, Callable, Optional

import typer
from typing_extensions import Annotated

from redproxy import json_api
from redproxy.config import LOG_LEVELS, Config
from redproxy.exceptions import RedproxyError
from redproxy.monitoring.metrics import PrometheusExporter
from redproxy.service import UpstreamService

app = typer.Typer(help="redproxy - fetch communities, posts and users through the upstream access layer")

logger = logging.getLogger(__name__)

ConfigOption = Annotated[str, typer.Option("--config", "-c", help="Path to configuration file")]
LogLevelOption = Annotated[
    Optional[str], typer.Option("--loglevel", "-l", help="Logging level (defaults to log_level from the config)")
]


def setup_logging(log_level: str = "INFO") -> None:
    """
    Set up logging configuration.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_dir = Path("logs")
    log_dir.mkdir(exist_ok=True)

    log_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
            },
        },
        "handlers": {
            # stdout carries the JSON result
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": "standard",
                "stream": "ext://sys.stderr",
            },
            "file": {
                "class": "logging.handlers.RotatingFileHandler",
                "level": log_level,
                "formatter": "standard",
                "filename": "logs/redproxy.log",
                "maxBytes": 10485760,  # 10 MB
                "backupCount": 5,
                "encoding": "utf8",
            },
        },
        "loggers": {
            "": {
                "handlers": ["console", "file"],
                "level": log_level,
                "propagate": True
            },
            "asyncio": {
                "level": "WARNING",
            },
            "aiohttp": {
                "level": "WARNING",
            },
        }
    }

    logging.config.dictConfig(log_config)


def load_config(config_path: str, log_level: Optional[str] = None) -> Config:
    """
    Load configuration, set up logging and validate, exiting on errors.

    Args:
        config_path: Path to configuration file
        log_level: Overrides the configured log_level when given
    """
    config = Config.from_files(config_path)
    if log_level:
        config.log_level = log_level
    level = str(config.log_level).upper()
    # An unknown level is reported by validate() below
    setup_logging(level if level in LOG_LEVELS else "INFO")
    validation_errors = config.validate()

    if validation_errors:
        for error in validation_errors:
            logger.error(f"Configuration error: {error}")
        logger.critical("Invalid configuration, aborting")
        sys.exit(1)

    return config


async def run_fetch(config: Config, fetch: Callable[[UpstreamService], Awaitable[json_api.JsonReply]]) -> json_api.JsonReply:
    """
    Run one fetch against a short-lived service.

    Failures are rendered as an error envelope rather than raised.
    """
    exporter = None
    if config.monitoring.enable_prometheus:
        exporter = PrometheusExporter(port=config.monitoring.prometheus_port)
        exporter.start_server()

    service = UpstreamService(config, prometheus_exporter=exporter)
    await service.initialize(scheduled_refresh=False)
    try:
        return await fetch(service)
    except RedproxyError as e:
        logger.error(f"Fetch failed: {e}")
        return json_api.error_reply(e)
    finally:
        await service.close()


def execute(config_path: str, loglevel: Optional[str], fetch: Callable[[UpstreamService], Awaitable[json_api.JsonReply]]) -> None:
    """Shared body of every command: set up, fetch, print the envelope."""
    config = load_config(config_path, loglevel)

    try:
        reply = asyncio.run(run_fetch(config, fetch))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        raise typer.Exit(code=130)

    typer.echo(reply.body)
    if reply.status != 200:
        raise typer.Exit(code=1)


@app.command()
def community(
    name: Annotated[str, typer.Argument(help="Community name, a+b multi or collection alias")],
    sort: Annotated[str, typer.Option("--sort", "-s", help="Listing sort")] = "hot",
    after: Annotated[Optional[str], typer.Option("--after", "-a", help="Pagination cursor")] = None,
    quarantine: Annotated[bool, typer.Option("--quarantine", "-q", help="Opt in to quarantined communities")] = False,
    config: ConfigOption = "config.yaml",
    loglevel: LogLevelOption = None,
) -> None:
    """Fetch a community and one page of its posts."""
    async def fetch(service: UpstreamService) -> json_api.JsonReply:
        subreddit, posts, cursor = await service.fetch_community(name, sort, after, quarantine)
        return json_api.json_response(json_api.subreddit_payload(subreddit, posts, cursor))

    execute(config, loglevel, fetch)


@app.command()
def post(
    post_id: Annotated[str, typer.Argument(help="Post id")],
    sort: Annotated[Optional[str], typer.Option("--sort", "-s", help="Comment sort")] = None,
    highlight: Annotated[Optional[str], typer.Option("--highlight", help="Comment id to highlight")] = None,
    config: ConfigOption = "config.yaml",
    loglevel: LogLevelOption = None,
) -> None:
    """Fetch a post with its comment tree."""
    async def fetch(service: UpstreamService) -> json_api.JsonReply:
        found, comments = await service.fetch_post_with_comments(post_id, sort, highlight)
        return json_api.json_response(json_api.post_payload(found, comments))

    execute(config, loglevel, fetch)


@app.command()
def user(
    name: Annotated[str, typer.Argument(help="Username")],
    listing: Annotated[str, typer.Option("--listing", help="overview, submitted or comments")] = "overview",
    after: Annotated[Optional[str], typer.Option("--after", "-a", help="Pagination cursor")] = None,
    config: ConfigOption = "config.yaml",
    loglevel: LogLevelOption = None,
) -> None:
    """Fetch a user profile and one page of their activity."""
    async def fetch(service: UpstreamService) -> json_api.JsonReply:
        profile, items, cursor = await service.fetch_user(name, listing, after)
        return json_api.json_response(json_api.user_payload(profile, items, cursor))

    execute(config, loglevel, fetch)


@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Search terms")],
    sub: Annotated[Optional[str], typer.Option("--sub", help="Restrict to this community")] = None,
    after: Annotated[Optional[str], typer.Option("--after", "-a", help="Pagination cursor")] = None,
    config: ConfigOption = "config.yaml",
    loglevel: LogLevelOption = None,
) -> None:
    """Search posts."""
    async def fetch(service: UpstreamService) -> json_api.JsonReply:
        posts, cursor = await service.fetch_search(query, sub, after)
        return json_api.json_response(json_api.search_payload(posts, cursor))

    execute(config, loglevel, fetch)


@app.command()
def wiki(
    sub: Annotated[str, typer.Argument(help="Community name")],
    page: Annotated[str, typer.Argument(help="Wiki page")] = "index",
    config: ConfigOption = "config.yaml",
    loglevel: LogLevelOption = None,
) -> None:
    """Fetch a community wiki page."""
    async def fetch(service: UpstreamService) -> json_api.JsonReply:
        return json_api.json_response(json_api.wiki_payload(await service.fetch_wiki(sub, page)))

    execute(config, loglevel, fetch)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
