"""Command line entry points for running and operating the search service."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer
import uvicorn

from directory_common.errors import WeightConfigError
from directory_common.logging import get_logger, with_fields
from directory_common.navmap import load_nav_metadata
from hybrid_search.nlp import download_nltk_resources
from hybrid_search.weights import WeightConfig, load_weight_document

__all__ = [
    "app",
    "check_weights",
    "download_nltk",
    "serve",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))

logger = get_logger(__name__)

app = typer.Typer(help="Directory search service", no_args_is_help=True)


# [nav:anchor serve]
@app.command(name="serve")
def serve(
    host: Annotated[str, typer.Option(help="Interface to bind")] = "127.0.0.1",
    port: Annotated[int, typer.Option(help="Port to bind")] = 8080,
    workers: Annotated[int, typer.Option(min=1, help="Worker processes")] = 1,
) -> None:
    """Launch the FastAPI service under uvicorn.

    Configuration is read from ``DIRSEARCH_*`` environment variables.
    """
    typer.echo(f"Starting directory search API on {host}:{port}")
    uvicorn.run(
        "directory_api.app:create_app",
        factory=True,
        host=host,
        port=port,
        workers=workers,
    )


# [nav:anchor check_weights]
@app.command(name="check-weights")
def check_weights(
    path: Annotated[Path, typer.Argument(help="JSON or YAML weight document")],
) -> None:
    """Validate a weight document without loading it into a running service.

    Raises
    ------
    typer.Exit
        With code 1 when the document cannot be read or violates the bounds.
    """
    with with_fields(logger, operation="check_weights", path=str(path)) as log:
        try:
            config = WeightConfig.from_mapping(load_weight_document(path))
        except WeightConfigError as exc:
            for violation in exc.violations or [exc.message]:
                typer.echo(violation, err=True)
            log.log_failure(
                "Weight document rejected", exception=exc, violations=len(exc.violations)
            )
            raise typer.Exit(code=1) from exc
        log.log_success("Weight document valid", version=config.version)
        typer.echo(json.dumps({"status": "valid", "version": config.version}))


# [nav:anchor download_nltk]
@app.command(name="download-nltk")
def download_nltk() -> None:
    """Fetch the NLTK data packages the query preprocessor needs."""
    fetched = download_nltk_resources()
    typer.echo(("Downloaded: " + ", ".join(fetched)) if fetched else "NLTK data already present")


if __name__ == "__main__":  # pragma: no cover
    app()
