from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional, Tuple

import click

from .chunking import ResumeChunker
from .config import RAGConfig, get_settings, load_rag_config
from .embeddings import HashingEmbeddingProvider
from .errors import InitializationError
from .service import RAGService

_log = logging.getLogger(__name__)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _read_resume(path: Path) -> str:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        raise click.ClickException(f"Resume file is empty: {path}")
    return text


@click.group()
def main() -> None:
    """CLI entrypoint for the resume retrieval core."""


@main.command("chunk")
@click.argument("resume_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON file with RAG configuration overrides.",
)
def chunk_cmd(resume_file: Path, config_file: Optional[Path]) -> None:
    """Print the chunks of a plain-text resume as JSON lines."""
    settings = get_settings()
    _setup_logging(settings.log_level)

    config = load_rag_config(config_file) if config_file else settings.rag
    chunker = ResumeChunker(config.chunking)
    chunks = chunker.chunk(_read_resume(resume_file))
    _log.info("Produced %d chunks from %s", len(chunks), resume_file)

    for chunk in chunks:
        click.echo(chunk.model_dump_json(exclude={"embedding"}))


@main.command("query")
@click.argument("resume_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("queries", nargs=-1)
@click.option(
    "--job-description",
    "job_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Plain-text job description used to generate an extra query.",
)
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON file with RAG configuration overrides.",
)
@click.option("--hashing", is_flag=True, help="Use hashing embeddings instead of BGE-M3.")
@click.option("--prompt", "base_prompt", help="Print this prompt augmented with the retrieved context.")
def query_cmd(
    resume_file: Path,
    queries: Tuple[str, ...],
    job_file: Optional[Path],
    config_file: Optional[Path],
    hashing: bool,
    base_prompt: Optional[str],
) -> None:
    """
    Retrieve cited resume context for QUERIES.

    Without QUERIES the standard analysis queries are used, plus one built
    from the job description when given.
    """
    settings = get_settings()
    _setup_logging(settings.log_level)

    config: RAGConfig = load_rag_config(config_file) if config_file else settings.rag
    provider = HashingEmbeddingProvider(dimension=settings.embedding_dimension) if hashing else None

    service = RAGService(config, embedding_provider=provider, settings=settings)
    try:
        try:
            service.initialize(_read_resume(resume_file))
        except InitializationError as exc:
            raise click.ClickException(str(exc)) from exc

        job_description = job_file.read_text(encoding="utf-8") if job_file else None
        query_list = list(queries) or service.generate_queries("comprehensive", job_description)
        context = service.retrieve_multi_query_context(query_list)

        if base_prompt is not None:
            click.echo(service.augment_prompt(base_prompt, context))
            return

        payload = {
            "query": context.query,
            "context_text": context.context_text,
            "citations": [citation.model_dump(mode="json") for citation in context.citations],
        }
        click.echo(json.dumps(payload, indent=2, ensure_ascii=False))
    finally:
        service.dispose()


if __name__ == "__main__":
    main()
