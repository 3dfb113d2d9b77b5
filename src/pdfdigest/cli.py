import asyncio
import dataclasses
import json
import logging
import sys

import click

from pdfdigest.errors import PipelineError

FORMATS = ["pdf", "txt", "md", "docx", "json"]


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log pipeline activity to stderr.")
def cli(verbose):
    """pdfdigest: summarize PDF documents with a language model."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@click.command()
@click.option("--input", "-i", required=True, type=click.Path(exists=True), help="Path to input PDF.")
def extract_cmd(input):
    """Extract text from a PDF."""
    from pdfdigest.ingest import extract, load_document

    try:
        click.echo(extract(load_document(input)))
    except PipelineError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


cli.add_command(extract_cmd, name="extract")


def _echo_progress(progress):
    click.echo(f"[{progress.percent:3d}%] {progress.stage.value}", err=True)


@click.command()
@click.option("--input", "-i", required=True, type=click.Path(exists=True), help="Path to input PDF.")
@click.option(
    "--llm", type=click.Choice(["cloud", "local", "extractive"]), default="cloud", help="Summarization backend."
)
@click.option("--model", help="Specific LLM model name.")
@click.option("--out", "-o", type=click.Path(), help="Output file or directory.")
@click.option("--format", "-f", type=click.Choice(FORMATS), default="pdf")
@click.option("--max-chunk-size", type=click.IntRange(min=1), help="Backend input ceiling in characters.")
@click.option("--concurrency", type=click.IntRange(min=1), help="Chunk summaries in flight at once.")
@click.option("--no-save", is_flag=True, help="Print the summary to stdout without rendering a file.")
def summarize(input, llm, model, out, format, max_chunk_size, concurrency, no_save):
    """Extract, summarize and render a PDF."""
    from pdfdigest.config import PipelineConfig
    from pdfdigest.exporter import render, write_artifact
    from pdfdigest.ingest import load_document
    from pdfdigest.llm_adapter import build_adapter
    from pdfdigest.orchestrator import SummaryPipeline

    config = PipelineConfig.from_env()
    overrides = {}
    if max_chunk_size:
        overrides["max_chunk_size"] = max_chunk_size
    if concurrency:
        overrides["max_concurrency"] = concurrency
    if model:
        overrides["model_name"] = model
    config = dataclasses.replace(config, **overrides)

    if llm == "cloud" and not config.api_key:
        click.echo("Warning: CLOUD_LLM_API_KEY not set. Falling back to extractive summaries.", err=True)
    try:
        adapter = build_adapter(llm, config, model=model)
    except ImportError:
        click.echo(
            "Error: 'transformers' not found. Install with 'pip install transformers torch'.",
            err=True,
        )
        sys.exit(1)

    pipeline = SummaryPipeline(config, llm=adapter)

    try:
        document = load_document(input)
        summary = asyncio.run(pipeline.run(document, on_progress=_echo_progress))

        if no_save:
            click.echo(summary.text)
            return

        path = write_artifact(render(summary, format=format), out)
        click.echo(f"Summary exported to {path}")
    except PipelineError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.command(name="render")
@click.option("--input", "-i", required=True, type=click.Path(exists=True), help="Summary saved with --format json.")
@click.option("--out", "-o", type=click.Path(), help="Output file or directory.")
@click.option("--format", "-f", type=click.Choice(FORMATS), default="pdf")
def render_cmd(input, out, format):
    """Render a previously saved summary without re-running the pipeline."""
    from pdfdigest.exporter import render, write_artifact
    from pdfdigest.models import FinalSummary

    try:
        with open(input, "r", encoding="utf-8") as f:
            summary = FinalSummary.from_dict(json.load(f))
    except ValueError as e:
        click.echo(f"Error: {input} is not a saved summary: {e}", err=True)
        sys.exit(1)

    try:
        path = write_artifact(render(summary, format=format), out)
        click.echo(f"Summary exported to {path}")
    except PipelineError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def main():
    cli()


cli.add_command(summarize)
cli.add_command(render_cmd)


if __name__ == "__main__":
    main()
