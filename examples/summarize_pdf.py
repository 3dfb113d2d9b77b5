"""
Example script: Programmatic PDF summarization using pipeline components.
This script demonstrates how to drive a pipeline run and render the result.
"""

import asyncio

from pdfdigest.config import PipelineConfig
from pdfdigest.exporter import render, write_artifact
from pdfdigest.ingest import load_document
from pdfdigest.llm_adapter import ExtractiveAdapter
from pdfdigest.orchestrator import SummaryPipeline


async def run_example(pdf_path: str):
    print(f"--- Processing {pdf_path} ---")

    config = PipelineConfig.from_env()
    # The extractive backend needs no API key; swap in CloudAdapter for real summaries.
    pipeline = SummaryPipeline(config, llm=ExtractiveAdapter())

    run = pipeline.create_run(load_document(pdf_path))
    run.subscribe(lambda progress: print(f"{progress.percent:3d}% {progress.stage.value}"))

    summary = await run.execute()

    print("\n--- Summary Result ---\n")
    print(summary.text)

    path = write_artifact(render(summary, format="md"))
    print(f"\nSaved {path}")


if __name__ == "__main__":
    import sys

    path = sys.argv[1] if len(sys.argv) > 1 else "sample.pdf"
    try:
        asyncio.run(run_example(path))
    except Exception as e:
        print(f"Note: Could not run example automatically: {e}")
        print("Usage: python examples/summarize_pdf.py path/to/your.pdf")
