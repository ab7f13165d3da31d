import argparse
import asyncio
import logging
import os
import sys

# Ensure src is in pythonpath
sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from dotenv import load_dotenv
load_dotenv()

from docrag.config import settings
from docrag.core.errors import PipelineError, error_payload
from docrag.main import pipeline_lifespan


async def main(document_key: str, questions: list[str], k: int, threshold: float) -> int:
    async with pipeline_lifespan(settings) as pipeline:
        try:
            report = await pipeline.ingest(document_key)
            print(f"Ingest: {report.status.value}, {report.chunk_count} chunk(s), "
                  f"cache_hit={report.cache_hit}, tool={report.extraction_tool}")

            if not questions:
                return 0

            result = await pipeline.retrieve(document_key, questions, k=k, threshold=threshold)
        except PipelineError as exc:
            print(f"Error: {error_payload(exc)}")
            return 1

    print(f"Top {len(result)} chunk(s):")
    for chunk in result.chunks:
        preview = chunk.text[:200].replace("\n", " ")
        print(f"  [{chunk.chunk_index}] score={chunk.score:.3f} {preview}...")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Ingest a document and retrieve context.")
    parser.add_argument("document", help="Document URL or local path")
    parser.add_argument("questions", nargs="*", help="Questions to retrieve context for")
    parser.add_argument("-k", type=int, default=settings.retrieval_top_k)
    parser.add_argument("--threshold", type=float, default=settings.retrieval_threshold)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    sys.exit(asyncio.run(main(args.document, args.questions, args.k, args.threshold)))
