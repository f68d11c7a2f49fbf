"""Document ingestion stages used by the ingestion pipeline.

Stages overview:

1. **Extract** (text_extractor.py / TextExtractor) -- Turns an uploaded
   file into text: PDF text layer, HTML visible text, plain text, or a
   vision-model description for images.

2. **Render** (document_renderer.py / DocumentRenderer) -- Rasterizes PDF
   pages to PNG for page-batch generation, with a Pillow fallback.

3. **Chunk** (chunker.py / TextChunker) -- Splits text into fixed-size
   overlapping windows tagged with their source pages.

4. **Generate** (qa_generator.py / QAGenerator) -- Asks the LLM for FAQ
   Q&A pairs per chunk, or once per document from page images.

5. **Dedup** (deduplicator.py / Deduplicator) -- Flags candidates whose
   question already exists among published KB entries.

The stages are sequenced by :class:`src.pipeline.IngestPipeline`.
"""

from src.services.ingestion.chunker import TextChunk, TextChunker
from src.services.ingestion.deduplicator import Deduplicator
from src.services.ingestion.document_renderer import DocumentRenderer, RenderedPage
from src.services.ingestion.qa_generator import QAGenerator
from src.services.ingestion.text_extractor import TextExtractor, guess_mime_type

__all__ = [
    "Deduplicator",
    "DocumentRenderer",
    "QAGenerator",
    "RenderedPage",
    "TextChunk",
    "TextChunker",
    "TextExtractor",
    "guess_mime_type",
]
