"""
Extraction module for the Dealsuite sync pipeline.

Submodules:
    models: Validated deal record and extraction result schema.
    extractor: Chat-completions based structured extraction.
"""

from .models import DealRecord, ExtractionResult, synthesize_deal_id
from .extractor import StructuredExtractor, parse_extraction_response, build_messages
