"""Rulebook ingest pipeline — taxonomy client, normalizer, collector, persistence."""

from rulebook.ingest.client import TaxonomyClient
from rulebook.ingest.fingerprint import fingerprint, sourcebook_fingerprint
from rulebook.ingest.hierarchy import collect_sourcebooks, filter_sourcebooks
from rulebook.ingest.pipeline import ingest_rulebook
from rulebook.ingest.provisions import ProvisionIngestor
from rulebook.ingest.references import normalize_provision_ref, split_name
from rulebook.ingest.runs import IngestStats, RunTracker
from rulebook.ingest.versions import VersionWriter

__all__ = [
    "IngestStats",
    "ProvisionIngestor",
    "RunTracker",
    "TaxonomyClient",
    "VersionWriter",
    "collect_sourcebooks",
    "filter_sourcebooks",
    "fingerprint",
    "ingest_rulebook",
    "normalize_provision_ref",
    "sourcebook_fingerprint",
    "split_name",
]
