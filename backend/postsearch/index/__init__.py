"""Redis-resident search index: documents, rankings, caches, and the write path."""
