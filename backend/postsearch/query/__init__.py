"""Read path over the search index."""
