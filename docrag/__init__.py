"""docrag - local document indexing and semantic retrieval."""
