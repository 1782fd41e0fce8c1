"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- PDF, text and markdown extraction
- Sentence-aware chunking with overlap
- Cached embedding generation
- JSON-file vector storage with cosine search
- The service that ties indexing and querying together
"""
