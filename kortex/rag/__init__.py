"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- PDF text extraction
- Text normalization and sentence-based chunking with overlap
- Document ingestion with sequential embedding
- Subject-scoped FAISS vector storage
- Retrieval, confidence gating and grounded prompt assembly
"""
