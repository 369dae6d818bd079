"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Text extraction from PDF, Word and plain-text uploads
- Recursive text splitting with overlap
- Embedding generation
- FAISS vector indexing and search
- Document lifecycle tracking
- Cited answer generation
"""
