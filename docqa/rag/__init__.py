"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Text extraction from uploaded files
- Document chunking with overlap
- Embedding generation (Ollama, OpenAI, in-process model)
- Local and Supabase vector storage
- Semantic retrieval, prompt assembly and answer synthesis
- Document lifecycle tracking
"""
