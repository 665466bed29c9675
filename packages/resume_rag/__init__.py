"""
Retrieval core for grounding resume analysis in the candidate's own text.

This package contains:
- Section-aware, token-budgeted chunking of plain-text resumes
- Embedding providers (BGE-M3, with a deterministic hashing fallback)
- An in-memory vector store with cosine retrieval and heuristic reranking
- The RAG service that builds cited context and augments prompts
"""
