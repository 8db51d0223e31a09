"""
RAG (Retrieval-Augmented Generation) subsystem for code-aware context.

Chunks an indexed codebase, embeds and stores the chunks, searches them by
cosine similarity with optional re-ranking, and packs the results into a
token-budgeted prompt context.
"""
