"""
Response caching keyed by prompt and model, invalidated by file content.
"""
