"""
Codebase index: language front-ends, symbol table and dependency graph.
"""
