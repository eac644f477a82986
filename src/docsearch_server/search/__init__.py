"""
Search indexing and query engine package.

This package provides a pure-Python search stack over SQLite:
- schema: Field types and the document schema
- analyzers: Tokenizers and filters (lowercase, stop, stemming)
- index_store: Postings storage, the mutation handle and reader snapshots
- lifecycle: Ownership of one index location (writer + current snapshot)
- indexing: Canonical document projection and index writes
- query / query_parser: Query plans and the free-text compiler
- searcher / stats: BM25 plan execution
- highlight / formatter: Result shaping and highlighted fragments
"""
