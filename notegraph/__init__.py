# notegraph: knowledge graph and retrieval engine for a vault of notes
#
# Modular package structure:
# - config.py: Settings loaded from NOTEGRAPH_* environment variables
# - logging.py: structlog configuration
# - models.py: Pydantic models for spans, notes, results and graph elements
# - utils.py: Regex patterns, exceptions, identifiers and validation
# - parser.py: Span parser and note construction
# - resolver.py: Link resolution policy and lookup tables
# - backlinks.py: Backlink graph (transpose of resolved links)
# - tags.py: Hierarchical tag tree
# - search.py: Full-text inverted index and snippets
# - fuzzy.py: Fuzzy matcher for the note switcher and link autocomplete
# - index.py: VaultIndex owning notes and all derived structures
# - buffer.py: Edit buffer with READ / EDIT / AUTOCOMPLETE modes
# - writer.py: Note reading, writing and creation
# - session.py: VaultSession tying files, index and the open note together
# - graph.py: Whole-vault and local graph views
