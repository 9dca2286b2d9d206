"""chronomem - temporal memory and knowledge graph for AI agents.

Facts distilled from conversations are stored at several time resolutions
in per-agent vector tables and as subject-predicate-object triples in a
property graph, and served back by time window, similarity or entity.
"""

__version__ = "0.1.0"
