"""kgforge: batch generation of a markdown knowledge graph with LLM failover."""

__version__ = "1.0.0"
