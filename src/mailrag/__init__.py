"""mailrag — semantic retrieval and streaming RAG chat over a mailbox."""

__version__ = "0.1.0"
