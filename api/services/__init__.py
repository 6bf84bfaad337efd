"""Services module for PaperSmith.

Integration services (Qdrant, Jina, Groq, Stripe) are imported directly
from their modules where needed, e.g. ``from .services import billing``.
"""
