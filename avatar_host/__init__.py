"""Avatar hosting service: bearer-gated uploads, public retrieval, storage stats."""

__version__ = "1.0.0"
