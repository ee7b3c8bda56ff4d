"""Mr Everything - WhatsApp concierge with intent routing and shared-taxi dispatch."""

__version__ = "0.1.0"
__logo__ = "🚐"
