"""
                Delivery Concierge

Chat-driven food delivery concierge: collects an order from the user,
finds a restaurant, places the order over WhatsApp and relays the
negotiation until the food is on its way.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
