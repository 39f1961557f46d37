"""
                Order Item Holding Window

Tracks restaurant order line items from creation through kitchen/bar
fulfillment, with an editable holding window before each item is
locked and dispatched.
"""

__version__ = "1.0.0"
