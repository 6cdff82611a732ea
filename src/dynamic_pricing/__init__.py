"""
Dynamic pricing service.

Rule-based price adjustments with stacked discounts, usage limits and
quantity bulk tiers.
"""

__version__ = "1.0.0"
