"""
budget-buddy: receipt and nearby-spot assistant for iMessage.

A background service that reads receipt photos sent over iMessage, itemizes
them with a vision model, and finds affordable places through web search.
"""

__version__ = "0.1.0"
