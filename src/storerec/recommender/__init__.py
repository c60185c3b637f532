"""Recommendation module for StoreRec.

Contains the interaction profile builder, popularity fallback, collaborative
and content scorers, hybrid fusion, the recommendation cache and the engine
that wires them together.
"""
