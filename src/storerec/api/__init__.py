"""FastAPI application module for StoreRec.

This module contains the application factory, route handlers, logging and
metrics for the recommendation service.
"""
