"""FastAPI application module for PathRec.

This module contains the FastAPI application, route handlers, and API
endpoints: the storefront recommendation read path plus the admin surface
for jobs, collections and settings.
"""
