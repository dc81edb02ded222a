"""API layer module.

FastAPI routers, request/response schemas and middleware.
"""
