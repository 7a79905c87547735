"""Middleware package for FastAPI application"""
from push_dispatch.middleware.logging_middleware import RequestLoggingMiddleware

__all__ = ['RequestLoggingMiddleware']
