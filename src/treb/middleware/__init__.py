"""Request middleware for treb apps."""

from treb.middleware.protocol import AnyResponse, Middleware, Next

__all__ = ["AnyResponse", "Middleware", "Next"]
