"""The ASGI request pipeline: handler, error pages and response sending."""
