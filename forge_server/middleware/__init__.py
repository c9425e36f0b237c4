"""
forge-server — Middleware Package
===================================

What:  Cross-cutting concerns applied around every route.

Middleware stack built by ServerApp (outermost first):
    Request → [Access log] → [JSON body] → [File upload]? → [CORS]? →
              [Security headers]* → [Rate limit] → [Handler errors] → Route

    ?  optional, per configuration
    *  zero to nine entries, see security_headers.py

Responses travel back out through the same layers in reverse, which is where
the header middlewares and the access log do their work.
"""
