"""
forge-server — Schemas Package
================================

What:  Pydantic models describing server configuration and API payloads.
How:   Models are frozen; they are validated once when a ServerApp is built
       and read for the lifetime of the server.
"""
