"""
forge-server — Routes Package
===============================

Route Inventory:
    - health.py:   GET <health path>   (registered by every ServerApp unless disabled)
    - example.py:  GET /               (example routing tree used by the entrypoint)

Handlers stay thin: read the request, do the work, answer with one of the
envelope helpers from forge_server.responses.
"""
