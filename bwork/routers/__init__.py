"""
Routers module - API endpoint handlers organized by feature.

- sandbox: Preview pipeline (provision, status, retry, repair, terminate)
"""
