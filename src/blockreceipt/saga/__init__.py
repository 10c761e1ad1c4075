"""
Receipt -> NFT saga.

- workflow.py: chaining rules (which task spawns which follow-up)
- handlers.py: acquire / fallback-mint / finalize-metadata task handlers
- http_collaborators.py: HTTP adapters for the marketplace, minter and metadata store
- offline.py: deterministic collaborators for demos and local runs
"""
