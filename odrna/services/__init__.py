"""
Services package.

- storage: local backends and hosted stores
- sync: local/cloud synchronization
- subscription: premium status from payment webhooks
- backup: export/restore of local data

Submodules are imported directly (`odrna.services.sync`); the Entity
Store depends on `odrna.services.storage`, so this package stays free
of eager imports.
"""
