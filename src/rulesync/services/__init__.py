"""Business-logic layer of the rules API and the rules syncer.

Rules API services live in:
- rules_service.py (list/get/write/edit operations on top of a repository)
- tenant_labels.py (ownership label stamping shared by every read and write path)
- repository.py (the contract a rules storage backend implements)

Rules syncer services live in:
- fetchers.py (rules backend and rules API fetchers)
- rules_syncer.py (fetch -> write file -> reload loop)
"""

# Import side-effects are intentionally avoided here; modules are imported by routers/services as needed.
