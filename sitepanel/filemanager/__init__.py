"""Remote file manager core: connector gateway, bulk orchestration and archives.

Submodules are imported explicitly by callers; this package deliberately
re-exports nothing so that :mod:`sitepanel.core` can depend on
:mod:`.errors` without pulling in the gateway.
"""
