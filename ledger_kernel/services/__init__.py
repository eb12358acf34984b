"""
Kernel services (imperative shell).

Services flush inside the caller's transaction and never commit.  Import
them from their modules directly; this package does not re-export them.
"""
