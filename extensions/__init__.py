"""
Extensions - Driver, actor and reporter processes for the orchestrator

Shared runtime (registration, dispatch, re-entrant client) lives in
extensions.shared; the remaining packages are example extensions.
"""
