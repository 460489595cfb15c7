"""
unibo.db

Backend client factories and schema initialization helpers.

Responsibilities:
- Build engines/clients from `Settings`.
- Create the tables, collections and indexes the DAOs expect.
"""

# Package marker; import from submodules directly.


# --- Module Notes -----------------------------------------------------------
# DAOs receive clients by reference; whoever calls these factories owns the lifecycle.
