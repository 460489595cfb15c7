"""
unibo.bo

The universal business object and its value helpers.

Responsibilities:
- `UniversalBo`: the only entity persisted by the DAOs.
- Path access, value conversion and timestamp normalization for BO content.
"""

# Package marker; import from submodules directly.
