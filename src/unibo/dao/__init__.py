"""Data-access objects: one per backend, all implementing `unibo.dao.base.UniversalDao`."""
