"""
Migration Engine - schema evolution for embedded single-file stores

Plans and applies table migrations against a store that cannot alter
columns in place, using a shadow-table rebuild protocol, a single-writer
concurrency gate with bounded busy retries, and an in-store ledger of
applied steps.
"""

__version__ = "0.1.0"
__author__ = "Systems Engineering Portfolio"
