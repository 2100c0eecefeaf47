"""
municipal-spine - medallion ETL for municipal open data.

Pulls raw rows from open-data catalogs, the INE nomenclátor and Wikidata,
archives them verbatim (bronze), projects them into typed records keyed
by a resolved municipality code (silver), and recomputes per-municipality
aggregates (gold). Every run is traced in the Run/Step ledger.
"""

__version__ = "0.1.0"
