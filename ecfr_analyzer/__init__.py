"""
eCFR Analyzer - Ingestion & Metrics Service

FastAPI + APScheduler service that imports the electronic Code of Federal
Regulations, stores per-title content snapshots and serves derived metrics
(word counts, checksums, historical trends) to the analytics dashboard.
"""

__version__ = "0.1.0"
