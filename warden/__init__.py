"""
Warden — Energy Ledger & Guardian Evolution Engine
===================================================
Members submit one SNS-performance report per day, earn energy, and
invest it to evolve collectible guardians through five stages.
Administrators audit the submissions for anomalies and inconsistency.

Package layout::

    warden/
    ├── config.py          # YAML → frozen game tables + service settings
    ├── constants.py       # Default thresholds, guardian & mission catalogues
    ├── errors.py          # Domain exception taxonomy
    ├── database/
    │   ├── engine.py      # Engine, per-user transactions, retry loop, run_db
    │   └── models.py      # ORM models (users, guardians, reports, ledger, missions)
    ├── engine/            # Pure calculations, no I/O
    │   ├── events.py      # LedgerEvent + observer hub
    │   ├── evolution.py   # Stage resolution, evolution steps, aura
    │   ├── energy.py      # Report energy award
    │   ├── growth.py      # Follower-growth deltas
    │   ├── streak.py      # Streaks + continuation warning
    │   ├── levels.py      # Level / progress from total earned
    │   ├── snapshots.py   # Detached read models
    │   └── audit.py       # Anomaly flags, consistency score, integrity issues
    ├── services/
    │   ├── ledger_service.py    # Idempotent credit / debit, energy history
    │   ├── report_service.py    # Report intake gateway
    │   ├── guardian_service.py  # Unlock, invest, profile read model
    │   ├── mission_service.py   # Daily missions and claims
    │   └── audit_service.py     # Read-only admin audit
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # JWT auth, engine/config injection, error mapping
        └── routes/        # Member + admin REST endpoints
"""

__version__ = "0.1.0"
