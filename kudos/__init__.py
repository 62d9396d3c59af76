"""
Kudos — Virtual Economy Engine
===============================
Dual-currency ledger (points and coins), micro-credit (credit scoring,
loans, repayment, default) and the reward cascades that feed them
(streaks, badges, top comments, referrals, tips).

Package layout::

    kudos/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Currencies, reasons, level formula, time helpers
    ├── exceptions.py      # Typed error taxonomy
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # All ORM models
    │   └── seed.py        # Default settings + badge catalogue
    ├── engine/
    │   ├── events.py      # EconomyEvent dataclass + EventType
    │   ├── rules.py       # Reward rule table (event → currency deltas)
    │   ├── badges.py      # Badge trigger checks
    │   ├── credit.py      # Credit risk model (score → tier → terms)
    │   ├── locks.py       # Per-key in-process serialization
    │   └── cache.py       # In-memory settings/badge cache
    ├── services/
    │   ├── ledger_service.py        # The only writer of balances
    │   ├── reward_service.py        # Event → ledger → badges → notifications
    │   ├── cascade_service.py       # Top-comment cascade
    │   ├── loan_service.py          # Loan state machine
    │   ├── social_service.py        # Tips, referrals, streak check-ins
    │   ├── notification_service.py  # Fire-and-forget notification sinks
    │   ├── reconciliation_service.py # Ledger fold vs wallet projection
    │   └── scheduler.py             # Periodic default sweep
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Engine / cache / store wiring, admin JWT
        └── routes/        # Economy, credit, social, admin endpoints
"""

__version__ = "0.1.0"
