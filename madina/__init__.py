"""
Madina — Community Portal Back End
====================================
Events, news, a wallet with a fee ledger, KYC verification, and an admin
back-office, served as a JSON API.  Every money movement is integer cents
inside a single database transaction.

Package layout::

    madina/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Shared formats, limits, currency formatting
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # All ORM models
    │   └── seed.py        # Default settings seeder
    ├── engine/
    │   ├── rbac.py        # Role hierarchy + permission checks
    │   └── money.py       # Cents, fees, wallet ids, reference numbers
    ├── services/
    │   ├── account_service.py   # Sign up / sign in / passwords
    │   ├── wallet_service.py    # Balances, P2P transfers, history
    │   ├── redeem_service.py    # Redeem code generation + redemption
    │   ├── withdrawal_service.py # Cash pool + finance desk payouts
    │   ├── fee_service.py       # Fee ledger + admin deposits
    │   ├── invoice_service.py   # Invoices between wallets
    │   ├── kyc_service.py       # KYC applications + review
    │   ├── event_service.py     # Events + ticket sales
    │   ├── news_service.py      # Posts, comments, likes
    │   ├── message_service.py   # Contact form + admin messages
    │   ├── notification_service.py
    │   ├── dashboard_service.py
    │   ├── admin_service.py     # Audit-logged admin mutations
    │   ├── settings_service.py  # System settings
    │   ├── upload_service.py    # Image uploads
    │   └── log_buffer.py        # Live log ring buffer
    └── api/
        ├── main.py        # FastAPI app
        ├── auth.py        # Email/password → JWT
        └── routes/        # Per-domain REST endpoints
"""

__version__ = "0.1.0"
