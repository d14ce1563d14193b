"""
Cashvault - Background Jobs Package

The scheduled side of the Cashvault personal-finance application:
recurring transactions, budget alerts and monthly reports.

DESIGN PRINCIPLES:
1. Decisions are pure functions over snapshots
2. Mutations are all-or-nothing
3. A failed unit of work is simply due again on the next pass
4. Every job step is auditable
5. Storage, notification and AI backends are swappable
"""

__version__ = "1.0.0"
__author__ = "Cashvault Team"
