"""Synapse - student / class management backend.

- Email + password accounts with stateless JWT bearer auth.
- Head of Class (HOC) users own classes and can reschedule, cancel or complete them.
- Students see a dashboard of their enrolled classes and an in-app notification feed.
- Schedule changes fan out as in-app notifications and Expo push messages.

Run with `python scripts/run_api.py`. See DESIGN.md for the layout.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
