"""Health event calendar: recurrence rules and local/remote sync.

This package contains the business logic and domain models, with every
platform service (remote database, alarms, identity) injected through the
protocols in ``healthsync.protocols``.
"""
