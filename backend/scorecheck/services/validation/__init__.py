"""Score validation domain services: pre-check, consensus, notifications.

Imported by HTTP routes and socket handlers, keeping transport concerns
separated from the validation state machine.
"""
