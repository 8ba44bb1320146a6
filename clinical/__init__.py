"""Clinical scheduling application.

Appointment booking with per-provider conflict protection, provider
availability, the encounter lifecycle with its clinical records, and
the event feed published after committed changes.
"""
