"""
Fleetwarden
===========

Supervises autonomous coding agents: decides per detection event whether to
remediate autonomously or escalate to a human, executes remediations against
the agent/task control plane, and keeps a durable audit trail.
"""

__version__ = "0.1.0"
