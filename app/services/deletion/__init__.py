"""Tenant deletion pipeline: plan, approval gate, orchestrator and audit trail."""
