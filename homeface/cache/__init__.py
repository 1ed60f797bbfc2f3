"""Offline asset cache: versioned generations, per-route fetch policies, control messages."""
