# =============================================================================
# scripts/ - Operational entry points
# =============================================================================
