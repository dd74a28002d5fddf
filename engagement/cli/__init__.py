# ==============================================================================
# CLI Commands Module
# ==============================================================================
"""
CLI commands for the engagement service.

Commands are organized into separate modules:
- shared.py: Box drawing, option parsing and store wiring
- analytics.py: Report commands
- sessions.py: Session administration
- data.py: Schema management
- config.py: Configuration display
"""
