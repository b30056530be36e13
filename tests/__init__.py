"""
Test Suite for the Portfolio Analysis Engine

Includes:
- Unit tests beside each package (analysis/, storage/, reports/)
- Shared YAML fixtures under tests/fixtures/
"""
