"""
Integration tests for deliveryload.

These tests serve the stub API on an ephemeral port and demonstrate:
- Stub endpoint behaviour (auth, listings, order lifecycle)
- Complete customer, vendor and rider journeys over real HTTP
- Whole load runs graded against thresholds
- CLI exit codes
"""
