"""
Test suite for the deliveryload harness.

This package contains:
- unit/: engine tests with fake HTTP sessions and fake sleep
- integration/: journeys, runs and CLI commands against the stub API
"""
