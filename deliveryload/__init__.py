"""
deliveryload: virtual-user load harness for a food-delivery API.

Simulates concurrent customers, vendors and riders walking through
multi-step journeys (login, browse, order, track, deliver) while a
staged scheduler ramps concurrency up and down.  Every HTTP call and
journey feeds a shared metrics aggregator whose finalized report is
graded and checked against pass/fail thresholds.

Key Concepts Demonstrated:
- Greenlet-per-virtual-user concurrency on gevent (the same runtime
  Locust is built on)
- Staged ramp profiles for smoke, load, stress, spike and soak tests
- Threshold gating with CI-friendly exit codes

The package monkey-patches the standard library on import, exactly as
Locust does, so that blocking ``requests`` calls yield to other
virtual users instead of serialising the whole run.
"""

from gevent import monkey

monkey.patch_all()

__version__ = "0.3.0"
