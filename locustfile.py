"""
Locust entrypoint.

Usage examples::

    # Smoke plan against the bundled stub API:
    deliveryload stub-server &
    locust -f locustfile.py --host http://127.0.0.1:8080/api/v1 --headless

    # Load plan:
    DELIVERYLOAD_TEST_TYPE=load locust -f locustfile.py --host https://uat.example/api/v1

The user classes and the shape live in :mod:`deliveryload.locust_users`;
Locust picks up every class imported here.
"""

from deliveryload.locust_users import CustomerUser, RiderUser, StagedLoadShape, VendorUser

__all__ = ["CustomerUser", "VendorUser", "RiderUser", "StagedLoadShape"]
