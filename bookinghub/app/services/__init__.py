"""Service layer.

Modules are imported directly (``bookinghub.app.services.booking_services``);
the package itself stays import-free so domain value objects can depend on
``shared_services`` without cycles.
"""
