"""Properties app package.

Holds the property snapshot the booking core reads (owner, nightly
price, capacity, PMS listing handle) and the public availability
endpoint. Property management itself lives outside this service.
"""
