"""
Integration tests: ParkingService against the in-memory store and SQLite,
concurrent allocation races and the command line front end.
"""
