"""Test suites for the parking allocation engine"""
