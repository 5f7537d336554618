"""Test package for the attempt engine.

This package contains unit tests for the pure state, scoring, analytics and
normalization modules, headless scripted-session tests driven by a
``FakeClock``, and pygame smoke tests that run with the dummy video driver.
To run these tests, execute ``pytest`` from the project root.
"""
