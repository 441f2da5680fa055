"""Test suite for the communications-tracking data layer."""
