"""
Harbormaster Test Suite

This directory contains tests for the Harbormaster engine:
- Unit tests for the fileset engine, drift detector and plan model
- Plan builder and executor tests against an in-memory runtime
- CLI tests
"""
