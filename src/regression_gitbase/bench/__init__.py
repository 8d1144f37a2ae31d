"""Benchmarking subsystem for regression-gitbase.

Runs the query suite against every resolved binary, collects resource
usage per repetition, and compares consecutive versions against an
allowance.
"""
