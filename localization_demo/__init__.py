"""Runnable demos for the scanloc pose estimator."""
