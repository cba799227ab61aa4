"""Bookings app package.

This app encapsulates the booking domain: overlap-safe creation under row
locks, the cancellation and refund state machine, and the periodic refund
reconciliation that settles refunds interrupted by crashes or gateway
outages.
"""
