"""
Scheduling services.

Read side (constraints, availability, calendar views), catalog durations,
time-off management and change propagation.
"""
