"""
Clinic Scheduling Service

A FastAPI-based backend for booking clinic appointments, with stateless
token authentication, role-based access control, and per-practitioner
conflict-free scheduling.
"""

__version__ = "1.0.0"
