"""
Appointment availability and booking conflict engine for salons.
"""

__version__ = "0.1.0"
